"""Per-account TTL cache in front of the preference repository.

Quiet hours are evaluated against the clock on every call, so a stale entry
can only hide a settings edit, and for at most one TTL.
"""

import time

import structlog
from protean.utils.globals import current_domain

from notifier.preference.preference import NotificationPreference

logger = structlog.get_logger(__name__)


class PreferenceCache:
    def __init__(self, ttl_seconds=30, repository=None, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._repository = repository
        self._clock = clock
        self._entries = {}

    @property
    def repository(self):
        return self._repository or current_domain.repository_for(NotificationPreference)

    def get(self, account_id) -> NotificationPreference:
        key = str(account_id)
        entry = self._entries.get(key)
        now = self._clock()
        if entry is not None and now - entry[0] < self.ttl_seconds:
            return entry[1]

        preference = self.repository.get_or_create_default(key)
        self._entries[key] = (now, preference)
        return preference

    def invalidate(self, account_id=None):
        """Drop one account's entry, or every entry when no account is given."""
        if account_id is None:
            self._entries.clear()
        else:
            self._entries.pop(str(account_id), None)
        logger.debug("Preference cache invalidated", account_id=str(account_id) if account_id else None)

    def __len__(self):
        return len(self._entries)
