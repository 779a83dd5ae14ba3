"""Repository for the NotificationPreference aggregate."""

import structlog

from notifier.domain import notifier
from notifier.preference.preference import NotificationPreference

logger = structlog.get_logger(__name__)


@notifier.repository(part_of=NotificationPreference)
class NotificationPreferenceRepository:
    """One preference record per account, created on first use."""

    def find_by_account(self, account_id) -> NotificationPreference | None:
        results = self._dao.query.filter(account_id=str(account_id)).all().items
        return results[0] if results else None

    def get_or_create_default(self, account_id) -> NotificationPreference:
        preference = self.find_by_account(account_id)
        if preference is not None:
            return preference

        preference = NotificationPreference.create_default(str(account_id))
        self.add(preference)
        logger.info("Default notification preferences created", account_id=str(account_id))
        return preference
