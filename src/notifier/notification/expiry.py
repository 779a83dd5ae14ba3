"""ExpireNotifications command + handler: sweep pending notifications past expiry.

Invoked by a background job or cron; a notification that expires while a
dispatch is in flight is also expired by the dispatcher's per-attempt gate.
"""

from datetime import UTC, datetime

import structlog
from protean.fields import DateTime
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from notifier.domain import notifier
from notifier.notification.notification import Notification

logger = structlog.get_logger(__name__)


@notifier.command(part_of="Notification")
class ExpireNotifications:
    """Request to expire every pending notification whose window has closed."""

    as_of: DateTime()  # Optional: expire as of this time (defaults to now)


@notifier.command_handler(part_of=Notification)
class ExpireNotificationsHandler:
    @handle(ExpireNotifications)
    def expire(self, command: ExpireNotifications):
        as_of = command.as_of or datetime.now(UTC)
        repo = current_domain.repository_for(Notification)

        expired = repo.find_expired(as_of)
        for notification in expired:
            expected_version = notification.version
            notification.mark_as_expired(as_of)
            repo.save(notification, expected_version=expected_version)

        logger.info("Expired notifications processed", expired=len(expired), as_of=str(as_of))
        return len(expired)
