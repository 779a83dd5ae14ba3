"""Scheduled dispatch sweep: deliver notifications whose time has come.

Meant for a background job: picks up PENDING notifications that are due,
skips expired ones (the expiry sweep closes those) and dispatches the rest
concurrently.
"""

from datetime import UTC, datetime

import structlog
from protean.utils.globals import current_domain

from notifier.notification.notification import Notification

logger = structlog.get_logger(__name__)


async def dispatch_due_notifications(dispatcher, repository=None, as_of=None):
    """Dispatch every pending notification due by ``as_of``.

    Returns:
        List of DispatchReports, one per dispatched notification.
    """
    as_of = as_of or datetime.now(UTC)
    repo = repository or current_domain.repository_for(Notification)

    due = [n for n in repo.find_pending(before=as_of) if n.should_send(as_of)]
    if not due:
        logger.info("No notifications due", as_of=str(as_of))
        return []

    reports = await dispatcher.dispatch_many([n.id for n in due])

    logger.info(
        "Scheduled notifications processed",
        due=len(due),
        dispatched=len(reports),
        as_of=str(as_of),
    )
    return reports
