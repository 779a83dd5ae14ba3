"""Notifier bounded context: multi-channel notification delivery.

Builds notifications from trigger events, selects delivery channels from
account preferences, and fans delivery out across in-app, SSE, desktop,
system, email and SMS channels with per-channel retry and dead-lettering.
"""

from protean.domain import Domain

from notifier.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

notifier = Domain(name="notifier")
