"""Notification adapter.

Delivery (email, in-app) is owned by the CRM's notification service; this
adapter records terminal sync events in the application log.
"""

import logging

from ..domain.entities import SyncEvent, SyncStatus
from ..domain.ports import INotifier

logger = logging.getLogger(__name__)


class LoggingNotifier(INotifier):
    """INotifier that writes one log line per terminal package."""

    async def notify(self, event: SyncEvent) -> None:
        message = (
            f"[{event.category}] tenant={event.tenant_id} package={event.package_id} "
            f"type={event.request_type.value} status={event.status.value} "
            f"success={event.success_count}/{event.total_items} "
            f"failed={event.failure_count}"
        )
        if event.status == SyncStatus.FAILED:
            logger.warning(f"{message} error={event.error_message}")
        else:
            logger.info(message)
