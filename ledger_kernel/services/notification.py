"""Default notifier and the notification types the engine sends."""

from typing import Any
from uuid import UUID

from ledger_kernel.logging_config import get_logger

logger = get_logger("services.notification")

AUTO_REVERSAL_COMPLETED = "auto_reversal_completed"
AUTO_REVERSAL_FAILED = "auto_reversal_failed"


class LoggingNotifier:
    """Writes notifications to the structured log instead of delivering them."""

    def send(
        self,
        notification_type: str,
        recipients: list[UUID],
        data: dict[str, Any],
    ) -> None:
        logger.info(
            "notification_sent",
            extra={
                "notification_type": notification_type,
                "recipients": [str(r) for r in recipients],
                "data": data,
            },
        )
