"""Delivery audit trail.

One entry per (event, webhook) per dispatch, recording the final outcome.
A failing log store is reported to the operational log and otherwise
ignored: auditing never fails a dispatch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from hookgate.logging import get_logger

if TYPE_CHECKING:
    from hookgate.models import DeliveryLogEntry
    from hookgate.storage import Storage

logger = get_logger(__name__)


class DeliveryAuditor:
    """Appends delivery outcomes to the delivery log.

    Attributes:
        write_failures: Number of entries that could not be persisted.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self.write_failures = 0

    async def record(self, entry: DeliveryLogEntry) -> bool:
        """Persist a delivery log entry.

        Args:
            entry: Final outcome for one webhook.

        Returns:
            True if the entry was written, False if the store failed.
        """
        try:
            await self._storage.log_delivery(entry)
        except Exception:
            self.write_failures += 1
            logger.exception(
                "Failed to write delivery log entry",
                subscription_id=entry.subscription_id,
                event_type=entry.event_type,
                success=entry.success,
            )
            return False
        return True


__all__ = ["DeliveryAuditor"]
