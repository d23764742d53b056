"""
Batch send executor: one bounded unit of delivery work per tick.
"""

import logging
from dataclasses import dataclass

from app.delivery import DeliveryError
from app.metrics import record_delivery
from app.storage import StorageError
from app.utils import Deadline, truncate_content

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome counts for one execute() call."""
    fetched: int = 0
    sent: int = 0
    failed: int = 0
    mark_failed: int = 0


class SendBatchExecutor:
    """
    Pulls up to `max_per_tick` unsent messages and delivers them one by one.

    A failing message never aborts the batch. Only a failed fetch is raised
    to the caller.
    """

    def __init__(self, store, delivery_client, max_per_tick: int, char_limit: int):
        self.store = store
        self.delivery_client = delivery_client
        self.max_per_tick = max_per_tick
        self.char_limit = char_limit

    def execute(self, deadline: Deadline) -> BatchResult:
        """
        Run one batch.

        Raises:
            StorageError: if unsent messages cannot be fetched
        """
        messages = self.store.fetch_unsent(self.max_per_tick)
        result = BatchResult(fetched=len(messages))
        if not messages:
            logger.debug("No unsent messages")
            return result

        logger.info(f"Dispatching batch of {len(messages)} message(s)")

        for message in messages:
            # Limit may have shrunk since the message was created
            message.content = truncate_content(message.content, self.char_limit)

            try:
                delivery_id = self.delivery_client.send(message, deadline)
            except DeliveryError as e:
                logger.error(f"send failed id={message.id} err={e}")
                record_delivery("failed")
                result.failed += 1
                continue

            try:
                self.store.mark_sent(message.id, delivery_id)
            except StorageError as e:
                # Delivered remotely but still unsent locally: resent next tick
                logger.error(f"mark sent failed id={message.id} delivery_id={delivery_id} err={e}")
                record_delivery("mark_failed")
                result.mark_failed += 1
                continue

            record_delivery("sent")
            result.sent += 1

        logger.info(
            "Batch finished",
            extra={
                "fetched": result.fetched,
                "sent": result.sent,
                "failed": result.failed,
                "mark_failed": result.mark_failed,
            },
        )
        return result
