"""Publishes outbox rows written by the record store onto the task queue."""

import logging
from typing import Iterable

from common.errors import RecordNotFound
from common.schemas import TaskEnvelope

logger = logging.getLogger(__name__)


class OutboxDispatcher:
    def __init__(self, store, queue):
        self.store = store
        self.queue = queue

    def _deliver(self, message) -> bool:
        if message.delivered_at is not None:
            return True
        try:
            envelope = TaskEnvelope.model_validate_json(message.envelope)
            self.queue.enqueue(envelope)
        except Exception as e:
            logger.warning(f"Outbox message {message.id} ({message.task_type}) not delivered: {e}")
            self.store.mark_outbox_attempt_failed(message.id, str(e))
            return False
        self.store.mark_outbox_delivered(message.id)
        return True

    def flush(self, message_ids: Iterable[int]) -> int:
        """
        Publish the given outbox rows right after their transaction committed.

        Never raises: a row that cannot be published stays undelivered for the
        sweeper. Returns how many rows were delivered.
        """
        delivered = 0
        for message_id in message_ids:
            try:
                message = self.store.get_outbox_message(message_id)
                if self._deliver(message):
                    delivered += 1
            except RecordNotFound:
                logger.error(f"Outbox message {message_id} vanished before delivery")
            except Exception as e:
                logger.error(f"Error flushing outbox message {message_id}: {e}")
        return delivered

    def sweep(self, min_age_seconds: int = 0, limit: int = 100) -> int:
        """Republish undelivered rows older than ``min_age_seconds``."""
        messages = self.store.pending_outbox(min_age_seconds=min_age_seconds, limit=limit)
        delivered = sum(1 for message in messages if self._deliver(message))
        if messages:
            logger.info(f"Outbox sweep delivered {delivered}/{len(messages)} pending messages")
        return delivered
