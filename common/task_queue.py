"""
RabbitMQ task queue shared by the API, the stage workers and the outbox sweeper.

One durable priority queue carries every task type. Failed deliveries are
republished to ``<queue>.retry`` with a per-message TTL that dead-letters them
back onto the work queue; tasks out of attempts, or that can never succeed,
land in ``<queue>.dead``.
"""

import logging
from typing import Callable, Optional

import pika  # type: ignore
from pydantic import ValidationError  # type: ignore

from common.config import (
    RABBIT_URL,
    TASKS_QUEUE,
    TASK_BACKOFF_MULTIPLIER,
    TASK_MAX_RETRIES,
    TASK_MAX_RETRY_DELAY,
    TASK_RETRY_DELAY,
)
from common.errors import EnqueueError, NON_RETRYABLE_ERRORS
from common.schemas import TaskEnvelope
from common.tasks import LANE_PRIORITIES

logger = logging.getLogger(__name__)

MAX_PRIORITY = max(LANE_PRIORITIES.values())


class TaskQueue:
    """Durable at-least-once task delivery over a single RabbitMQ channel."""

    def __init__(self, rabbit_url: Optional[str] = RABBIT_URL, queue_name: str = TASKS_QUEUE,
                 max_retries: int = TASK_MAX_RETRIES, retry_delay: int = TASK_RETRY_DELAY,
                 backoff_multiplier: int = TASK_BACKOFF_MULTIPLIER,
                 max_retry_delay: int = TASK_MAX_RETRY_DELAY):
        self.rabbit_url = rabbit_url
        self.queue_name = queue_name
        self.retry_queue = f"{queue_name}.retry"
        self.dead_queue = f"{queue_name}.dead"
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retry_delay = max_retry_delay
        self.connection = None
        self.channel = None

    def connect(self) -> None:
        if not self.rabbit_url:
            raise ValueError("RABBIT_URL is not configured")
        connection_params = pika.URLParameters(self.rabbit_url)
        connection_params.heartbeat = 30
        connection_params.blocked_connection_timeout = 300
        connection_params.connection_attempts = 3
        connection_params.retry_delay = 2

        self.connection = pika.BlockingConnection(connection_params)
        self.channel = self.connection.channel()
        self.declare()
        logger.info(f"Connected to RabbitMQ queue '{self.queue_name}'")

    def declare(self) -> None:
        self.channel.queue_declare(queue=self.dead_queue, durable=True)
        self.channel.queue_declare(
            queue=self.queue_name,
            durable=True,
            arguments={"x-max-priority": MAX_PRIORITY},
        )
        self.channel.queue_declare(
            queue=self.retry_queue,
            durable=True,
            arguments={
                "x-dead-letter-exchange": "",
                "x-dead-letter-routing-key": self.queue_name,
            },
        )

    @property
    def is_open(self) -> bool:
        return self.connection is not None and self.connection.is_open

    def close(self) -> None:
        try:
            if self.connection is not None and self.connection.is_open:
                self.connection.close()
                logger.info("RabbitMQ connection closed")
        except Exception as e:
            logger.warning(f"Error closing RabbitMQ connection: {e}")
        self.connection = None
        self.channel = None

    # ── publishing ───────────────────────────────────────────────────────────

    def _publish(self, routing_key: str, body: str, priority: int,
                 expiration: Optional[str] = None, headers: Optional[dict] = None) -> None:
        self.channel.basic_publish(
            exchange="",
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(
                delivery_mode=2,  # make message persistent
                content_type="application/json",
                priority=priority,
                expiration=expiration,
                headers=headers,
            ),
        )

    def enqueue(self, envelope: TaskEnvelope) -> None:
        """Publish ``envelope`` on its priority lane. Raises EnqueueError on failure."""
        if self.channel is None:
            raise EnqueueError("Task queue is not connected")
        try:
            self._publish(self.queue_name, envelope.model_dump_json(), LANE_PRIORITIES.get(envelope.lane, 1))
        except Exception as e:
            raise EnqueueError(f"Failed to publish {envelope.task_type}: {e}") from e
        logger.debug(f"Enqueued {envelope.task_type} {envelope.payload} on lane '{envelope.lane}'")

    def retry_delay_for(self, attempt: int) -> int:
        """Seconds to wait before redelivering a task that failed on ``attempt``."""
        delay = self.retry_delay * (self.backoff_multiplier ** attempt)
        return min(delay, self.max_retry_delay)

    def schedule_retry(self, envelope: TaskEnvelope, error: Exception) -> None:
        if envelope.attempt + 1 > self.max_retries:
            logger.error(f"{envelope.task_type} {envelope.payload} exhausted {self.max_retries} retries")
            self.dead_letter(envelope.model_dump_json(), f"retries exhausted: {error}")
            return

        delay = self.retry_delay_for(envelope.attempt)
        retried = envelope.model_copy(update={"attempt": envelope.attempt + 1})
        self._publish(
            self.retry_queue,
            retried.model_dump_json(),
            LANE_PRIORITIES.get(envelope.lane, 1),
            expiration=str(delay * 1000),
        )
        logger.warning(
            f"Retrying {envelope.task_type} {envelope.payload} in {delay}s "
            f"(attempt {retried.attempt}/{self.max_retries})"
        )

    def dead_letter(self, body, reason: str) -> None:
        self._publish(self.dead_queue, body, 0, headers={"x-error": reason[:1000]})

    # ── consuming ────────────────────────────────────────────────────────────

    def handle_delivery(self, ch, method, props, body, on_task: Callable[[TaskEnvelope], None]) -> None:
        """Run one delivery through ``on_task`` and settle it: ack, retry or dead-letter."""
        try:
            envelope = TaskEnvelope.model_validate_json(body)
        except ValidationError as e:
            logger.error(f"Dropping malformed task body: {e}")
            self.dead_letter(body, f"malformed envelope: {e}")
            ch.basic_ack(delivery_tag=method.delivery_tag)
            return

        try:
            on_task(envelope)
        except NON_RETRYABLE_ERRORS as e:
            logger.error(f"{envelope.task_type} {envelope.payload} will not be retried: {e}")
            self.dead_letter(envelope.model_dump_json(), str(e))
        except Exception as e:
            logger.error(
                f"{envelope.task_type} {envelope.payload} failed on attempt {envelope.attempt}: "
                f"{type(e).__name__}: {e}"
            )
            self.schedule_retry(envelope, e)
        ch.basic_ack(delivery_tag=method.delivery_tag)

    def consume(self, on_task: Callable[[TaskEnvelope], None], prefetch_count: int = 1) -> None:
        """Block consuming tasks until ``stop_consuming`` is called or the connection drops."""
        self.channel.basic_qos(prefetch_count=prefetch_count)
        self.channel.basic_consume(
            queue=self.queue_name,
            on_message_callback=lambda ch, method, props, body: self.handle_delivery(
                ch, method, props, body, on_task
            ),
        )
        logger.info(f"Waiting for tasks on '{self.queue_name}'…")
        self.channel.start_consuming()

    def stop_consuming(self) -> None:
        if self.channel is not None and self.channel.is_open:
            self.channel.stop_consuming()

    def queue_depth(self) -> int:
        method = self.channel.queue_declare(
            queue=self.queue_name,
            durable=True,
            passive=True,
        )
        return method.method.message_count
