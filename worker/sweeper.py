"""
Outbox sweeper: republishes next-stage tasks whose immediate publish failed.

Run as ``python -m worker.sweeper``.
"""

import logging
import signal
import threading

from common.database import create_session_factory, init_db
from common.outbox import OutboxDispatcher
from common.record_store import RecordStore
from common.task_queue import TaskQueue
from worker.config import DATABASE_URL, LOG_FORMAT, LOG_LEVEL, OUTBOX_SWEEP_INTERVAL, OUTBOX_SWEEP_MIN_AGE

logger = logging.getLogger(__name__)


def sweep_once(dispatcher: OutboxDispatcher, queue: TaskQueue, min_age: int = OUTBOX_SWEEP_MIN_AGE) -> int:
    if not queue.is_open:
        queue.connect()
    delivered = dispatcher.sweep(min_age_seconds=min_age)
    if delivered:
        logger.info(f"{queue.queue_depth()} task(s) waiting on '{queue.queue_name}'")
    return delivered


def main():
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

    session_factory = create_session_factory(DATABASE_URL)
    init_db(session_factory)
    store = RecordStore(session_factory)
    queue = TaskQueue()
    dispatcher = OutboxDispatcher(store, queue)

    stop_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info(f"Outbox sweeper running every {OUTBOX_SWEEP_INTERVAL}s (min age {OUTBOX_SWEEP_MIN_AGE}s)")
    while not stop_event.is_set():
        try:
            sweep_once(dispatcher, queue)
        except Exception as e:
            logger.error(f"Outbox sweep failed: {e}")
            queue.close()
        stop_event.wait(OUTBOX_SWEEP_INTERVAL)

    queue.close()
    logger.info("Outbox sweeper stopped")


if __name__ == "__main__":
    main()
