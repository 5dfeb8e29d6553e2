"""Stage worker process: consumes pipeline tasks and runs their stage handlers."""

import logging
import signal
import threading
import time
from typing import Callable, Dict, Optional

from common.database import create_session_factory, init_db
from common.errors import InvalidPayload
from common.outbox import OutboxDispatcher
from common.record_store import RecordStore
from common.schemas import TaskEnvelope
from common.task_queue import TaskQueue
from common.tasks import (
    GENERATE_AUDIO,
    GENERATE_CAPTIONS,
    GENERATE_SCENE_IMAGE,
    GENERATE_SCENES,
    GENERATE_SCRIPT,
    RENDER_VIDEO,
    VIDEO_COMPLETE,
)
from worker.blob_store import create_blob_store
from worker.compositor import Compositor
from worker.config import DATABASE_URL, LOG_FORMAT, LOG_LEVEL, REDIS_URL, WORKER_ID
from worker.gate import RenderReadinessGate
from worker.health_monitor import WorkerHealthMonitor
from worker.image_generator import ImageGenerator
from worker.script_generator import ScriptGenerator
from worker.stages import (
    AudioStage,
    CaptionsStage,
    RenderStage,
    SceneImageStage,
    ScenesStage,
    ScriptStage,
    VideoCompleteStage,
)
from worker.transcriber import Transcriber
from worker.tts import SpeechSynthesizer

logger = logging.getLogger(__name__)


class TaskRouter:
    """Dispatches each envelope to the handler registered for its task type."""

    def __init__(self, monitor: Optional[WorkerHealthMonitor] = None):
        self.handlers: Dict[str, Callable[[TaskEnvelope], None]] = {}
        self.monitor = monitor

    def register(self, task_type: str, handler: Callable[[TaskEnvelope], None]) -> None:
        self.handlers[task_type] = handler

    def __call__(self, envelope: TaskEnvelope) -> None:
        handler = self.handlers.get(envelope.task_type)
        if handler is None:
            raise InvalidPayload(f"No handler registered for task type '{envelope.task_type}'")

        logger.info(f"Processing {envelope.task_type} {envelope.payload} (attempt {envelope.attempt})")
        if self.monitor is None:
            handler(envelope)
            return
        with self.monitor.track(envelope.task_type):
            handler(envelope)


def build_router(store, dispatcher, script_generator, synthesizer, transcriber,
                 image_generator, compositor, blob_store,
                 monitor: Optional[WorkerHealthMonitor] = None) -> TaskRouter:
    gate = RenderReadinessGate(store, dispatcher)
    router = TaskRouter(monitor)
    router.register(GENERATE_SCRIPT, ScriptStage(store, dispatcher, script_generator))
    router.register(GENERATE_AUDIO, AudioStage(store, dispatcher, synthesizer, blob_store))
    router.register(GENERATE_CAPTIONS, CaptionsStage(store, dispatcher, transcriber, gate))
    router.register(GENERATE_SCENES, ScenesStage(store, dispatcher, script_generator, gate))
    router.register(GENERATE_SCENE_IMAGE, SceneImageStage(store, dispatcher, image_generator, blob_store, gate))
    router.register(RENDER_VIDEO, RenderStage(store, dispatcher, compositor))
    router.register(VIDEO_COMPLETE, VideoCompleteStage(store, dispatcher))
    return router


def main():
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

    session_factory = create_session_factory(DATABASE_URL)
    init_db(session_factory)
    store = RecordStore(session_factory)
    queue = TaskQueue()
    dispatcher = OutboxDispatcher(store, queue)

    monitor = WorkerHealthMonitor(REDIS_URL, WORKER_ID)
    router = build_router(
        store,
        dispatcher,
        script_generator=ScriptGenerator(),
        synthesizer=SpeechSynthesizer(),
        transcriber=Transcriber(),
        image_generator=ImageGenerator(),
        compositor=Compositor(),
        blob_store=create_blob_store(),
        monitor=monitor,
    )
    monitor.start()

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()
        queue.stop_consuming()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    while not shutdown_event.is_set():
        try:
            queue.connect()
            queue.consume(router, prefetch_count=1)
        except Exception as e:
            if shutdown_event.is_set():
                break
            logger.error(f"Connection error: {e}. Reconnecting in 5 seconds...")
            queue.close()
            time.sleep(5)

    queue.close()
    monitor.stop()
    logger.info("Stage worker stopped")


if __name__ == "__main__":
    main()
