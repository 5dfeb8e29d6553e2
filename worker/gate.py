"""
Render-readiness gate.

Invoked by the caption stage and by every scene-image completion. It checks the
persisted state and, once captions exist and every scene has its image, moves
the video from ``generating_images`` to ``ready_to_render`` with a conditional
update that also writes the render task to the outbox. Only the caller whose
update matches produces a render task; everyone else sees StaleTransition.
"""

import logging
from enum import Enum

from common.errors import StaleTransition
from common.record_store import OUTSTANDING_SCENE
from common.status import GATE_OPEN_STATUSES, STATUS_RANK, VideoStatus
from common.tasks import render_video_task

logger = logging.getLogger(__name__)


class GateOutcome(str, Enum):
    CAPTIONS_PENDING = "captions_pending"
    SCENES_NOT_READY = "scenes_not_ready"
    SCENES_OUTSTANDING = "scenes_outstanding"
    NO_SCENES = "no_scenes"
    ALREADY_TRIGGERED = "already_triggered"
    HALTED = "halted"
    TRIGGERED = "triggered"


class RenderReadinessGate:
    def __init__(self, store, dispatcher):
        self.store = store
        self.dispatcher = dispatcher

    def check(self, video_id: int) -> GateOutcome:
        video = self.store.get_video(video_id)
        status = VideoStatus(video.status)

        if not video.captions:
            logger.info(f"Video {video_id}: captions not ready, render not triggered")
            return GateOutcome.CAPTIONS_PENDING

        if status not in GATE_OPEN_STATUSES:
            if status == VideoStatus.FAILED:
                logger.info(f"Video {video_id}: failed, render not triggered")
                return GateOutcome.HALTED
            if STATUS_RANK[status] >= STATUS_RANK[VideoStatus.READY_TO_RENDER]:
                logger.info(f"Video {video_id}: render already triggered ({status.value})")
                return GateOutcome.ALREADY_TRIGGERED
            logger.info(f"Video {video_id}: scene rows not settled ({status.value}), render not triggered")
            return GateOutcome.SCENES_NOT_READY

        outstanding = self.store.count_scenes(video_id, OUTSTANDING_SCENE)
        if outstanding:
            logger.info(f"Video {video_id}: {outstanding} scene(s) outstanding")
            return GateOutcome.SCENES_OUTSTANDING

        if self.store.count_scenes(video_id) == 0:
            logger.warning(f"Video {video_id}: no scenes to render, skipping")
            return GateOutcome.NO_SCENES

        try:
            outbox_ids = self.store.transition_video(
                video_id,
                VideoStatus.READY_TO_RENDER,
                tasks=[render_video_task(video_id)],
                expected=GATE_OPEN_STATUSES,
            )
        except StaleTransition:
            logger.info(f"Video {video_id}: another completion triggered the render first")
            return GateOutcome.ALREADY_TRIGGERED

        logger.info(f"Video {video_id}: all inputs ready, render enqueued")
        self.dispatcher.flush(outbox_ids)
        return GateOutcome.TRIGGERED
