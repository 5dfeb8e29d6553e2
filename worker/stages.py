"""
Stage handlers.

Every stage runs the same sequence, implemented once in ``StageHandler.handle``:

    decode payload -> load record -> halt if the video failed -> skip if this
    stage already ran -> check preconditions -> write in-progress marker ->
    call the generator -> persist result, status and next tasks -> publish the
    outbox rows -> post-persist hook

Subclasses override the hooks they need.
"""

import logging
from typing import Any, List, Optional

from common.errors import InvalidPayload, PipelineHalted, PreconditionFailed, StageFailed, StaleTransition
from common.record_store import load_captions
from common.schemas import Caption, ScenePatch, VideoPatch
from common.status import SceneStatus, VideoStatus, is_past
from common.tasks import (
    GENERATE_AUDIO,
    GENERATE_CAPTIONS,
    GENERATE_SCENE_IMAGE,
    GENERATE_SCENES,
    GENERATE_SCRIPT,
    RENDER_VIDEO,
    VIDEO_COMPLETE,
    generate_audio_task,
    generate_captions_task,
    generate_scene_image_task,
    generate_scenes_task,
    parse_payload,
)
from worker.blob_store import audio_key, image_key
from worker.compositor import SceneImage
from worker.config import SCENE_FALLBACK_SECONDS
from worker.retry import download

logger = logging.getLogger(__name__)


def render_duration(captions: Optional[List[Caption]], scene_count: int,
                    fallback_per_scene: float = SCENE_FALLBACK_SECONDS) -> float:
    """Narration length from the last caption, or a per-scene estimate when there is none."""
    if captions:
        end = captions[-1].end_time
        if end > 0:
            return end
    return fallback_per_scene * scene_count


class StageHandler:
    """Template for one pipeline stage acting on a video."""

    task_type: str = ""
    # Status written before the generator is called; None when the stage has none
    in_progress: Optional[VideoStatus] = None

    def __init__(self, store, dispatcher):
        self.store = store
        self.dispatcher = dispatcher

    def __call__(self, envelope) -> None:
        self.handle(parse_payload(envelope))

    def handle(self, payload) -> None:
        record = self.load(payload)
        video = self.video_of(record)
        label = self.describe(record)

        if video.status == VideoStatus.FAILED.value:
            raise PipelineHalted(f"{label} belongs to a failed video")

        if self.already_done(record, video):
            logger.info(f"[{self.task_type}] {label} already past this stage, skipping")
            self.on_skip(record, video)
            return

        try:
            self.check_preconditions(record, video, payload)
        except PreconditionFailed as e:
            logger.error(f"[{self.task_type}] {label} precondition failed: {e}")
            self.mark_failed(record, video)
            raise

        self.mark_in_progress(record, video)

        try:
            result = self.generate(record, video, payload)
        except Exception as e:
            logger.error(f"[{self.task_type}] {label} generation failed: {type(e).__name__}: {e}")
            self.mark_failed(record, video)
            raise StageFailed(f"{self.task_type} failed for {label}: {e}") from e

        try:
            outbox_ids = self.persist(record, video, result)
        except StaleTransition:
            record = self.load(payload)
            if self.already_done(record, self.video_of(record)):
                logger.info(f"[{self.task_type}] {label} was persisted by a concurrent delivery")
                return
            raise

        logger.info(f"[{self.task_type}] {label} done")
        self.dispatcher.flush(outbox_ids)
        self.after_persist(record, video)

    # ── hooks ────────────────────────────────────────────────────────────────

    def load(self, payload):
        return self.store.get_video(payload.video_id)

    def video_of(self, record):
        return record

    def describe(self, record) -> str:
        return f"video {record.id}"

    def already_done(self, record, video) -> bool:
        return self.in_progress is not None and is_past(video.status, self.in_progress)

    def on_skip(self, record, video) -> None:
        pass

    def check_preconditions(self, record, video, payload) -> None:
        pass

    def mark_in_progress(self, record, video) -> None:
        if self.in_progress is not None:
            self.store.transition_video(video.id, self.in_progress)

    def mark_failed(self, record, video) -> None:
        self.store.mark_video_failed(video.id)

    def generate(self, record, video, payload) -> Any:
        raise NotImplementedError

    def persist(self, record, video, result) -> List[int]:
        raise NotImplementedError

    def after_persist(self, record, video) -> None:
        pass


def _require(video, field: str) -> None:
    if not getattr(video, field):
        raise PreconditionFailed(f"Video {video.id} has no {field}")


class ScriptStage(StageHandler):
    task_type = GENERATE_SCRIPT
    in_progress = VideoStatus.GENERATING_SCRIPT

    def __init__(self, store, dispatcher, script_generator):
        super().__init__(store, dispatcher)
        self.script_generator = script_generator

    def check_preconditions(self, record, video, payload):
        _require(video, "theme")

    def generate(self, record, video, payload):
        return self.script_generator.generate_script(video.theme)

    def persist(self, record, video, script):
        return self.store.transition_video(
            video.id,
            VideoStatus.GENERATING_AUDIO,
            patch=VideoPatch(script=script),
            tasks=[generate_audio_task(video.id)],
        )


class AudioStage(StageHandler):
    """Narration audio, then the first fan-out: captions and scenes in parallel."""

    task_type = GENERATE_AUDIO
    in_progress = VideoStatus.GENERATING_AUDIO

    def __init__(self, store, dispatcher, synthesizer, blob_store):
        super().__init__(store, dispatcher)
        self.synthesizer = synthesizer
        self.blob_store = blob_store

    def check_preconditions(self, record, video, payload):
        _require(video, "script")
        _require(video, "voice_id")

    def generate(self, record, video, payload):
        audio = self.synthesizer.synthesize(video.script, video.voice_id)
        return self.blob_store.put(audio, "audio/mpeg", audio_key(video.id))

    def persist(self, record, video, audio_url):
        return self.store.transition_video(
            video.id,
            VideoStatus.GENERATING_CAPTIONS,
            patch=VideoPatch(audio_url=audio_url),
            tasks=[generate_captions_task(video.id), generate_scenes_task(video.id)],
        )


class CaptionsStage(StageHandler):
    """
    Word-level captions from the narration audio.

    Writes only the captions field so it never races the scenes branch on the
    status column, then asks the gate whether the render can start.
    """

    task_type = GENERATE_CAPTIONS

    def __init__(self, store, dispatcher, transcriber, gate):
        super().__init__(store, dispatcher)
        self.transcriber = transcriber
        self.gate = gate

    def already_done(self, record, video):
        return bool(video.captions)

    def on_skip(self, record, video):
        self.gate.check(video.id)

    def check_preconditions(self, record, video, payload):
        _require(video, "audio_url")

    def generate(self, record, video, payload):
        return self.transcriber.transcribe(download(video.audio_url))

    def persist(self, record, video, captions):
        self.store.update_video_fields(video.id, VideoPatch(captions=captions))
        logger.info(f"Video {video.id}: stored {len(captions)} caption words")
        return []

    def after_persist(self, record, video):
        self.gate.check(video.id)


class ScenesStage(StageHandler):
    """
    Scene prompts from the script, one scene row and image task per prompt.

    If rows already exist (a previous delivery crashed part-way) the generator
    is not called again; the existing rows are kept and their unfinished
    images are re-enqueued.
    """

    task_type = GENERATE_SCENES
    in_progress = VideoStatus.GENERATING_SCENES

    def __init__(self, store, dispatcher, script_generator, gate):
        super().__init__(store, dispatcher)
        self.script_generator = script_generator
        self.gate = gate

    def check_preconditions(self, record, video, payload):
        _require(video, "script")

    def generate(self, record, video, payload):
        if self.store.count_scenes(video.id):
            return None
        return self.script_generator.generate_scene_prompts(video.script)

    def persist(self, record, video, prompts):
        outbox_ids: List[int] = []
        if prompts is not None:
            outbox_ids = self._create_scenes(video, prompts)

        existing = self.store.list_scenes(video.id)
        if not existing:
            self.mark_failed(record, video)
            raise StageFailed(f"No scenes could be created for video {video.id}")

        tasks = []
        if prompts is None:
            tasks = [
                generate_scene_image_task(scene.id)
                for scene in existing
                if scene.status in (SceneStatus.PENDING.value, SceneStatus.GENERATING.value)
            ]
            logger.info(f"Video {video.id}: reusing {len(existing)} existing scenes, "
                        f"re-enqueueing {len(tasks)} image task(s)")

        outbox_ids += self.store.transition_video(video.id, VideoStatus.GENERATING_IMAGES, tasks=tasks)
        return outbox_ids

    def _create_scenes(self, video, prompts) -> List[int]:
        outbox_ids: List[int] = []
        created = 0
        for prompt in prompts:
            try:
                scene, ids = self.store.create_scene(
                    video.id,
                    prompt.image_prompt,
                    prompt.index,
                    next_task=generate_scene_image_task,
                )
            except Exception as e:
                logger.error(f"Video {video.id}: failed to create scene {prompt.index}: {e}")
                continue
            created += 1
            outbox_ids += ids
            logger.info(f"Video {video.id}: created scene {scene.id} (index {prompt.index})")
        logger.info(f"Video {video.id}: created {created}/{len(prompts)} scenes")
        return outbox_ids

    def after_persist(self, record, video):
        # Every image may already be done when this is a re-entry
        self.gate.check(video.id)


class SceneImageStage(StageHandler):
    """One scene's image; the fan-in point that may complete the last scene."""

    task_type = GENERATE_SCENE_IMAGE

    def __init__(self, store, dispatcher, image_generator, blob_store, gate):
        super().__init__(store, dispatcher)
        self.image_generator = image_generator
        self.blob_store = blob_store
        self.gate = gate

    def load(self, payload):
        return self.store.get_scene(payload.scene_id)

    def video_of(self, scene):
        return self.store.get_video(scene.video_id)

    def describe(self, scene):
        return f"scene {scene.id} (video {scene.video_id}, index {scene.index})"

    def already_done(self, scene, video):
        return scene.status == SceneStatus.COMPLETED.value and bool(scene.image_url)

    def on_skip(self, scene, video):
        self.gate.check(video.id)

    def check_preconditions(self, scene, video, payload):
        if not scene.prompt:
            raise PreconditionFailed(f"Scene {scene.id} has no prompt")
        if scene.status == SceneStatus.FAILED.value:
            raise PipelineHalted(f"Scene {scene.id} already failed")

    def mark_in_progress(self, scene, video):
        self.store.transition_scene(scene.id, SceneStatus.GENERATING)

    def mark_failed(self, scene, video):
        # The scene set is fixed, so a missing image means the render can never run
        try:
            self.store.transition_scene(scene.id, SceneStatus.FAILED)
        except StaleTransition:
            logger.warning(f"Scene {scene.id} already terminal, not marking failed")
        self.store.mark_video_failed(video.id)

    def generate(self, scene, video, payload):
        image = self.image_generator.generate_image(scene.prompt)
        return self.blob_store.put(image, "image/png", image_key(video.id, scene.index))

    def persist(self, scene, video, image_url):
        self.store.transition_scene(scene.id, SceneStatus.COMPLETED, patch=ScenePatch(image_url=image_url))
        return []

    def after_persist(self, scene, video):
        self.gate.check(video.id)


class RenderStage(StageHandler):
    task_type = RENDER_VIDEO
    in_progress = VideoStatus.RENDERING

    def __init__(self, store, dispatcher, compositor):
        super().__init__(store, dispatcher)
        self.compositor = compositor

    def load(self, payload):
        return self.store.get_video_with_scenes(payload.video_id)

    def check_preconditions(self, video, _, payload):
        _require(video, "audio_url")
        _require(video, "captions")
        if not video.scenes:
            raise PreconditionFailed(f"Video {video.id} has no scenes")
        missing = [scene.index for scene in video.scenes if not scene.image_url]
        if missing:
            raise PreconditionFailed(f"Video {video.id} scenes {missing} have no image")

    def generate(self, video, _, payload):
        captions = load_captions(video.captions) or []
        scenes = [SceneImage(image_url=s.image_url, index=s.index) for s in sorted(video.scenes, key=lambda s: s.index)]
        duration = render_duration(captions, len(scenes))
        return self.compositor.compose(video.id, video.audio_url, scenes, captions, duration)

    def persist(self, video, _, result):
        if not result.video_url:
            logger.info(f"Video {video.id}: render {result.render_id} accepted, awaiting completion")
            return []
        return self.store.transition_video(
            video.id,
            VideoStatus.COMPLETED,
            patch=VideoPatch(video_url=result.video_url),
            expected=(VideoStatus.RENDERING,),
        )


class VideoCompleteStage(StageHandler):
    """Completion signal from an asynchronous render."""

    task_type = VIDEO_COMPLETE

    def already_done(self, video, _):
        return video.status == VideoStatus.COMPLETED.value

    def check_preconditions(self, video, _, payload):
        if not payload.video_url:
            raise InvalidPayload(f"Completion for video {video.id} carries no video URL")

    def generate(self, video, _, payload):
        return payload.video_url

    def persist(self, video, _, video_url):
        return self.store.transition_video(
            video.id,
            VideoStatus.COMPLETED,
            patch=VideoPatch(video_url=video_url),
            expected=(VideoStatus.READY_TO_RENDER, VideoStatus.RENDERING),
        )
