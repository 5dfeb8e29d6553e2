"""Task contracts: type names, payload models, priority lanes."""

from typing import Dict, Type

from pydantic import BaseModel, ValidationError  # type: ignore

from common.errors import InvalidPayload
from common.schemas import (
    SceneTaskPayload,
    TaskEnvelope,
    VideoCompletePayload,
    VideoTaskPayload,
)

# Task types
GENERATE_SCRIPT = "video:generate_script"
GENERATE_AUDIO = "video:generate_audio"
GENERATE_CAPTIONS = "video:generate_captions"
GENERATE_SCENES = "video:generate_scenes"
GENERATE_SCENE_IMAGE = "video:generate_scene_image"
RENDER_VIDEO = "video:render"
VIDEO_COMPLETE = "video:complete"

PAYLOAD_MODELS: Dict[str, Type[BaseModel]] = {
    GENERATE_SCRIPT: VideoTaskPayload,
    GENERATE_AUDIO: VideoTaskPayload,
    GENERATE_CAPTIONS: VideoTaskPayload,
    GENERATE_SCENES: VideoTaskPayload,
    GENERATE_SCENE_IMAGE: SceneTaskPayload,
    RENDER_VIDEO: VideoTaskPayload,
    VIDEO_COMPLETE: VideoCompletePayload,
}

# Priority lanes, weighted the way the worker pool drains them
LANE_PRIORITIES = {
    "critical": 6,
    "default": 3,
    "low": 1,
}

TASK_LANES = {
    RENDER_VIDEO: "critical",
    VIDEO_COMPLETE: "critical",
    GENERATE_SCENE_IMAGE: "low",
}


def lane_for(task_type: str) -> str:
    return TASK_LANES.get(task_type, "default")


def make_task(task_type: str, **payload) -> TaskEnvelope:
    """Build a validated envelope for ``task_type``."""
    model = PAYLOAD_MODELS.get(task_type)
    if model is None:
        raise InvalidPayload(f"Unknown task type: {task_type}")
    try:
        body = model(**payload)
    except ValidationError as e:
        raise InvalidPayload(f"Invalid payload for {task_type}: {e}") from e
    return TaskEnvelope(task_type=task_type, payload=body.model_dump(), lane=lane_for(task_type))


def parse_payload(envelope: TaskEnvelope) -> BaseModel:
    """Decode an envelope's payload into its contract model."""
    model = PAYLOAD_MODELS.get(envelope.task_type)
    if model is None:
        raise InvalidPayload(f"Unknown task type: {envelope.task_type}")
    try:
        return model.model_validate(envelope.payload)
    except ValidationError as e:
        raise InvalidPayload(f"Invalid payload for {envelope.task_type}: {e}") from e


def generate_script_task(video_id: int) -> TaskEnvelope:
    return make_task(GENERATE_SCRIPT, video_id=video_id)


def generate_audio_task(video_id: int) -> TaskEnvelope:
    return make_task(GENERATE_AUDIO, video_id=video_id)


def generate_captions_task(video_id: int) -> TaskEnvelope:
    return make_task(GENERATE_CAPTIONS, video_id=video_id)


def generate_scenes_task(video_id: int) -> TaskEnvelope:
    return make_task(GENERATE_SCENES, video_id=video_id)


def generate_scene_image_task(scene_id: int) -> TaskEnvelope:
    return make_task(GENERATE_SCENE_IMAGE, scene_id=scene_id)


def render_video_task(video_id: int) -> TaskEnvelope:
    return make_task(RENDER_VIDEO, video_id=video_id)


def video_complete_task(video_id: int, video_url: str) -> TaskEnvelope:
    return make_task(VIDEO_COMPLETE, video_id=video_id, video_url=video_url)
