"""
Video and scene status state machines.

A video only ever moves forward through the ranked statuses below; ``failed``
is reachable from every non-terminal status and is absorbing. In-progress
markers list themselves as an allowed predecessor so that a stage re-entered
after a worker crash can write its marker again.
"""

from enum import Enum
from typing import Any, Dict, Tuple

from common.errors import InvalidTransition


class VideoStatus(str, Enum):
    """Video status enumeration"""
    PENDING = "pending"
    GENERATING_SCRIPT = "generating_script"
    GENERATING_AUDIO = "generating_audio"
    GENERATING_CAPTIONS = "generating_captions"
    GENERATING_SCENES = "generating_scenes"
    GENERATING_IMAGES = "generating_images"
    READY_TO_RENDER = "ready_to_render"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"


class SceneStatus(str, Enum):
    """Scene status enumeration"""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


STATUS_RANK: Dict[VideoStatus, int] = {
    VideoStatus.PENDING: 0,
    VideoStatus.GENERATING_SCRIPT: 1,
    VideoStatus.GENERATING_AUDIO: 2,
    VideoStatus.GENERATING_CAPTIONS: 3,
    VideoStatus.GENERATING_SCENES: 4,
    VideoStatus.GENERATING_IMAGES: 5,
    VideoStatus.READY_TO_RENDER: 6,
    VideoStatus.RENDERING: 7,
    VideoStatus.COMPLETED: 8,
}

TERMINAL_STATUSES = frozenset({VideoStatus.COMPLETED, VideoStatus.FAILED})

# to_status -> statuses it may be entered from
VIDEO_TRANSITIONS: Dict[VideoStatus, Tuple[VideoStatus, ...]] = {
    VideoStatus.GENERATING_SCRIPT: (VideoStatus.PENDING, VideoStatus.GENERATING_SCRIPT),
    VideoStatus.GENERATING_AUDIO: (VideoStatus.GENERATING_SCRIPT, VideoStatus.GENERATING_AUDIO),
    VideoStatus.GENERATING_CAPTIONS: (VideoStatus.GENERATING_AUDIO,),
    VideoStatus.GENERATING_SCENES: (VideoStatus.GENERATING_CAPTIONS, VideoStatus.GENERATING_SCENES),
    VideoStatus.GENERATING_IMAGES: (VideoStatus.GENERATING_SCENES,),
    VideoStatus.READY_TO_RENDER: (VideoStatus.GENERATING_IMAGES,),
    VideoStatus.RENDERING: (VideoStatus.READY_TO_RENDER, VideoStatus.RENDERING),
    VideoStatus.COMPLETED: (VideoStatus.READY_TO_RENDER, VideoStatus.RENDERING),
    VideoStatus.FAILED: tuple(s for s in VideoStatus if s not in TERMINAL_STATUSES),
}

SCENE_TRANSITIONS: Dict[SceneStatus, Tuple[SceneStatus, ...]] = {
    SceneStatus.GENERATING: (SceneStatus.PENDING, SceneStatus.GENERATING),
    SceneStatus.COMPLETED: (SceneStatus.GENERATING,),
    SceneStatus.FAILED: (SceneStatus.PENDING, SceneStatus.GENERATING),
}

# Statuses from which the render-readiness gate may fire. Scene rows are all
# committed by the time a video reaches generating_images.
GATE_OPEN_STATUSES: Tuple[VideoStatus, ...] = (VideoStatus.GENERATING_IMAGES,)

# field -> (rank from which it may be set, rank from which it is required)
FIELD_RANKS: Dict[str, Tuple[int, int]] = {
    "script": (2, 2),
    "audio_url": (3, 3),
    "captions": (3, 6),
    "video_url": (7, 8),
}


def allowed_predecessors(to_status: VideoStatus) -> Tuple[VideoStatus, ...]:
    """Statuses a video may be in for a move to ``to_status``."""
    try:
        return VIDEO_TRANSITIONS[VideoStatus(to_status)]
    except KeyError:
        raise InvalidTransition(f"Nothing may transition into {to_status}")


def can_transition(from_status: VideoStatus, to_status: VideoStatus) -> bool:
    to_status = VideoStatus(to_status)
    if to_status not in VIDEO_TRANSITIONS:
        return False
    return VideoStatus(from_status) in VIDEO_TRANSITIONS[to_status]


def can_transition_scene(from_status: SceneStatus, to_status: SceneStatus) -> bool:
    to_status = SceneStatus(to_status)
    if to_status not in SCENE_TRANSITIONS:
        return False
    return SceneStatus(from_status) in SCENE_TRANSITIONS[to_status]


def allowed_scene_predecessors(to_status: SceneStatus) -> Tuple[SceneStatus, ...]:
    try:
        return SCENE_TRANSITIONS[SceneStatus(to_status)]
    except KeyError:
        raise InvalidTransition(f"Nothing may transition a scene into {to_status}")


def is_past(current: VideoStatus, stage_status: VideoStatus) -> bool:
    """True when ``current`` is strictly further along than ``stage_status``."""
    current = VideoStatus(current)
    if current == VideoStatus.FAILED:
        return False
    return STATUS_RANK[current] > STATUS_RANK[VideoStatus(stage_status)]


def validate_video_fields(status: VideoStatus, fields: Dict[str, Any]) -> None:
    """
    Check that the non-null artifact fields of a video agree with its status.

    ``fields`` maps field names (script, audio_url, captions, video_url) to
    their post-update values. A failed video may carry any combination.
    """
    status = VideoStatus(status)
    if status == VideoStatus.FAILED:
        return

    rank = STATUS_RANK[status]
    for field, (allowed_from, required_from) in FIELD_RANKS.items():
        present = fields.get(field) not in (None, "")
        if present and rank < allowed_from:
            raise InvalidTransition(f"Video in status '{status.value}' cannot have {field} set")
        if not present and rank >= required_from:
            raise InvalidTransition(f"Video in status '{status.value}' requires {field}")

