"""Shared data models for StoryReels services."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field  # type: ignore

from common.status import SceneStatus


class Caption(BaseModel):
    """A single spoken word with its timing, in seconds."""
    word: str
    start_time: float
    end_time: float


class ScenePrompt(BaseModel):
    """One image prompt returned by the scene-prompt generator."""
    image_prompt: str
    index: int


# ── task payloads ────────────────────────────────────────────────────────────

class VideoTaskPayload(BaseModel):
    """Payload for every stage that acts on a whole video."""
    video_id: int


class SceneTaskPayload(BaseModel):
    """Payload for the per-scene image stage."""
    scene_id: int


class VideoCompletePayload(BaseModel):
    """Direct completion signal from an asynchronous compositor."""
    video_id: int
    video_url: str


class TaskEnvelope(BaseModel):
    """What actually travels over the queue."""
    task_type: str
    payload: Dict[str, Any]
    lane: str = "default"
    attempt: int = 0
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)


# ── typed partial updates ────────────────────────────────────────────────────

class VideoPatch(BaseModel):
    """Partial update of a video's non-status fields. Only set fields are written."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    script: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    captions: Optional[List[Caption]] = None


class ScenePatch(BaseModel):
    """Partial update of a scene's non-status fields."""
    model_config = ConfigDict(extra="forbid")

    prompt: Optional[str] = None
    image_url: Optional[str] = None


# ── read models ──────────────────────────────────────────────────────────────

class SceneOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    video_id: int
    prompt: str
    image_url: Optional[str] = None
    index: int
    status: SceneStatus


class VideoOut(BaseModel):
    """Status information for a video generation job."""
    id: int
    owner_id: str
    title: Optional[str] = None
    theme: str
    voice_id: str
    status: str
    script: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    captions: Optional[List[Caption]] = None
    scenes: List[SceneOut] = []


class CreateVideoRequest(BaseModel):
    owner_id: str
    theme: str = Field(min_length=1)
    voice_id: str = Field(min_length=1)
    title: Optional[str] = None


class VideoStatusOut(BaseModel):
    id: int
    status: str
    video_url: Optional[str] = None
