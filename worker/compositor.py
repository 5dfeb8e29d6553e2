"""Client for the external video compositor (render service)."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from common.schemas import Caption
from worker.config import COMPOSITOR_TIMEOUT, COMPOSITOR_URL
from worker.retry import http_call_with_retry

logger = logging.getLogger(__name__)


class CompositionError(Exception):
    """The compositor answered but reported failure."""


@dataclass
class CompositionResult:
    """``video_url`` when the render finished inline; otherwise only ``render_id``."""
    video_url: Optional[str] = None
    render_id: Optional[str] = None


@dataclass
class SceneImage:
    image_url: str
    index: int


class Compositor:
    def __init__(self, url: str = COMPOSITOR_URL, timeout: int = COMPOSITOR_TIMEOUT):
        self.url = url
        self.timeout = timeout

    def compose(self, video_id: int, audio_url: str, scenes: List[SceneImage],
                captions: List[Caption], duration: float) -> CompositionResult:
        payload = {
            "videoId": video_id,
            "audioUrl": audio_url,
            "scenes": [{"image_url": s.image_url, "index": s.index} for s in scenes],
            "captions": [c.model_dump() for c in captions],
            "videoDuration": duration,
        }
        logger.info(f"Requesting render of video {video_id} ({len(scenes)} scenes, {duration:.2f}s)")
        response = http_call_with_retry("POST", self.url, json=payload, timeout=self.timeout)
        body = response.json()

        if not body.get("success"):
            raise CompositionError(body.get("error") or "Compositor reported failure")
        result = CompositionResult(video_url=body.get("videoUrl"), render_id=body.get("renderId"))
        if not result.video_url and not result.render_id:
            raise CompositionError("Compositor returned neither videoUrl nor renderId")
        return result
