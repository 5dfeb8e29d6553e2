"""Speech-to-text with word-level timestamps (OpenAI transcription API)."""

import logging
from typing import List

from openai import OpenAI  # type: ignore

from common.schemas import Caption
from worker.config import OPENAI_API_KEY, TRANSCRIBE_MODEL

logger = logging.getLogger(__name__)


def _field(obj, name):
    return obj.get(name) if isinstance(obj, dict) else getattr(obj, name, None)


class Transcriber:
    def __init__(self, client=None, model: str = TRANSCRIBE_MODEL):
        self.client = client or OpenAI(api_key=OPENAI_API_KEY)
        self.model = model

    def transcribe(self, audio: bytes, filename: str = "narration.mp3") -> List[Caption]:
        """Transcribe ``audio`` into words with start/end times in seconds."""
        result = self.client.audio.transcriptions.create(
            model=self.model,
            file=(filename, audio),
            response_format="verbose_json",
            timestamp_granularities=["word"],
        )

        captions = [
            Caption(
                word=str(_field(w, "word")).strip(),
                start_time=float(_field(w, "start")),
                end_time=float(_field(w, "end")),
            )
            for w in (_field(result, "words") or [])
            if str(_field(w, "word") or "").strip()
        ]
        if not captions:
            raise ValueError("No captions generated from audio")
        return captions
