"""ElevenLabs text-to-speech."""

import logging

from worker.config import ELEVEN_API_KEY, ELEVEN_MODEL_ID
from worker.retry import http_call_with_retry

logger = logging.getLogger(__name__)

ELEVEN_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


class SpeechSynthesizer:
    def __init__(self, api_key: str = ELEVEN_API_KEY, model_id: str = ELEVEN_MODEL_ID):
        self.headers = {"xi-api-key": api_key or ""}
        self.model_id = model_id

    def synthesize(self, text: str, voice_id: str) -> bytes:
        """
        Call ElevenLabs TTS API and return the MP3 bytes, with retry logic.
        """
        url = ELEVEN_TTS_URL.format(voice_id=voice_id)
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.8},
        }
        try:
            response = http_call_with_retry("POST", url, json=payload, headers=self.headers)
        except Exception as e:
            logger.error(f"Failed to generate TTS for text: {text[:50]}... Error: {e}")
            raise

        if not response.content:
            raise ValueError("Text-to-speech returned no audio")
        return response.content
