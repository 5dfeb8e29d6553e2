"""Configuration settings for the StoryReels stage worker service."""

import os
import sys
from dotenv import load_dotenv  # type: ignore

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), '../.env'))

from common.config import DATABASE_URL, LOG_FORMAT, LOG_LEVEL, REDIS_URL  # noqa: E402

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
SCRIPT_MODEL = os.getenv("SCRIPT_MODEL", "gpt-4.1-nano")
SCENE_MODEL = os.getenv("SCENE_MODEL", "gpt-4.1-mini")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gpt-image-1")
IMAGE_SIZE = os.getenv("IMAGE_SIZE", "1024x1536")  # portrait, for short-form video
TRANSCRIBE_MODEL = os.getenv("TRANSCRIBE_MODEL", "whisper-1")

ELEVEN_API_KEY = os.getenv("ELEVEN_API_KEY")
ELEVEN_MODEL_ID = os.getenv("ELEVEN_MODEL_ID", "eleven_multilingual_v2")

TTS_MAX_RETRIES = int(os.getenv("TTS_MAX_RETRIES", "3"))
TTS_RETRY_DELAY = int(os.getenv("TTS_RETRY_DELAY", "2"))
TTS_BACKOFF_MULTIPLIER = int(os.getenv("TTS_BACKOFF_MULTIPLIER", "2"))

COMPOSITOR_URL = os.getenv("COMPOSITOR_URL", "http://renderer:3000/render")
COMPOSITOR_TIMEOUT = int(os.getenv("COMPOSITOR_TIMEOUT", "600"))

# Blob storage: "local" writes under MEDIA_DIR, "gcs" uploads to GCS_BUCKET
BLOB_BACKEND = os.getenv("BLOB_BACKEND", "local")
MEDIA_DIR = os.getenv("MEDIA_DIR", "./data/media")
MEDIA_BASE_URL = os.getenv("MEDIA_BASE_URL", "http://localhost:8080/media")
GCS_BUCKET = os.getenv("GCS_BUCKET")
GCS_SIGNED_URL_TTL = int(os.getenv("GCS_SIGNED_URL_TTL", "604800"))

SCENE_FALLBACK_SECONDS = float(os.getenv("SCENE_FALLBACK_SECONDS", "5.0"))

OUTBOX_SWEEP_INTERVAL = int(os.getenv("OUTBOX_SWEEP_INTERVAL", "30"))
OUTBOX_SWEEP_MIN_AGE = int(os.getenv("OUTBOX_SWEEP_MIN_AGE", "60"))

HEALTH_CHECK_PORT = int(os.getenv("HEALTH_CHECK_PORT", "5100"))
HEARTBEAT_INTERVAL = int(os.getenv("HEARTBEAT_INTERVAL", "10"))
WORKER_ID = os.getenv("WORKER_ID")
