"""Configuration settings for the StoryReels API service."""

import os
import sys
from dotenv import load_dotenv  # type: ignore

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), '../.env'))

from common.config import DATABASE_URL, DEBUG, LOG_FORMAT, LOG_LEVEL  # noqa: E402

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8080"))
API_RELOAD = os.getenv("API_RELOAD", "false").lower() == "true"  # Disable reload in production

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3001")

# Local blob-store output, served under /media
MEDIA_DIR = os.getenv("MEDIA_DIR", "./data/media")
