"""Blob stores for generated media: local disk or Google Cloud Storage."""

import logging
import os
from datetime import datetime, timedelta

from google.cloud import storage  # type: ignore

from worker.config import BLOB_BACKEND, GCS_BUCKET, GCS_SIGNED_URL_TTL, MEDIA_BASE_URL, MEDIA_DIR

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.utcnow().strftime("%Y%m%d%H%M%S%f")


def audio_key(video_id: int) -> str:
    return f"audio/{video_id}/{_timestamp()}.mp3"


def image_key(video_id: int, index: int) -> str:
    return f"images/{video_id}/scene_{index}_{_timestamp()}.png"


class LocalBlobStore:
    """Writes under ``media_dir``; the API serves that directory at ``base_url``."""

    def __init__(self, media_dir: str = MEDIA_DIR, base_url: str = MEDIA_BASE_URL):
        self.media_dir = media_dir
        self.base_url = base_url.rstrip("/")

    def put(self, data: bytes, content_type: str, key: str) -> str:
        if not data:
            raise ValueError("data cannot be empty")
        path = os.path.join(self.media_dir, *key.split("/"))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.debug(f"Stored {len(data)} bytes ({content_type}) at {path}")
        return f"{self.base_url}/{key}"


class GCSBlobStore:
    """Uploads to a GCS bucket and hands out V4 signed GET URLs."""

    def __init__(self, bucket: str = GCS_BUCKET, signed_url_ttl: int = GCS_SIGNED_URL_TTL, client=None):
        if not bucket:
            raise ValueError("GCS_BUCKET environment variable not set")
        self.client = client or storage.Client()
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl

    def put(self, data: bytes, content_type: str, key: str) -> str:
        if not data:
            raise ValueError("data cannot be empty")
        blob = self.client.bucket(self.bucket).blob(key)
        blob.upload_from_string(data, content_type=content_type)
        logger.info(f"Uploaded gs://{self.bucket}/{key}")
        return blob.generate_signed_url(
            version="v4",
            expiration=datetime.utcnow() + timedelta(seconds=self.signed_url_ttl),
            method="GET",
        )


def create_blob_store(backend: str = BLOB_BACKEND):
    if backend == "gcs":
        return GCSBlobStore()
    if backend == "local":
        return LocalBlobStore()
    raise ValueError(f"Unknown BLOB_BACKEND: {backend}")
