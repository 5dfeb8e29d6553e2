"""Scene image generation with the OpenAI images API."""

import base64
import logging

from openai import OpenAI  # type: ignore

from worker.config import IMAGE_MODEL, IMAGE_SIZE, OPENAI_API_KEY
from worker.retry import download

logger = logging.getLogger(__name__)


class ImageGenerator:
    def __init__(self, client=None, model: str = IMAGE_MODEL, size: str = IMAGE_SIZE):
        self.client = client or OpenAI(api_key=OPENAI_API_KEY)
        self.model = model
        self.size = size

    def generate_image(self, prompt: str) -> bytes:
        """Return PNG bytes for ``prompt``."""
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        response = self.client.images.generate(
            model=self.model,
            prompt=prompt,
            size=self.size,
            n=1,
        )
        if not response.data:
            raise ValueError("No images generated")

        image = response.data[0]
        if getattr(image, "b64_json", None):
            data = base64.b64decode(image.b64_json)
        elif getattr(image, "url", None):
            data = download(image.url)
        else:
            raise ValueError("Generated image has no data")

        if not data:
            raise ValueError("Generated image has no data")
        logger.debug(f"Generated {len(data)} byte image for prompt: {prompt[:80]}...")
        return data
