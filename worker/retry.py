"""In-process retry for HTTP-backed generator clients."""

import logging
import socket
import time

import requests  # type: ignore
from requests.exceptions import ConnectionError, HTTPError, Timeout  # type: ignore

from worker.config import TTS_BACKOFF_MULTIPLIER, TTS_MAX_RETRIES, TTS_RETRY_DELAY

logger = logging.getLogger(__name__)


def http_call_with_retry(method: str, url: str, max_retries: int = TTS_MAX_RETRIES,
                         retry_delay: float = TTS_RETRY_DELAY,
                         backoff_multiplier: float = TTS_BACKOFF_MULTIPLIER,
                         timeout: float = 30, **kwargs) -> requests.Response:
    """
    Make an HTTP call with retry logic for handling transient network errors.
    Retries on connection errors, timeouts, socket errors (including ConnectionResetError), and 5xx server errors.
    4xx client errors are raised immediately.
    """
    last_exception = None

    for attempt in range(max_retries + 1):
        try:
            response = requests.request(method, url, timeout=timeout, **kwargs)
            response.raise_for_status()
            return response
        except HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status >= 500:
                last_exception = e
                if attempt < max_retries:
                    delay = retry_delay * (backoff_multiplier ** attempt)
                    logger.warning(f"{url} server error (attempt {attempt + 1}/{max_retries + 1}): HTTP {status}; "
                                   f"retrying in {delay} seconds")
                    time.sleep(delay)
                else:
                    logger.error(f"{url} server error after {max_retries + 1} attempts: HTTP {status}")
            else:
                logger.error(f"{url} client error (not retrying): HTTP {status}")
                raise
        except (ConnectionError, Timeout, socket.error, OSError) as e:
            last_exception = e
            if attempt < max_retries:
                delay = retry_delay * (backoff_multiplier ** attempt)
                logger.warning(f"{url} network error (attempt {attempt + 1}/{max_retries + 1}): "
                               f"{type(e).__name__}: {e}; retrying in {delay} seconds")
                time.sleep(delay)
            else:
                logger.error(f"{url} network error after {max_retries + 1} attempts: {type(e).__name__}: {e}")

    raise last_exception


def download(url: str, timeout: float = 60) -> bytes:
    """GET ``url`` with retries and return the body."""
    return http_call_with_retry("GET", url, timeout=timeout).content
