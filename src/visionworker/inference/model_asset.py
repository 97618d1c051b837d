"""
Model asset loading.

The model blob is opaque here: it is read from a local path or downloaded
from an http(s) URL and handed to the backend loader as bytes.
"""

import logging
from pathlib import Path

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import BackendUnavailable

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0


def is_url(source: str | Path) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _download(url: str, timeout: float) -> bytes:
    """Download with retry on network errors (HTTP status errors are not retried)."""
    response = httpx.get(url, timeout=timeout, follow_redirects=True)
    response.raise_for_status()
    return response.content


def load_model_bytes(
    source: str | Path, timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS
) -> bytes:
    """
    Fetch the model blob from a path or URL.

    Args:
        source: Local file path or http(s) URL
        timeout: Download timeout in seconds (URLs only)

    Returns:
        Raw model bytes

    Raises:
        BackendUnavailable: If the model cannot be read or is empty
    """
    try:
        if is_url(source):
            logger.info(f"Fetching model from {source}")
            data = _download(str(source), timeout)
        else:
            path = Path(source)
            logger.info(f"Loading model from {path}")
            data = path.read_bytes()
    except (OSError, httpx.HTTPError) as e:
        logger.error(f"Failed to fetch model {source}: {e}")
        raise BackendUnavailable(f"Failed to fetch model {source}: {e}") from e

    if not data:
        raise BackendUnavailable(f"Model {source} is empty")

    logger.info(f"Model loaded: {len(data)} bytes")
    return data
