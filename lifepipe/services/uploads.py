"""Fetch a reference photo given by URL into the uploads directory."""

import logging
import secrets
from pathlib import Path

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from lifepipe.errors import ProviderError
from lifepipe.services.providers.data_urls import write_atomic

logger = logging.getLogger(__name__)

MAX_REFERENCE_BYTES = 10 * 1024 * 1024

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def is_remote_reference(reference: str) -> bool:
    return reference.startswith(("http://", "https://"))


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def _fetch(url: str) -> tuple[str, bytes]:
    async with httpx.AsyncClient(follow_redirects=True, timeout=60.0) as client:
        response = await client.get(url)
        response.raise_for_status()
        mime_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        return mime_type, response.content


async def download_reference(url: str, uploads_dir: Path) -> Path:
    """Download a JPG/PNG/WebP reference photo (10MB cap).

    Raises:
        ProviderError: Fetch failed, wrong content type, empty or too large.
    """
    try:
        mime_type, data = await _fetch(url)
    except httpx.HTTPError as e:
        raise ProviderError(f"Failed to fetch reference image: {e}") from e

    if mime_type not in _EXTENSIONS:
        raise ProviderError("Reference URL must point to a JPG, PNG, or WebP image")
    if not data:
        raise ProviderError("Reference URL returned empty content")
    if len(data) > MAX_REFERENCE_BYTES:
        raise ProviderError("Reference image exceeds 10MB limit")

    dest = Path(uploads_dir) / f"reference_{secrets.token_hex(6)}{_EXTENSIONS[mime_type]}"
    write_atomic(dest, data)
    logger.info(f"Fetched reference image {url} -> {dest}")
    return dest
