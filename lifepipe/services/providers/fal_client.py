"""fal.ai queue API client and the synthesizers built on it.

Provides:
- FalClient: async httpx client for queue.fal.run (submit, poll, result, download)
- FalImageSynthesizer: nano-banana-pro image edit with a single reference
- FalTransitionSynthesizer: Kling image-to-video with a tail frame

Local images are sent inline as base64 ``data:`` URLs.

Usage:
    from lifepipe.services.providers.fal_client import get_fal_client

    client = get_fal_client()
    result = await client.run("fal-ai/nano-banana-pro/edit", {...})
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from lifepipe.config import settings
from lifepipe.errors import ProviderError
from lifepipe.services.providers.base import (
    ImageOptions,
    ImageSynthesizer,
    TransitionSynthesizer,
)
from lifepipe.services.providers.data_urls import (
    decode_data_url,
    file_to_data_url,
    write_atomic,
)

logger = logging.getLogger(__name__)

_DONE_STATUSES = {"COMPLETED"}
_FAILED_STATUSES = {"FAILED", "ERROR", "CANCELLED"}


def _is_transient(exc: BaseException) -> bool:
    """Network errors, rate limits and 5xx responses are worth retrying."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


_transient_retry = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(settings.pipeline.retry_max_attempts),
    wait=wait_exponential(multiplier=1, min=2, max=30) + wait_random(0, 2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class FalClient:
    """Async client for the fal.ai queue REST API.

    Handles request submission, status polling, result retrieval and
    size-capped output download.
    """

    def __init__(
        self,
        api_key: str,
        queue_url: str = "https://queue.fal.run",
        timeout: float = 120.0,
        poll_interval: float = 2.0,
        poll_max: int = 450,
        max_download_bytes: int = 500 * 1024 * 1024,
    ):
        self.api_key = api_key
        self.queue_url = queue_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.poll_max = poll_max
        self.max_download_bytes = max_download_bytes
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"Authorization": f"Key {self.api_key}"},
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout, connect=30.0),
            )
        return self._client

    @_transient_retry
    async def submit(self, model_id: str, payload: dict) -> dict:
        """Queue a request. Returns the queue record with status/response URLs."""
        url = f"{self.queue_url}/{model_id}"
        logger.info("POST %s", url)
        response = await self.client.post(url, json=payload)
        logger.info("  submit response: HTTP %d", response.status_code)
        response.raise_for_status()
        data = response.json()
        logger.info("  request_id: %s", data.get("request_id"))
        return data

    @_transient_retry
    async def poll_status(self, status_url: str) -> dict:
        response = await self.client.get(status_url)
        logger.debug("GET %s: HTTP %d", status_url, response.status_code)
        response.raise_for_status()
        return response.json()

    @_transient_retry
    async def fetch_result(self, response_url: str) -> dict:
        logger.info("GET %s", response_url)
        response = await self.client.get(response_url)
        response.raise_for_status()
        return response.json()

    async def run(self, model_id: str, payload: dict) -> dict:
        """Submit a request and wait for its result.

        Raises:
            ProviderError: On a failed request, an HTTP error that survived
                retries, or when polling exceeds poll_max attempts.
        """
        try:
            queued = await self.submit(model_id, payload)
            request_id = queued["request_id"]
            status_url = queued.get("status_url") or (
                f"{self.queue_url}/{model_id}/requests/{request_id}/status"
            )
            response_url = queued.get("response_url") or (
                f"{self.queue_url}/{model_id}/requests/{request_id}"
            )

            for _ in range(self.poll_max):
                status = await self.poll_status(status_url)
                raw_status = status.get("status", "UNKNOWN")
                if raw_status in _DONE_STATUSES:
                    if status.get("error"):
                        raise ProviderError(f"{model_id} request {request_id} failed: {status['error']}")
                    return await self.fetch_result(response_url)
                if raw_status in _FAILED_STATUSES:
                    raise ProviderError(f"{model_id} request {request_id} ended with status {raw_status}")
                await asyncio.sleep(self.poll_interval)
        except httpx.HTTPError as e:
            raise ProviderError(f"{model_id} request failed: {e}") from e

        raise ProviderError(
            f"{model_id} request {request_id} timed out after {self.poll_max} polls"
        )

    async def download(self, url: str, dest: Path) -> Path:
        """Download an output URL to ``dest``, enforcing max_download_bytes.

        ``data:`` URLs are decoded locally.
        """
        if url.startswith("data:"):
            try:
                data = decode_data_url(url)
            except ValueError as e:
                raise ProviderError(str(e)) from e
        else:
            try:
                data = await self._download_http(url)
            except httpx.HTTPError as e:
                raise ProviderError(f"Failed to download {url}: {e}") from e

        if len(data) > self.max_download_bytes:
            raise ProviderError(
                f"Download too large: {len(data)} bytes exceeds {self.max_download_bytes}"
            )
        write_atomic(dest, data)
        logger.info("Saved %d bytes to %s", len(data), dest)
        return dest

    @_transient_retry
    async def _download_http(self, url: str) -> bytes:
        chunks: list[bytes] = []
        received = 0
        async with self.client.stream("GET", url) as response:
            response.raise_for_status()
            declared = int(response.headers.get("content-length") or 0)
            if declared > self.max_download_bytes:
                raise ProviderError(
                    f"Download too large: {declared} bytes exceeds {self.max_download_bytes}"
                )
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_download_bytes:
                    raise ProviderError(
                        f"Download exceeded {self.max_download_bytes} bytes"
                    )
                chunks.append(chunk)
        return b"".join(chunks)

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class FalImageSynthesizer(ImageSynthesizer):
    def __init__(self, client: FalClient, model_id: str | None = None):
        self.client = client
        self.model_id = model_id or settings.models.image_edit

    async def generate(
        self, reference_images: list[Path], prompt: str, options: ImageOptions
    ) -> str:
        payload = {
            "prompt": prompt,
            "image_urls": [file_to_data_url(path) for path in reference_images],
            "resolution": options.resolution,
            "aspect_ratio": options.aspect_ratio,
            "num_images": options.num_images,
            "output_format": options.output_format,
        }
        result = await self.client.run(self.model_id, payload)
        images = result.get("images") or []
        if not images or not images[0].get("url"):
            raise ProviderError(f"{self.model_id} returned no images")
        return images[0]["url"]

    async def download(self, url: str, dest: Path) -> Path:
        return await self.client.download(url, dest)

    async def close(self) -> None:
        await self.client.close()


class FalTransitionSynthesizer(TransitionSynthesizer):
    def __init__(self, client: FalClient, model_id: str | None = None):
        self.client = client
        self.model_id = model_id or settings.models.transition_video

    async def generate_transition(
        self,
        start_image: Path,
        end_image: Path,
        prompt: str,
        duration: int,
        aspect_ratio: str,
    ) -> str:
        payload = {
            "prompt": prompt,
            "image_url": file_to_data_url(start_image),
            "tail_image_url": file_to_data_url(end_image),
            "duration": str(duration),
            "aspect_ratio": aspect_ratio,
            "negative_prompt": "blur, distort, and low quality",
            "cfg_scale": 0.5,
        }
        result = await self.client.run(self.model_id, payload)
        video_url = result.get("video_url") or (result.get("video") or {}).get("url")
        if not video_url:
            raise ProviderError(
                f"{self.model_id} returned no video URL. Response keys: {sorted(result)}"
            )
        return video_url

    async def download(self, url: str, dest: Path) -> Path:
        return await self.client.download(url, dest)

    async def close(self) -> None:
        await self.client.close()


# ---------------------------------------------------------------------------
# Module-level lazy singleton
# ---------------------------------------------------------------------------

_fal_client: Optional[FalClient] = None


def get_fal_client(api_key: Optional[str] = None) -> FalClient:
    """Get or create a singleton FalClient from settings.providers."""
    global _fal_client

    resolved_key = api_key or settings.providers.fal_api_key
    if _fal_client is not None and _fal_client.api_key != resolved_key:
        _fal_client = None

    if _fal_client is None:
        if not resolved_key:
            raise ValueError(
                "fal.ai API key not configured. Set LIFEPIPE_PROVIDERS__FAL_API_KEY "
                "or enable mock providers with LIFEPIPE_PROVIDERS__MOCK=true."
            )
        cfg = settings.providers
        _fal_client = FalClient(
            resolved_key,
            queue_url=cfg.fal_queue_url,
            timeout=cfg.request_timeout,
            poll_interval=cfg.poll_interval,
            poll_max=cfg.poll_max,
            max_download_bytes=cfg.max_download_bytes,
        )

    return _fal_client
