"""Provider adapters: fal.ai queue protocol, data URLs, mock backend."""

import httpx
import pytest

from lifepipe.config import Settings
from lifepipe.errors import ProviderError
from lifepipe.services.providers.base import ImageOptions
from lifepipe.services.providers.data_urls import decode_data_url, file_to_data_url
from lifepipe.services.providers.fal_client import (
    FalClient,
    FalImageSynthesizer,
    FalTransitionSynthesizer,
)
from lifepipe.services.providers.mock import MockImageSynthesizer, MockTransitionSynthesizer
from lifepipe.services.providers.registry import get_providers

QUEUE = "https://queue.test"
MODEL = "fal-ai/test-model"


def _fal_client(handler, **kwargs) -> FalClient:
    client = FalClient("test-key", queue_url=QUEUE, poll_interval=0, **kwargs)
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def _queue_handler(statuses: list[str], result: dict, seen: list[str], status_code: int = 200):
    remaining = iter(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        seen.append(f"{request.method} {url}")
        if request.method == "POST":
            if status_code != 200:
                return httpx.Response(status_code, json={"detail": "bad input"})
            return httpx.Response(200, json={
                "request_id": "req-1",
                "status_url": f"{QUEUE}/{MODEL}/requests/req-1/status",
                "response_url": f"{QUEUE}/{MODEL}/requests/req-1",
            })
        if url.endswith("/status"):
            return httpx.Response(200, json={"status": next(remaining)})
        if url.endswith("/requests/req-1"):
            return httpx.Response(200, json=result)
        if url.startswith("https://cdn.test/"):
            return httpx.Response(200, content=b"x" * 64)
        return httpx.Response(404)

    return handler


# ---------------------------------------------------------------------------
# fal.ai queue client
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_image_edit_submits_polls_and_fetches(reference_image):
    seen: list[str] = []
    handler = _queue_handler(
        ["IN_QUEUE", "IN_PROGRESS", "COMPLETED"],
        {"images": [{"url": "https://cdn.test/out.png"}]},
        seen,
    )
    synth = FalImageSynthesizer(_fal_client(handler), MODEL)

    url = await synth.generate([reference_image], "age him", ImageOptions())

    assert url == "https://cdn.test/out.png"
    assert seen[0] == f"POST {QUEUE}/{MODEL}"
    assert sum(line.endswith("/status") for line in seen) == 3
    assert seen[-1] == f"GET {QUEUE}/{MODEL}/requests/req-1"
    await synth.close()


@pytest.mark.asyncio
async def test_transition_reads_video_url(reference_image):
    handler = _queue_handler(["COMPLETED"], {"video": {"url": "https://cdn.test/clip.mp4"}}, [])
    synth = FalTransitionSynthesizer(_fal_client(handler), MODEL)

    url = await synth.generate_transition(reference_image, reference_image, "grow up", 5, "9:16")

    assert url == "https://cdn.test/clip.mp4"


@pytest.mark.asyncio
async def test_failed_request_raises_provider_error():
    handler = _queue_handler(["IN_PROGRESS", "FAILED"], {}, [])
    client = _fal_client(handler)

    with pytest.raises(ProviderError, match="FAILED"):
        await client.run(MODEL, {"prompt": "x"})


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    seen: list[str] = []
    client = _fal_client(_queue_handler([], {}, seen, status_code=422))

    with pytest.raises(ProviderError, match="request failed"):
        await client.run(MODEL, {"prompt": "x"})
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_polling_gives_up_after_poll_max():
    client = _fal_client(_queue_handler(["IN_PROGRESS"] * 3, {}, []), poll_max=3)

    with pytest.raises(ProviderError, match="timed out after 3 polls"):
        await client.run(MODEL, {"prompt": "x"})


@pytest.mark.asyncio
async def test_download_writes_file_and_enforces_cap(tmp_path):
    client = _fal_client(_queue_handler([], {}, []), max_download_bytes=100)
    dest = await client.download("https://cdn.test/out.png", tmp_path / "frames" / "out.png")
    assert dest.read_bytes() == b"x" * 64

    small = _fal_client(_queue_handler([], {}, []), max_download_bytes=10)
    with pytest.raises(ProviderError, match="exceed"):
        await small.download("https://cdn.test/out.png", tmp_path / "big.png")
    assert not (tmp_path / "big.png").exists()


# ---------------------------------------------------------------------------
# Data URLs and mock backend
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("url", ["https://example.com/a.png", "data:image/png,plain", "data:image/png;base64"])
def test_decode_rejects_non_base64_data_urls(url):
    with pytest.raises(ValueError):
        decode_data_url(url)


@pytest.mark.asyncio
async def test_mock_image_echoes_reference(reference_image, tmp_path):
    synth = MockImageSynthesizer()

    url = await synth.generate([reference_image], "prompt", ImageOptions())
    dest = await synth.download(url, tmp_path / "age_07.png")

    assert url == file_to_data_url(reference_image)
    assert dest.read_bytes() == reference_image.read_bytes()


@pytest.mark.asyncio
async def test_mock_transition_writes_placeholder(reference_image, tmp_path):
    synth = MockTransitionSynthesizer()

    url = await synth.generate_transition(reference_image, reference_image, "p", 5, "9:16")
    dest = await synth.download(url, tmp_path / "transition_00_to_07.mp4")

    assert dest.stat().st_size > 0


def test_registry_selects_mock_backend():
    providers = get_providers(Settings(providers={"mock": True}))

    assert isinstance(providers.image, MockImageSynthesizer)
    assert isinstance(providers.transition, MockTransitionSynthesizer)
    assert providers.classifier is not None


def test_registry_requires_fal_key():
    with pytest.raises(ValueError, match="API key"):
        get_providers(Settings(providers={"mock": False, "fal_api_key": ""}))
