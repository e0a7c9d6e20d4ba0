"""Offline providers for development (``providers.mock = true``).

Image edits echo the reference image back as a ``data:`` URL, so the frame
chain produces real image files. Transitions return a small placeholder
payload; final assembly needs real clips.
"""

import asyncio
import logging
from pathlib import Path

from lifepipe.services.providers.base import (
    GenderClassifier,
    GenderPrediction,
    ImageOptions,
    ImageSynthesizer,
    TransitionSynthesizer,
)
from lifepipe.services.providers.data_urls import (
    bytes_to_data_url,
    decode_data_url,
    file_to_data_url,
    write_atomic,
)

logger = logging.getLogger(__name__)

MOCK_LATENCY_SEC = 0.05


class MockImageSynthesizer(ImageSynthesizer):
    async def generate(
        self, reference_images: list[Path], prompt: str, options: ImageOptions
    ) -> str:
        await asyncio.sleep(MOCK_LATENCY_SEC)
        logger.info(f"[mock] image edit from {reference_images[0].name}")
        return file_to_data_url(reference_images[0])

    async def download(self, url: str, dest: Path) -> Path:
        return write_atomic(dest, decode_data_url(url))


class MockTransitionSynthesizer(TransitionSynthesizer):
    async def generate_transition(
        self,
        start_image: Path,
        end_image: Path,
        prompt: str,
        duration: int,
        aspect_ratio: str,
    ) -> str:
        await asyncio.sleep(MOCK_LATENCY_SEC)
        logger.info(f"[mock] transition {start_image.name} -> {end_image.name}")
        return bytes_to_data_url(b"mock-transition-video", "video/mp4")

    async def download(self, url: str, dest: Path) -> Path:
        return write_atomic(dest, decode_data_url(url))


class MockGenderClassifier(GenderClassifier):
    async def predict(self, image_path: Path) -> GenderPrediction:
        return GenderPrediction(gender_hint="unknown", confidence=0.0)
