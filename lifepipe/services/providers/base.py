"""Abstract collaborator interfaces for synthesis and classification.

The pipeline only talks to these classes. Concrete adapters (fal.ai,
Vertex AI, mock) live beside this module and are chosen in registry.py.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class ImageOptions(BaseModel):
    """Output options for a single image-edit request."""
    resolution: str = "2K"
    aspect_ratio: str = "9:16"
    num_images: int = 1
    output_format: str = "png"


class GenderPrediction(BaseModel):
    """Structured output of the gender classifier."""
    gender_hint: Literal["male", "female", "unknown"] = Field(
        description="Apparent gender presentation of the person in the portrait, or 'unknown'"
    )
    confidence: float = Field(
        default=0.0,
        description="Confidence 0.0-1.0 for the prediction",
    )


class ImageSynthesizer(ABC):
    """Image-to-image synthesis with a single reference input."""

    @abstractmethod
    async def generate(
        self, reference_images: list[Path], prompt: str, options: ImageOptions
    ) -> str:
        """Run one edit and return the result URL (http(s) or data:)."""

    @abstractmethod
    async def download(self, url: str, dest: Path) -> Path:
        """Fetch a result URL to ``dest``."""

    async def close(self) -> None:
        pass


class TransitionSynthesizer(ABC):
    """First/last-frame image-to-video synthesis."""

    @abstractmethod
    async def generate_transition(
        self,
        start_image: Path,
        end_image: Path,
        prompt: str,
        duration: int,
        aspect_ratio: str,
    ) -> str:
        """Render a clip morphing ``start_image`` into ``end_image``; return its URL."""

    @abstractmethod
    async def download(self, url: str, dest: Path) -> Path:
        """Fetch a result URL to ``dest``."""

    async def close(self) -> None:
        pass


class GenderClassifier(ABC):
    @abstractmethod
    async def predict(self, image_path: Path) -> GenderPrediction:
        ...
