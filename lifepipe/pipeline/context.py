"""Shared collaborators for pipeline steps."""

from pathlib import Path
from typing import Optional

from lifepipe.config import PipelineConfig, VideoConfig, settings
from lifepipe.pipeline.assembly import FfmpegRunner
from lifepipe.services.file_manager import FileManager
from lifepipe.services.manifest_store import ManifestStore
from lifepipe.services.providers.base import (
    GenderClassifier,
    ImageOptions,
    ImageSynthesizer,
    TransitionSynthesizer,
)


class PipelineContext:
    """Stores, providers and tuning the frame and video steps run against."""

    def __init__(
        self,
        manifests: ManifestStore,
        image: ImageSynthesizer,
        transition: TransitionSynthesizer,
        classifier: Optional[GenderClassifier] = None,
        pipeline: PipelineConfig | None = None,
        video: VideoConfig | None = None,
        ffmpeg_runner: FfmpegRunner | None = None,
        uploads_dir: Path | None = None,
    ):
        self.manifests = manifests
        self.files: FileManager = manifests.files
        self.image = image
        self.transition = transition
        self.classifier = classifier
        self.pipeline = pipeline or settings.pipeline
        self.video = video or settings.video
        self.ffmpeg_runner = ffmpeg_runner
        self.uploads_dir = Path(uploads_dir or settings.storage.uploads_dir)

    def image_options(self) -> ImageOptions:
        return ImageOptions(
            resolution=self.pipeline.image_resolution,
            aspect_ratio=self.pipeline.aspect_ratio,
        )
