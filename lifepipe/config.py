"""Configuration management with YAML and environment variable support.

The YAML file defaults to ``config.yaml`` in the working directory and can
be pointed elsewhere with ``LIFEPIPE_CONFIG_FILE``.
"""

import os
from pathlib import Path
from typing import Any, ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

CONFIG_FILE_ENV = "LIFEPIPE_CONFIG_FILE"


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading top-level sections from a YAML file."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_path: Path | None = None):
        super().__init__(settings_cls)
        self.yaml_path = yaml_path or Path(os.environ.get(CONFIG_FILE_ENV, "config.yaml"))
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            if self.yaml_path.is_file():
                with open(self.yaml_path, encoding="utf-8") as f:
                    self._data = yaml.safe_load(f) or {}
            else:
                self._data = {}
        return self._data

    def get_field_value(self, field, field_name: str) -> tuple[Any, str, bool]:
        return self._load().get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        data = self._load()
        return {name: data[name] for name in self.settings_cls.model_fields if name in data}


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration for the gender classifier.

    The classifier is skipped when project_id is not set.
    """

    project_id: Optional[str] = None
    location: str = "us-central1"


class ProvidersConfig(BaseModel):
    """External synthesis provider settings."""

    fal_api_key: str = ""
    fal_queue_url: str = "https://queue.fal.run"
    mock: bool = False
    request_timeout: float = 120.0
    poll_interval: float = 2.0
    poll_max: int = 450
    max_download_bytes: int = 500 * 1024 * 1024


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    image_edit: str = "fal-ai/nano-banana-pro/edit"
    transition_video: str = "fal-ai/kling-video/v2.1/pro/image-to-video"
    gender_classifier: str = "gemini-2.5-flash"


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    ages: list[int] = Field(default_factory=lambda: [0, 7, 12, 18, 25, 35, 45, 55, 65, 75])
    image_resolution: str = "2K"
    aspect_ratio: str = "9:16"
    transition_concurrency: int = 3
    slot_poll_interval: float = 1.0
    speculative_wait_timeout: float = 600.0
    job_retention_seconds: int = 2 * 60 * 60
    retry_max_attempts: int = 3

    @field_validator("ages")
    @classmethod
    def ages_ascending(cls, v: list[int]) -> list[int]:
        """Require at least two strictly ascending ages."""
        if len(v) < 2 or any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("ages must hold at least two strictly ascending values")
        return v


class VideoConfig(BaseModel):
    """Transition and final video assembly parameters."""

    segment_duration_sec: int = 5
    min_duration_sec: int = 8
    max_duration_sec: int = 45
    default_duration_sec: int = 12
    fps: int = 30
    width: int = 1080
    height: int = 1920
    ffmpeg_path: Optional[str] = None


class StorageConfig(BaseModel):
    """Filesystem locations for sessions and uploads."""

    outputs_dir: Path = Path("outputs")
    uploads_dir: Path = Path("uploads")
    public_prefix: str = "/outputs"

    @field_validator("outputs_dir", "uploads_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Application settings.

    Sources, highest priority first: keyword arguments, ``LIFEPIPE_*``
    environment variables (``__`` separates nested keys, e.g.
    ``LIFEPIPE_PIPELINE__TRANSITION_CONCURRENCY=2``), ``.env``, the YAML
    file, field defaults.
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="LIFEPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = Field(default_factory=GoogleCloudConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    video: VideoConfig = Field(default_factory=VideoConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


settings = Settings()
