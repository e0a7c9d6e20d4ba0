"""Settings sources and validation."""

import pytest
from pydantic import ValidationError

from lifepipe.config import PipelineConfig, Settings


@pytest.fixture
def yaml_config(tmp_path, monkeypatch):
    path = tmp_path / "lifepipe.yaml"
    path.write_text(
        "pipeline:\n"
        "  transition_concurrency: 5\n"
        "  ages: [0, 10, 20]\n"
        "video:\n"
        "  fps: 24\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("LIFEPIPE_CONFIG_FILE", str(path))
    return path


def test_yaml_file_is_loaded(yaml_config):
    settings = Settings()
    assert settings.pipeline.transition_concurrency == 5
    assert settings.pipeline.ages == [0, 10, 20]
    assert settings.video.fps == 24
    assert settings.video.width == 1080


def test_env_overrides_yaml(yaml_config, monkeypatch):
    monkeypatch.setenv("LIFEPIPE_PIPELINE__TRANSITION_CONCURRENCY", "7")
    assert Settings().pipeline.transition_concurrency == 7


def test_keyword_arguments_win(yaml_config, monkeypatch):
    monkeypatch.setenv("LIFEPIPE_PROVIDERS__MOCK", "false")
    assert Settings(providers={"mock": True}).providers.mock is True


def test_missing_yaml_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("LIFEPIPE_CONFIG_FILE", str(tmp_path / "absent.yaml"))
    settings = Settings()
    assert settings.pipeline.transition_concurrency == 3
    assert settings.video.default_duration_sec == 12


@pytest.mark.parametrize("ages", [[0], [0, 7, 7], [12, 7, 0]])
def test_pipeline_ages_must_ascend(ages):
    with pytest.raises(ValidationError):
        PipelineConfig(ages=ages)
