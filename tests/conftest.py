"""
Pytest configuration and fixtures.

Every external collaborator is replaced by an in-process fake: image and
transition synthesis write small placeholder files, and ffmpeg is an
injected runner that records its arguments and creates the output file.
"""

from pathlib import Path

import pytest

from lifepipe.config import PipelineConfig, VideoConfig
from lifepipe.orchestrator.service import Orchestrator
from lifepipe.pipeline.context import PipelineContext
from lifepipe.schemas.manifest import FrameRecord, TransitionRecord
from lifepipe.services.file_manager import FileManager
from lifepipe.services.manifest_store import ManifestStore

from tests.fakes import FakeFfmpeg, FakeImageSynthesizer, FakeTransitionSynthesizer


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        ages=[0, 7, 12],
        transition_concurrency=2,
        slot_poll_interval=0.01,
        speculative_wait_timeout=5.0,
        retry_max_attempts=1,
    )


@pytest.fixture
def video_config() -> VideoConfig:
    return VideoConfig()


@pytest.fixture
def files(tmp_path) -> FileManager:
    return FileManager(tmp_path / "outputs", "/outputs")


@pytest.fixture
def manifests(files) -> ManifestStore:
    return ManifestStore(files)


@pytest.fixture
def reference_image(tmp_path) -> Path:
    path = tmp_path / "baby.png"
    path.write_bytes(b"\x89PNG reference")
    return path


@pytest.fixture
def image_synth() -> FakeImageSynthesizer:
    return FakeImageSynthesizer()


@pytest.fixture
def transition_synth() -> FakeTransitionSynthesizer:
    return FakeTransitionSynthesizer()


@pytest.fixture
def ffmpeg() -> FakeFfmpeg:
    return FakeFfmpeg()


@pytest.fixture
def context(tmp_path, manifests, image_synth, transition_synth, ffmpeg, pipeline_config, video_config):
    return PipelineContext(
        manifests,
        image_synth,
        transition_synth,
        None,
        pipeline=pipeline_config,
        video=video_config,
        ffmpeg_runner=ffmpeg,
        uploads_dir=tmp_path / "uploads",
    )


@pytest.fixture
def orchestrator(context) -> Orchestrator:
    return Orchestrator(context)


@pytest.fixture
def make_session(manifests, files, reference_image):
    """Build a session on disk without running the pipeline.

    ``frames`` counts generated frames after the anchor (None: all ages);
    ``transitions`` records a clip for every consecutive pair.
    """

    def _make(ages=(0, 7, 12), frames=None, transitions=False, background_mode="flat"):
        manifest = manifests.create(reference_image, list(ages), background_mode=background_mode)
        sid = manifest.session_id

        anchor_path = files.anchor_path(sid)
        anchor_path.write_bytes(b"anchor")
        manifest.anchor = FrameRecord(
            age=ages[0],
            image_path=str(anchor_path),
            prompt="source",
            source_path=manifest.original_reference_path,
        )
        previous = manifest.anchor
        count = len(ages) - 1 if frames is None else frames
        for age in ages[1:1 + count]:
            path = files.frame_path(sid, age)
            path.write_bytes(f"age {age}".encode())
            frame = FrameRecord(age=age, image_path=str(path), prompt=f"age {age}", source_path=previous.image_path)
            manifest.frames.append(frame)
            previous = frame

        if transitions:
            for a, b in manifest.required_pairs():
                path = files.transition_path(sid, a.age, b.age)
                path.write_bytes(b"clip")
                manifest.transitions.append(TransitionRecord(
                    from_age=a.age,
                    to_age=b.age,
                    video_path=str(path),
                    from_image_path=a.image_path,
                    to_image_path=b.image_path,
                ))
        return manifests.save(manifest)

    return _make
