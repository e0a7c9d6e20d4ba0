"""Retiming math, ffmpeg argument building and the two-pass assembly."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from lifepipe.config import VideoConfig
from lifepipe.errors import AssemblyError
from lifepipe.orchestrator.state import next_stage
from lifepipe.pipeline.assembly import (
    Retiming,
    assemble_final_video,
    build_edit_args,
    build_retime_args,
    clamp_target_duration,
    compute_retiming,
    ffmpeg_candidates,
    run_ffmpeg,
)

from tests.fakes import FakeFfmpeg

CONFIG = VideoConfig()


@pytest.mark.parametrize("clip_count", [1, 2, 3, 5, 9, 14])
@pytest.mark.parametrize("target", [None, 1, 8, 12, 30, 45, 90])
def test_retiming_never_slows_down_and_hits_effective_target(clip_count, target):
    clamped = clamp_target_duration(target, CONFIG)
    retiming = compute_retiming(clip_count, clamped, CONFIG)

    source = clip_count * CONFIG.segment_duration_sec
    assert retiming.source_duration == source
    assert retiming.effective_target == min(clamped, source)
    assert retiming.speed_factor >= 1.0
    assert retiming.output_duration == pytest.approx(retiming.effective_target, abs=1e-3)


def test_clamp_bounds():
    assert clamp_target_duration(None, CONFIG) == CONFIG.default_duration_sec
    assert clamp_target_duration(0, CONFIG) == CONFIG.min_duration_sec
    assert clamp_target_duration(1000, CONFIG) == CONFIG.max_duration_sec
    assert clamp_target_duration(15.6, CONFIG) == 16


def test_retiming_requires_clips():
    with pytest.raises(AssemblyError, match="No transition videos"):
        compute_retiming(0, 12, CONFIG)


def test_retiming_plan_is_immutable_and_never_slows_down():
    retiming = compute_retiming(3, 12, CONFIG)
    with pytest.raises(ValidationError):
        retiming.speed_factor = 2.0
    with pytest.raises(ValidationError):
        Retiming(source_duration=10, target_duration=12, effective_target=12, speed_factor=0.8)


def test_edit_args_concat_clips_in_order(tmp_path):
    clips = [tmp_path / f"transition_{i}.mp4" for i in range(3)]
    args = build_edit_args(clips, tmp_path / "edit.mp4", CONFIG)

    inputs = [args[i + 1] for i, arg in enumerate(args) if arg == "-i"]
    assert inputs == [str(c) for c in clips]
    graph = args[args.index("-filter_complex") + 1]
    assert "[v0][v1][v2]concat=n=3:v=1:a=0[outv]" in graph
    assert "scale=1080:1920:force_original_aspect_ratio=decrease" in graph
    assert "-an" in args
    assert args[-1] == str(tmp_path / "edit.mp4")


def test_retime_args_trim_to_effective_target(tmp_path):
    retiming = compute_retiming(6, 12, CONFIG)
    args = build_retime_args(tmp_path / "edit.mp4", tmp_path / "final.mp4", retiming, CONFIG)

    assert args[args.index("-filter:v") + 1] == "setpts=PTS/2.5,fps=30"
    assert args[args.index("-t") + 1] == "12.000"
    assert "+faststart" in args


def test_ffmpeg_candidates_prefers_configured():
    assert ffmpeg_candidates("/opt/ffmpeg/bin/ffmpeg") == ["/opt/ffmpeg/bin/ffmpeg", "ffmpeg"]
    assert ffmpeg_candidates("ffmpeg") == ["ffmpeg"]


@pytest.mark.asyncio
async def test_run_ffmpeg_without_usable_binary(tmp_path):
    with pytest.raises(AssemblyError, match="No usable ffmpeg binary"):
        await run_ffmpeg(["-version"], [str(tmp_path / "nope" / "ffmpeg")])


@pytest.mark.asyncio
async def test_assemble_walks_stages_and_removes_intermediate(tmp_path):
    clips = []
    for i in range(2):
        clip = tmp_path / f"transition_{i}.mp4"
        clip.write_bytes(b"clip")
        clips.append(clip)
    runner = FakeFfmpeg()
    stages: list[str] = []

    retiming = await assemble_final_video(
        clips,
        tmp_path / "final.mp4",
        tmp_path / "edit.mp4",
        12,
        config=CONFIG,
        on_stage=stages.append,
        runner=runner,
    )

    assert stages == ["editing", "retiming"]
    assert next_stage("idle") == stages[0]
    assert retiming.effective_target == 10
    assert (tmp_path / "final.mp4").is_file()
    assert not (tmp_path / "edit.mp4").exists()
    assert runner.calls[1][runner.calls[1].index("-i") + 1] == str(tmp_path / "edit.mp4")


@pytest.mark.asyncio
async def test_assemble_rejects_missing_clip(tmp_path):
    runner = FakeFfmpeg()
    with pytest.raises(AssemblyError, match="Missing transition files"):
        await assemble_final_video(
            [tmp_path / "gone.mp4"], tmp_path / "final.mp4", tmp_path / "edit.mp4", 12,
            config=CONFIG, runner=runner,
        )
    assert runner.calls == []


@pytest.mark.asyncio
async def test_assemble_reports_missing_output(tmp_path):
    clip = tmp_path / "transition_0.mp4"
    clip.write_bytes(b"clip")

    async def _silent(args):
        return None

    with pytest.raises(AssemblyError, match="is missing"):
        await assemble_final_video(
            [clip], tmp_path / "final.mp4", tmp_path / "edit.mp4", 12, config=CONFIG, runner=_silent,
        )


def test_next_stage_rejects_terminal():
    with pytest.raises(ValueError):
        next_stage("done")
