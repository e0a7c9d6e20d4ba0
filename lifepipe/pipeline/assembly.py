"""Final video assembly with ffmpeg.

Two passes over the transition clips, in age order:
- editing: scale+pad every clip to the output resolution and concat with
  the concat filter (audio stripped)
- retiming: speed the edit up by ``source / target`` (never slowed down),
  resample to a fixed fps and trim to the effective target duration

The effective target is the requested target clamped to [min, max] and to
the source duration, so the output always lasts exactly the effective
target with a speed factor >= 1.
"""

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from lifepipe.config import VideoConfig, settings
from lifepipe.errors import AssemblyError

logger = logging.getLogger(__name__)

FfmpegRunner = Callable[[list[str]], Awaitable[None]]
StageCallback = Callable[[str], None]


class Retiming(BaseModel):
    """Duration plan for the retime pass."""

    model_config = ConfigDict(frozen=True)

    source_duration: float
    target_duration: float
    effective_target: float
    speed_factor: float = Field(ge=1.0)

    @property
    def output_duration(self) -> float:
        return round(self.source_duration / self.speed_factor, 3)


def clamp_target_duration(target: Optional[float], config: VideoConfig | None = None) -> int:
    """Clamp a requested duration to [min, max]; None selects the default."""
    config = config or settings.video
    if target is None:
        return config.default_duration_sec
    return int(min(config.max_duration_sec, max(config.min_duration_sec, round(target))))


def compute_retiming(
    clip_count: int, target_duration: float, config: VideoConfig | None = None
) -> Retiming:
    """Plan the speed factor for ``clip_count`` segments played in ``target_duration``."""
    config = config or settings.video
    if clip_count < 1:
        raise AssemblyError("No transition videos to merge")
    source = float(clip_count * config.segment_duration_sec)
    target = float(clamp_target_duration(target_duration, config))
    effective = min(target, source)
    speed = max(1.0, source / effective)
    return Retiming(
        source_duration=source,
        target_duration=target,
        effective_target=effective,
        speed_factor=round(speed, 6),
    )


def ffmpeg_candidates(configured: Optional[str] = None) -> list[str]:
    """Binaries to try in order: configured path, then ``ffmpeg`` on PATH."""
    configured = configured or settings.video.ffmpeg_path
    candidates = [configured] if configured else []
    if "ffmpeg" not in candidates:
        candidates.append("ffmpeg")
    return candidates


def build_edit_args(clip_paths: list[Path], output_path: Path, config: VideoConfig) -> list[str]:
    """ffmpeg arguments for scale+pad+concat of clips in order."""
    width, height, fps = config.width, config.height, config.fps
    args: list[str] = ["-y"]
    for clip in clip_paths:
        args += ["-i", str(clip)]

    filters = [
        f"[{i}:v:0]scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps}[v{i}]"
        for i in range(len(clip_paths))
    ]
    inputs = "".join(f"[v{i}]" for i in range(len(clip_paths)))
    filters.append(f"{inputs}concat=n={len(clip_paths)}:v=1:a=0[outv]")

    args += [
        "-filter_complex", ";".join(filters),
        "-map", "[outv]",
        "-an",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-crf", "18",
        "-pix_fmt", "yuv420p",
        str(output_path),
    ]
    return args


def build_retime_args(
    input_path: Path, output_path: Path, retiming: Retiming, config: VideoConfig
) -> list[str]:
    """ffmpeg arguments for the speed-up, fps and trim pass."""
    return [
        "-y",
        "-i", str(input_path),
        "-filter:v", f"setpts=PTS/{retiming.speed_factor},fps={config.fps}",
        "-an",
        "-t", f"{retiming.effective_target:.3f}",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-crf", "20",
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
        str(output_path),
    ]


def _run_ffmpeg_sync(binary: str, args: list[str]) -> None:
    subprocess.run([binary, *args], check=True, capture_output=True)


async def run_ffmpeg(args: list[str], candidates: Optional[list[str]] = None) -> None:
    """Run ffmpeg with the first binary that can be spawned.

    Raises:
        AssemblyError: Non-zero exit (carries stderr) or no usable binary.
    """
    tried: list[str] = []
    for binary in candidates or ffmpeg_candidates():
        try:
            await asyncio.to_thread(_run_ffmpeg_sync, binary, args)
            return
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"ffmpeg binary {binary} unusable: {e}")
            tried.append(binary)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
            logger.error(f"ffmpeg error: {stderr[-2000:]}")
            raise AssemblyError(f"ffmpeg exited with status {e.returncode}", stderr=stderr) from e

    raise AssemblyError(f"No usable ffmpeg binary (tried: {', '.join(tried)})")


async def assemble_final_video(
    clip_paths: list[Path],
    output_path: Path,
    intermediate_path: Path,
    target_duration: float,
    config: VideoConfig | None = None,
    on_stage: Optional[StageCallback] = None,
    runner: Optional[FfmpegRunner] = None,
) -> Retiming:
    """Build the final video from transition clips in age order.

    ``on_stage`` is called with "editing" and "retiming" as each pass begins.
    The intermediate edit is removed whether or not retiming succeeds.

    Returns:
        The retiming plan; ``output_duration`` is the final video length.
    """
    config = config or settings.video
    runner = runner or run_ffmpeg
    retiming = compute_retiming(len(clip_paths), target_duration, config)

    missing = [p for p in clip_paths if not p.exists()]
    if missing:
        raise AssemblyError(f"Missing transition files: {[str(p) for p in missing]}")

    logger.info(f"Assembling {len(clip_paths)} transitions -> {output_path} ({retiming})")
    try:
        if on_stage:
            on_stage("editing")
        await runner(build_edit_args(clip_paths, intermediate_path, config))

        if on_stage:
            on_stage("retiming")
        await runner(build_retime_args(intermediate_path, output_path, retiming, config))
    finally:
        intermediate_path.unlink(missing_ok=True)

    if not output_path.exists():
        raise AssemblyError(f"ffmpeg reported success but {output_path} is missing")
    return retiming
