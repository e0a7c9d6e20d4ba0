"""Lifetime Pipeline - AI age-progression frames, transitions, and final video.

This module provides startup validation functions to ensure required
dependencies are available before pipeline execution begins.
Call validate_dependencies() during application startup.
"""

import logging
import subprocess

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies(ffmpeg_path: str | None = None) -> None:
    """Validate required system dependencies are available.

    This function should be called during application startup to fail fast
    with clear installation instructions if required dependencies are missing.

    Args:
        ffmpeg_path: Explicit ffmpeg binary to check. Defaults to the
            configured binary candidates (video.ffmpeg_path, then "ffmpeg").

    Raises:
        RuntimeError: If no ffmpeg candidate is found or functional.
    """
    from lifepipe.pipeline.assembly import ffmpeg_candidates

    candidates = [ffmpeg_path] if ffmpeg_path else ffmpeg_candidates()
    last_error: Exception | None = None
    for binary in candidates:
        try:
            result = subprocess.run(
                [binary, '-version'],
                capture_output=True,
                check=True,
                text=True
            )
            version_line = result.stdout.split('\n')[0]
            logger.info(f"ffmpeg validated ({binary}): {version_line}")
            return
        except (subprocess.CalledProcessError, FileNotFoundError, PermissionError) as e:
            last_error = e

    raise RuntimeError(
        "ffmpeg not found. Install ffmpeg or set LIFEPIPE_VIDEO__FFMPEG_PATH.\n"
        "Ubuntu/Debian: sudo apt-get install ffmpeg\n"
        "macOS: brew install ffmpeg\n"
        "Windows: https://ffmpeg.org/download.html"
    ) from last_error
