"""
File management service for lifepipe.

Handles structured filesystem artifact storage with path traversal protection.
Creates per-session directories with subdirectories for frames, transitions, and output.
"""
import logging
import secrets
import shutil
from pathlib import Path
from typing import Iterable

from lifepipe.config import settings

logger = logging.getLogger(__name__)


def _token() -> str:
    return secrets.token_hex(4)


class FileManager:
    """
    Manage filesystem artifacts for lifetime sessions.

    Creates structured directories:
    - {base_dir}/{session_id}/frames/ - Anchor and age frame images
    - {base_dir}/{session_id}/transitions/ - One clip per consecutive age pair
    - {base_dir}/{session_id}/output/ - Final assembled video

    Frame and final video paths carry a random token so a regenerated
    artifact never reuses the path of the one it replaces. Transition paths
    are deterministic per age pair.

    Implements path traversal protection to prevent directory escape attacks.
    """

    def __init__(self, base_dir: str | Path | None = None, public_prefix: str | None = None):
        """
        Initialize FileManager with base directory.

        Args:
            base_dir: Root directory for all session artifacts.
                     If None, uses settings.storage.outputs_dir
            public_prefix: URL prefix the base directory is served under.
                     If None, uses settings.storage.public_prefix
        """
        if base_dir is None:
            base_dir = settings.storage.outputs_dir
        if public_prefix is None:
            public_prefix = settings.storage.public_prefix

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.public_prefix = public_prefix.rstrip("/")

    def get_session_dir(self, session_id: str, create: bool = True) -> Path:
        """
        Get (and by default create) session directory with subdirectories.

        Raises:
            ValueError: If session_id creates path outside base_dir (traversal attack)
        """
        session_dir = (self.base_dir / session_id).resolve()

        if not session_dir.is_relative_to(self.base_dir) or session_dir == self.base_dir:
            raise ValueError("Invalid session path")

        if create:
            session_dir.mkdir(exist_ok=True)
            (session_dir / "frames").mkdir(exist_ok=True)
            (session_dir / "transitions").mkdir(exist_ok=True)
            (session_dir / "output").mkdir(exist_ok=True)

        return session_dir

    def copy_reference(self, session_id: str, source: Path) -> Path:
        """Copy the user's reference photo into the session directory."""
        suffix = source.suffix.lower() or ".png"
        dest = self.get_session_dir(session_id) / f"input_reference{suffix}"
        shutil.copyfile(source, dest)
        return dest

    def anchor_path(self, session_id: str) -> Path:
        return self.get_session_dir(session_id) / "frames" / f"anchor_{_token()}.png"

    def frame_path(self, session_id: str, age: int) -> Path:
        return self.get_session_dir(session_id) / "frames" / f"age_{age:02d}_{_token()}.png"

    def transition_path(self, session_id: str, from_age: int, to_age: int) -> Path:
        filename = f"transition_{from_age:02d}_to_{to_age:02d}.mp4"
        return self.get_session_dir(session_id) / "transitions" / filename

    def final_video_path(self, session_id: str) -> Path:
        return self.get_session_dir(session_id) / "output" / f"lifetime_{_token()}.mp4"

    def intermediate_path(self, session_id: str) -> Path:
        return self.get_session_dir(session_id) / "output" / f"edit_{_token()}.mp4"

    def public_url(self, path: str | Path) -> str:
        """Map an artifact path to the URL it is served under."""
        resolved = Path(path).resolve()
        if not resolved.is_relative_to(self.base_dir):
            return ""
        return f"{self.public_prefix}/{resolved.relative_to(self.base_dir).as_posix()}"

    def remove_files(self, paths: Iterable[str | Path]) -> None:
        """Delete artifacts that are no longer referenced.

        Only files inside base_dir are touched; missing files are ignored.
        """
        for path in paths:
            resolved = Path(path).resolve()
            if not resolved.is_relative_to(self.base_dir):
                logger.warning(f"Refusing to delete file outside outputs dir: {resolved}")
                continue
            try:
                resolved.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete {resolved}: {e}")
