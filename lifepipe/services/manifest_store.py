"""File-backed session manifest store.

One JSON document per session at
``<outputs_dir>/<session_id>/lifetime_manifest.json``. Writers always
re-load, mutate and save the whole document; saves go through a temp file
and ``os.replace`` so readers never see a half-written manifest.
"""

import logging
import os
import re
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from lifepipe.errors import InvalidSessionError, SessionNotFoundError
from lifepipe.schemas.manifest import SessionManifest
from lifepipe.services.file_manager import FileManager

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "lifetime_manifest.json"
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def new_session_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"lifetime_{stamp}_{secrets.token_hex(3)}"


class ManifestStore:
    """Load, create and atomically save session manifests."""

    def __init__(self, files: FileManager):
        self.files = files

    def _manifest_path(self, session_id: str, create: bool = False) -> Path:
        if not session_id or not SESSION_ID_PATTERN.match(session_id):
            raise InvalidSessionError(f"Invalid session id: {session_id!r}")
        try:
            session_dir = self.files.get_session_dir(session_id, create=create)
        except ValueError as e:
            raise InvalidSessionError(f"Invalid session id: {session_id!r}") from e
        return session_dir / MANIFEST_FILENAME

    def exists(self, session_id: str) -> bool:
        return self._manifest_path(session_id).exists()

    def create(
        self,
        reference_path: Path,
        ages: list[int],
        background_mode: str = "flat",
        gender_hint: str = "auto",
        narrative_track: Optional[str] = None,
    ) -> SessionManifest:
        """Allocate a session directory, copy the reference and write the first manifest."""
        session_id = new_session_id()
        session_dir = self.files.get_session_dir(session_id)
        reference_copy = self.files.copy_reference(session_id, reference_path)
        now = datetime.now(timezone.utc)

        manifest = SessionManifest(
            session_id=session_id,
            created_at=now,
            updated_at=now,
            output_dir=str(session_dir),
            original_reference_path=str(reference_copy),
            background_mode=background_mode,
            gender_hint=gender_hint,
            narrative_track=narrative_track if background_mode == "narrative" else None,
            ages=list(ages),
        )
        logger.info(f"Created session {session_id} ({background_mode}, ages={ages})")
        return self.save(manifest)

    def load(self, session_id: str) -> SessionManifest:
        """Read and validate a manifest.

        Raises:
            InvalidSessionError: Malformed id or corrupt/invalid manifest.
            SessionNotFoundError: No manifest on disk.
        """
        path = self._manifest_path(session_id)
        if not path.exists():
            raise SessionNotFoundError(f"Lifetime session not found: {session_id}")
        try:
            manifest = SessionManifest.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise InvalidSessionError(f"Manifest for {session_id} is invalid: {e}") from e
        if manifest.session_id != session_id:
            raise InvalidSessionError(
                f"Manifest at {path} belongs to session {manifest.session_id}"
            )
        return manifest

    def save(self, manifest: SessionManifest) -> SessionManifest:
        """Validate and atomically write the whole manifest."""
        manifest.updated_at = datetime.now(timezone.utc)
        # Re-validate: in-place mutation skips model validators
        validated = SessionManifest.model_validate(manifest.model_dump())

        path = self._manifest_path(validated.session_id, create=True)
        tmp_path = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
        tmp_path.write_text(validated.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
        return validated

    def update(
        self, session_id: str, mutate: Callable[[SessionManifest], None]
    ) -> SessionManifest:
        """Re-load the manifest, apply ``mutate`` and save the result."""
        manifest = self.load(session_id)
        mutate(manifest)
        return self.save(manifest)
