"""Orchestrator facade: the entry points the API and CLI call.

Jobs run as asyncio tasks on the caller's event loop. The HTTP layer
starts them and forgets them; the CLI and tests ``join`` them. Start
methods validate synchronously and raise before any task is created.
"""

import asyncio
import logging
import secrets
import time
from pathlib import Path
from typing import Optional

from lifepipe.config import Settings, settings as default_settings
from lifepipe.errors import (
    JobConflictError,
    JobNotFoundError,
    MissingFramesError,
)
from lifepipe.orchestrator.state import is_active
from lifepipe.pipeline.assembly import clamp_target_duration
from lifepipe.pipeline.context import PipelineContext
from lifepipe.pipeline.frames import regenerate_frame, run_frame_job, timeline_view, total_steps
from lifepipe.pipeline.prompts import select_narrative_track
from lifepipe.pipeline.videos import run_video_job
from lifepipe.schemas.jobs import FrameJob, FrameProgress, VideoJob, VideoProgress
from lifepipe.schemas.manifest import BACKGROUND_MODES, GENDER_HINTS, SessionManifest
from lifepipe.services.file_manager import FileManager
from lifepipe.services.job_store import InMemoryJobStore, JobStore
from lifepipe.services.manifest_store import ManifestStore
from lifepipe.services.providers.registry import Providers, get_providers
from lifepipe.services.uploads import is_remote_reference

logger = logging.getLogger(__name__)


def _job_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class Orchestrator:
    """Starts, tracks and joins frame and video jobs."""

    def __init__(
        self,
        context: PipelineContext,
        frame_jobs: JobStore[FrameJob] | None = None,
        video_jobs: JobStore[VideoJob] | None = None,
        providers: Optional[Providers] = None,
    ):
        self.context = context
        retention = context.pipeline.job_retention_seconds
        self.frame_jobs = frame_jobs if frame_jobs is not None else InMemoryJobStore(retention)
        self.video_jobs = video_jobs if video_jobs is not None else InMemoryJobStore(retention)
        self._providers = providers
        self._tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Orchestrator":
        settings = settings or default_settings
        providers = get_providers(settings)
        files = FileManager(settings.storage.outputs_dir, settings.storage.public_prefix)
        context = PipelineContext(
            ManifestStore(files),
            providers.image,
            providers.transition,
            providers.classifier,
            pipeline=settings.pipeline,
            video=settings.video,
            uploads_dir=settings.storage.uploads_dir,
        )
        return cls(context, providers=providers)

    def _spawn(self, job_id: str, coro) -> asyncio.Task:
        task = asyncio.create_task(coro, name=job_id)
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return task

    # ------------------------------------------------------------------
    # Frame jobs
    # ------------------------------------------------------------------

    def start_frame_job(
        self,
        reference: str | Path,
        background_mode: str = "flat",
        gender_hint: str = "auto",
        ages: Optional[list[int]] = None,
        narrative_track: Optional[str] = None,
    ) -> dict:
        """Validate inputs and launch a frame job.

        Returns:
            ``{"job_id", "status", "total_steps", "ages"}``

        Raises:
            ValueError: Unknown mode/hint/track, bad ages, or missing reference file.
        """
        if background_mode not in BACKGROUND_MODES:
            raise ValueError(f"Invalid background mode '{background_mode}'. Supported: {BACKGROUND_MODES}")
        if gender_hint not in GENDER_HINTS:
            raise ValueError(f"Invalid gender hint '{gender_hint}'. Supported: {GENDER_HINTS}")

        ages = list(ages) if ages else list(self.context.pipeline.ages)
        if len(ages) < 2 or any(b <= a for a, b in zip(ages, ages[1:])):
            raise ValueError("ages must hold at least two strictly ascending values")

        reference = str(reference)
        if not is_remote_reference(reference) and not Path(reference).is_file():
            raise ValueError(f"Reference image not found: {reference}")

        track = select_narrative_track(narrative_track) if background_mode == "narrative" else None

        now = self.frame_jobs.now()
        job = FrameJob(
            job_id=_job_id("lrun"),
            started_at=now,
            updated_at=now,
            background_mode=background_mode,
            ages=ages,
            progress=FrameProgress(total=total_steps(background_mode, ages)),
        )
        self.frame_jobs.put(job)
        self._spawn(
            job.job_id,
            run_frame_job(
                self.context,
                self.frame_jobs,
                job.job_id,
                reference,
                background_mode,
                gender_hint,
                ages,
                track,
            ),
        )
        logger.info(f"Queued frame job {job.job_id} ({background_mode}, {len(ages)} ages)")
        return {
            "job_id": job.job_id,
            "status": job.status,
            "total_steps": job.progress.total,
            "ages": ages,
        }

    def get_frame_job(self, job_id: str) -> dict:
        job = self.frame_jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Lifetime job not found: {job_id}")
        return job.snapshot()

    def _latest_frame_job(self, session_id: str) -> Optional[FrameJob]:
        matching = [job for job in self.frame_jobs.values() if job.session_id == session_id]
        return max(matching, key=lambda job: job.started_at, default=None)

    def _active_video_job(self, session_id: str) -> Optional[VideoJob]:
        for job in self.video_jobs.values():
            if job.session_id == session_id and is_active(job.status):
                return job
        return None

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------

    async def regenerate_frame(
        self, session_id: str, age: int, gender_hint: Optional[str] = None
    ) -> dict:
        """Regenerate one frame and return the updated session snapshot.

        Speculative transitions of the session's frame job are discarded along
        with the manifest's.

        Raises:
            JobConflictError: The session's frame job or a video job is still active.
            ValueError: Unknown gender hint.
        """
        if gender_hint is not None and gender_hint not in GENDER_HINTS:
            raise ValueError(f"Invalid gender hint '{gender_hint}'. Supported: {GENDER_HINTS}")
        frame_job = self._latest_frame_job(session_id)
        if frame_job is not None and is_active(frame_job.status):
            raise JobConflictError(
                f"Lifetime job {frame_job.job_id} is still generating frames for session {session_id}"
            )
        active = self._active_video_job(session_id)
        if active is not None:
            raise JobConflictError(
                f"Video creation job {active.job_id} is running for session {session_id}"
            )
        speculative = frame_job.scheduler if frame_job is not None else None
        manifest = await regenerate_frame(self.context, session_id, age, gender_hint, speculative)
        return self.session_snapshot(manifest)

    # ------------------------------------------------------------------
    # Video jobs
    # ------------------------------------------------------------------

    def start_video_job(self, session_id: str, target_duration_sec: Optional[float] = None) -> dict:
        """Validate the session and launch a video job.

        Raises:
            SessionNotFoundError, InvalidSessionError: Unknown or bad session.
            MissingFramesError: Timeline incomplete.
            JobConflictError: A video job for the session is already active.
        """
        manifest = self.context.manifests.load(session_id)
        if not manifest.is_complete():
            raise MissingFramesError(
                f"Session {session_id} is missing frames "
                f"({len(manifest.timeline())}/{len(manifest.ages)})"
            )
        active = self._active_video_job(session_id)
        if active is not None:
            raise JobConflictError(
                f"Video creation job {active.job_id} is already running for session {session_id}"
            )

        target = clamp_target_duration(target_duration_sec, self.context.video)
        frame_job = self._latest_frame_job(session_id)
        speculative = frame_job.scheduler if frame_job is not None else None

        now = self.video_jobs.now()
        job = VideoJob(
            job_id=_job_id("lvid"),
            session_id=session_id,
            started_at=now,
            updated_at=now,
            target_duration_sec=target,
            progress=VideoProgress(total=len(manifest.ages)),
        )
        self.video_jobs.put(job)
        self._spawn(
            job.job_id,
            run_video_job(
                self.context,
                self.video_jobs,
                job.job_id,
                session_id,
                target,
                speculative,
            ),
        )
        logger.info(f"Queued video job {job.job_id} for {session_id} (target {target}s)")
        return {
            "job_id": job.job_id,
            "status": job.status,
            "total_steps": job.progress.total,
            "target_duration_sec": target,
        }

    def get_video_job(self, job_id: str) -> dict:
        job = self.video_jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Video creation job not found: {job_id}")
        return job.snapshot()

    # ------------------------------------------------------------------
    # Sessions and lifecycle
    # ------------------------------------------------------------------

    def session_snapshot(self, manifest: SessionManifest) -> dict:
        files = self.context.files
        final = manifest.final_video
        return {
            "session_id": manifest.session_id,
            "background_mode": manifest.background_mode,
            "gender_hint": manifest.gender_hint,
            "narrative_track": manifest.narrative_track,
            "ages": manifest.ages,
            "updated_at": manifest.updated_at.isoformat(),
            "frames": [f.model_dump() for f in timeline_view(self.context, manifest.timeline())],
            "transitions": [
                {
                    "from_age": t.from_age,
                    "to_age": t.to_age,
                    "video_path": t.video_path,
                    "video_url": files.public_url(t.video_path),
                }
                for t in manifest.transitions
            ],
            "final_video": None if final is None else {
                "path": final.path,
                "url": files.public_url(final.path),
                "duration_sec": final.duration_sec,
                "speed_factor": final.speed_factor,
            },
        }

    def get_session(self, session_id: str) -> dict:
        return self.session_snapshot(self.context.manifests.load(session_id))

    async def join(self, job_id: str) -> None:
        """Wait for a job's background task; returns at once if it already finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    async def close(self) -> None:
        if self._tasks:
            logger.warning(f"Closing with {len(self._tasks)} job(s) still running")
        if self._providers is not None:
            await self._providers.close()


# ---------------------------------------------------------------------------
# Module-level lazy singleton
# ---------------------------------------------------------------------------

_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    """Get or create the process-wide Orchestrator from settings."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator.from_settings()
    return _orchestrator


async def close_orchestrator() -> None:
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.close()
        _orchestrator = None
