"""Sequential age-frame generation with identity chaining.

- Anchor (ages[0]): background-normalized reference in flat mode, the raw
  reference in narrative mode
- Frame i uses frame i-1's image as its sole input
- Strictly sequential; each new frame is persisted before the next starts
- Each new pair is handed to the job's TransitionScheduler without waiting
- Gender is predicted once, after the first generated frame, when auto
"""

import logging
import time
from pathlib import Path
from typing import Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from lifepipe.errors import FrameNotFoundError, ProviderError
from lifepipe.pipeline.context import PipelineContext
from lifepipe.pipeline.outcomes import Outcome
from lifepipe.pipeline.prompts import build_frame_prompt, build_source_prompt
from lifepipe.pipeline.scheduler import TransitionScheduler, transition_work
from lifepipe.schemas.jobs import FrameJob, TimelineFrame
from lifepipe.schemas.manifest import FrameRecord, SessionManifest, transition_key
from lifepipe.services.job_store import JobStore
from lifepipe.services.providers.base import GenderPrediction
from lifepipe.services.uploads import download_reference, is_remote_reference

logger = logging.getLogger(__name__)


def total_steps(background_mode: str, ages: list[int]) -> int:
    """Number of frames the image collaborator produces for a run."""
    return len(ages) if background_mode == "flat" else len(ages) - 1


async def synthesize_frame(
    ctx: PipelineContext,
    age: int,
    source_path: str,
    prompt: str,
    dest: Path,
) -> FrameRecord:
    """Generate one frame from a single source image and download it to ``dest``."""

    @retry(
        stop=stop_after_attempt(ctx.pipeline.retry_max_attempts),
        wait=wait_exponential(multiplier=1, min=2, max=30) + wait_random(0, 2),
        retry=retry_if_exception_type(ProviderError),
        reraise=True,
    )
    async def _call() -> str:
        return await ctx.image.generate([Path(source_path)], prompt, ctx.image_options())

    url = await _call()
    await ctx.image.download(url, dest)
    return FrameRecord(age=age, image_path=str(dest), prompt=prompt, source_path=source_path)


async def lock_gender_hint(
    ctx: PipelineContext, requested_hint: str, frame: FrameRecord
) -> Outcome[GenderPrediction]:
    """Predict gender from the first generated frame when the hint is auto."""
    if requested_hint != "auto":
        return Outcome.skipped(f"gender hint set to {requested_hint}")
    if ctx.classifier is None:
        return Outcome.skipped("no gender classifier configured")

    try:
        prediction = await ctx.classifier.predict(Path(frame.image_path))
    except Exception as e:
        logger.warning(f"Gender prediction failed, continuing with auto: {e}")
        return Outcome.failed(str(e))

    if prediction.gender_hint not in ("male", "female"):
        return Outcome.skipped("classifier was inconclusive")
    return Outcome.succeeded(prediction)


def timeline_view(ctx: PipelineContext, timeline: list[FrameRecord]) -> list[TimelineFrame]:
    return [
        TimelineFrame(age=f.age, image_path=f.image_path, image_url=ctx.files.public_url(f.image_path))
        for f in timeline
    ]


def merge_completed_transitions(
    ctx: PipelineContext, session_id: str, scheduler: Optional[TransitionScheduler]
) -> SessionManifest:
    """Persist the scheduler's completed transitions that still match the timeline."""

    def _merge(manifest: SessionManifest) -> None:
        if scheduler is None:
            return
        records = {t.key: t for t in manifest.transitions}
        for from_frame, to_frame in manifest.required_pairs():
            record = scheduler.completed.get(transition_key(from_frame.age, to_frame.age))
            if record is not None and record.bridges(from_frame, to_frame):
                records[record.key] = record
        order = {age: i for i, age in enumerate(manifest.ages)}
        manifest.transitions = sorted(records.values(), key=lambda t: order[t.from_age])

    return ctx.manifests.update(session_id, _merge)


async def run_frame_job(
    ctx: PipelineContext,
    jobs: JobStore[FrameJob],
    job_id: str,
    reference: str,
    background_mode: str,
    gender_hint: str,
    ages: list[int],
    narrative_track: Optional[str] = None,
) -> None:
    """Create a session and generate its whole timeline.

    Failures are recorded on the job; the manifest keeps every frame saved so
    far plus any speculative transitions that completed.
    """
    start_time = time.monotonic()
    session_id: Optional[str] = None
    scheduler: Optional[TransitionScheduler] = None

    def _progress(message: str, **fields) -> None:
        def _apply(job: FrameJob) -> None:
            job.progress.message = message
            for name, value in fields.items():
                setattr(job.progress, name, value)
        jobs.update(job_id, _apply)

    try:
        jobs.update(job_id, lambda job: setattr(job, "status", "running"))

        reference_path = reference
        if is_remote_reference(reference):
            _progress("Downloading reference image")
            reference_path = str(await download_reference(reference, ctx.uploads_dir))

        manifest = ctx.manifests.create(
            Path(reference_path),
            ages,
            background_mode=background_mode,
            gender_hint=gender_hint,
            narrative_track=narrative_track,
        )
        session_id = manifest.session_id
        scheduler = TransitionScheduler(
            transition_work(ctx, manifest),
            limit=ctx.pipeline.transition_concurrency,
            poll_interval=ctx.pipeline.slot_poll_interval,
            label=f"speculative:{session_id}",
        )

        def _attach(job: FrameJob) -> None:
            job.session_id = session_id
            job.scheduler = scheduler
        jobs.update(job_id, _attach)
        logger.info(f"Frame job {job_id} started session {session_id} ({background_mode})")

        # Step 0: anchor
        completed = 0
        if background_mode == "flat":
            _progress("Preparing source frame", current_age=ages[0])
            prompt = build_source_prompt(background_mode, manifest.gender_hint)
            anchor = await synthesize_frame(
                ctx,
                ages[0],
                manifest.original_reference_path,
                prompt,
                ctx.files.anchor_path(session_id),
            )
            completed += 1
        else:
            anchor = FrameRecord(
                age=ages[0],
                image_path=manifest.original_reference_path,
                prompt="",
                source_path=manifest.original_reference_path,
            )

        manifest = ctx.manifests.update(session_id, lambda m: setattr(m, "anchor", anchor))
        timeline = [anchor]

        def _publish(job: FrameJob) -> None:
            job.frames = timeline_view(ctx, timeline)
            job.progress.completed = completed
        jobs.update(job_id, _publish)

        for index, age in enumerate(ages[1:], start=1):
            previous = timeline[-1]
            _progress(f"Generating age {age}", current_age=age)

            prompt = build_frame_prompt(
                index,
                previous.age,
                age,
                background_mode,
                manifest.gender_hint,
                manifest.narrative_track,
            )
            frame = await synthesize_frame(
                ctx,
                age,
                previous.image_path,
                prompt,
                ctx.files.frame_path(session_id, age),
            )
            timeline.append(frame)
            completed += 1
            manifest = ctx.manifests.update(session_id, lambda m: m.frames.append(frame))

            if index == 1:
                outcome = await lock_gender_hint(ctx, manifest.gender_hint, frame)
                logger.info(f"Gender lock for {session_id}: {outcome.status.value} {outcome.reason}")
                if outcome.ok:
                    hint = outcome.value.gender_hint
                    manifest = ctx.manifests.update(session_id, lambda m: setattr(m, "gender_hint", hint))

            scheduler.launch(previous, frame)
            jobs.update(job_id, _publish)

        merge_completed_transitions(ctx, session_id, scheduler)

        def _complete(job: FrameJob) -> None:
            job.status = "completed"
            job.progress.current_age = None
            job.progress.message = "Completed"
        jobs.update(job_id, _complete)
        logger.info(
            f"Frame job {job_id} completed {len(timeline)} frames in "
            f"{time.monotonic() - start_time:.2f}s"
        )

    except Exception as e:
        logger.error(f"Frame job {job_id} failed: {type(e).__name__}: {e}")
        if session_id is not None:
            try:
                merge_completed_transitions(ctx, session_id, scheduler)
            except Exception as save_err:
                logger.error(f"Failed to persist transitions for {session_id}: {save_err}")

        def _fail(job: FrameJob) -> None:
            job.status = "failed"
            job.error = str(e)
            job.progress.message = f"Failed: {e}"
        jobs.update(job_id, _fail)


async def regenerate_frame(
    ctx: PipelineContext,
    session_id: str,
    age: int,
    gender_hint: Optional[str] = None,
    speculative: Optional[TransitionScheduler] = None,
) -> SessionManifest:
    """Replace one frame and invalidate everything derived from it.

    The anchor is regenerated from the original reference; frame k from
    frame k-1. The manifest is saved before orphaned files are deleted.
    Transitions the frame job's ``speculative`` scheduler completed but never
    persisted are discarded too.

    Raises:
        SessionNotFoundError, InvalidSessionError: Unknown or bad session.
        FrameNotFoundError: The session has no frame at ``age``.
    """
    manifest = ctx.manifests.load(session_id)
    timeline = manifest.timeline()
    ages = [frame.age for frame in timeline]
    if age not in ages:
        raise FrameNotFoundError(f"Age frame {age} not found in session {session_id}")

    hint = gender_hint if gender_hint in ("male", "female") else manifest.gender_hint
    index = ages.index(age)

    if index == 0:
        prompt = build_source_prompt(manifest.background_mode, hint)
        source_path = manifest.original_reference_path
        dest = ctx.files.anchor_path(session_id)
    else:
        previous = timeline[index - 1]
        prompt = build_frame_prompt(
            index, previous.age, age, manifest.background_mode, hint, manifest.narrative_track
        )
        source_path = previous.image_path
        dest = ctx.files.frame_path(session_id, age)

    logger.info(f"Regenerating age {age} for session {session_id}")
    frame = await synthesize_frame(ctx, age, source_path, prompt, dest)

    orphaned: list[Path] = []

    def _replace(m: SessionManifest) -> None:
        if gender_hint in ("male", "female"):
            m.gender_hint = gender_hint
        orphaned.extend(m.replace_frame(frame))

    try:
        manifest = ctx.manifests.update(session_id, _replace)
    except FrameNotFoundError:
        ctx.files.remove_files([dest])
        raise

    if speculative is not None:
        orphaned.extend(Path(p) for p in speculative.discard())
    ctx.files.remove_files(orphaned)
    logger.info(
        f"Regenerated age {age} for session {session_id}; removed {len(orphaned)} dependent file(s)"
    )
    return manifest
