"""Video-creation job: reconcile transitions, fill gaps, assemble.

Runs after a frame job has produced every frame of a session:
1. Wait (bounded) for the frame job's in-flight speculative transitions
2. Per consecutive pair, reuse a recorded or speculative transition whose
   file exists and whose endpoint images match the current frames
3. Generate the missing pairs with bounded concurrency; any failure is fatal,
   but the pairs that did succeed are persisted first
4. Persist the reconciled transitions and delete stale transition files
5. Assemble and persist the final video
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from lifepipe.errors import LifepipeError, MissingFramesError, ProviderError
from lifepipe.orchestrator.state import next_stage
from lifepipe.pipeline.assembly import assemble_final_video
from lifepipe.pipeline.context import PipelineContext
from lifepipe.pipeline.scheduler import TransitionScheduler, transition_work
from lifepipe.schemas.jobs import FinalVideoView, TransitionView, VideoJob
from lifepipe.schemas.manifest import (
    FinalVideo,
    FrameRecord,
    SessionManifest,
    TransitionRecord,
    transition_key,
)
from lifepipe.services.job_store import JobStore

logger = logging.getLogger(__name__)


def reusable_transition(
    candidate: Optional[TransitionRecord], from_frame: FrameRecord, to_frame: FrameRecord
) -> Optional[TransitionRecord]:
    """Return ``candidate`` when it can stand in for the pair as-is."""
    if candidate is None:
        return None
    if not candidate.bridges(from_frame, to_frame):
        return None
    if not Path(candidate.video_path).is_file():
        return None
    return candidate


def reconcile_transitions(
    manifest: SessionManifest, speculative: Optional[TransitionScheduler]
) -> tuple[dict[str, TransitionRecord], list[tuple[FrameRecord, FrameRecord]]]:
    """Split the session's pairs into reusable transitions and missing pairs.

    Manifest records are preferred over the speculative completed map.
    """
    recorded = {t.key: t for t in manifest.transitions}
    completed = speculative.completed if speculative is not None else {}

    active: dict[str, TransitionRecord] = {}
    missing: list[tuple[FrameRecord, FrameRecord]] = []
    for from_frame, to_frame in manifest.required_pairs():
        key = transition_key(from_frame.age, to_frame.age)
        record = reusable_transition(recorded.get(key), from_frame, to_frame) or reusable_transition(
            completed.get(key), from_frame, to_frame
        )
        if record is not None:
            active[key] = record
        else:
            missing.append((from_frame, to_frame))
    return active, missing


async def run_video_job(
    ctx: PipelineContext,
    jobs: JobStore[VideoJob],
    job_id: str,
    session_id: str,
    target_duration_sec: int,
    speculative: Optional[TransitionScheduler] = None,
) -> None:
    """Produce the final video for a session with a complete timeline.

    Failures are recorded on the job; the manifest keeps its frames and the
    transitions persisted before the failure.
    """
    start_time = time.monotonic()

    def _progress(message: str, step: Optional[str] = None) -> None:
        def _apply(job: VideoJob) -> None:
            job.progress.message = message
            if step is not None:
                job.progress.current_step = step
        jobs.update(job_id, _apply)

    def _advance_stage(stage: str) -> None:
        def _apply(job: VideoJob) -> None:
            if next_stage(job.assembly_stage) != stage:
                raise LifepipeError(f"Cannot enter stage {stage} from {job.assembly_stage}")
            job.assembly_stage = stage
            job.progress.current_step = stage
            job.progress.message = f"Assembly: {stage}"
        jobs.update(job_id, _apply)

    try:
        jobs.update(job_id, lambda job: setattr(job, "status", "running"))

        if speculative is not None and speculative.pending():
            _progress("Waiting for speculative transitions", "waiting")
            await speculative.wait_for_pending(ctx.pipeline.speculative_wait_timeout)

        manifest = ctx.manifests.load(session_id)
        if not manifest.is_complete():
            raise MissingFramesError(
                f"Session {session_id} has {len(manifest.timeline())}/{len(manifest.ages)} frames"
            )
        pairs = manifest.required_pairs()
        active, missing = reconcile_transitions(manifest, speculative)
        logger.info(
            f"Video job {job_id}: reusing {len(active)}/{len(pairs)} transitions, "
            f"generating {len(missing)}"
        )

        def _publish_transitions(job: VideoJob) -> None:
            job.progress.completed = len(active)
            job.transitions = [
                TransitionView(
                    from_age=t.from_age,
                    to_age=t.to_age,
                    video_path=t.video_path,
                    video_url=ctx.files.public_url(t.video_path),
                )
                for t in sorted(active.values(), key=lambda t: t.from_age)
            ]
        jobs.update(job_id, _publish_transitions)

        def _persist_transitions(records: list[TransitionRecord]) -> SessionManifest:
            keep = {t.video_path for t in records}
            stale: list[str] = []

            def _apply(m: SessionManifest) -> None:
                current = {transition_key(a.age, b.age): (a, b) for a, b in m.required_pairs()}
                for t in records:
                    if t.key not in current or not t.bridges(*current[t.key]):
                        raise LifepipeError(
                            f"Frames of session {session_id} changed during video creation"
                        )
                stale.extend(t.video_path for t in m.transitions if t.video_path not in keep)
                m.transitions = records

            updated = ctx.manifests.update(session_id, _apply)
            ctx.files.remove_files(stale)
            return updated

        def _in_pair_order() -> list[TransitionRecord]:
            keys = [transition_key(a.age, b.age) for a, b in pairs]
            return [active[key] for key in keys if key in active]

        if missing:
            _progress(f"Generating {len(missing)} transition(s)", "transitions")
            scheduler = TransitionScheduler(
                transition_work(ctx, manifest),
                limit=ctx.pipeline.transition_concurrency,
                poll_interval=ctx.pipeline.slot_poll_interval,
                label=f"on_demand:{session_id}",
            )
            tasks = [scheduler.launch(a, b, origin="on_demand") for a, b in missing]
            failures: list[str] = []
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                if outcome.ok:
                    active[outcome.value.key] = outcome.value
                    jobs.update(job_id, _publish_transitions)
                else:
                    failures.append(outcome.reason)
            if failures:
                _persist_transitions(_in_pair_order())
                raise ProviderError(
                    f"{len(failures)} transition(s) failed: {'; '.join(failures)}"
                )

        ordered = _in_pair_order()
        manifest = _persist_transitions(ordered)

        # Assembly
        output_path = ctx.files.final_video_path(session_id)
        retiming = await assemble_final_video(
            [Path(t.video_path) for t in ordered],
            output_path,
            ctx.files.intermediate_path(session_id),
            target_duration_sec,
            config=ctx.video,
            on_stage=_advance_stage,
            runner=ctx.ffmpeg_runner,
        )

        _advance_stage("finalizing")
        final = FinalVideo(
            path=str(output_path),
            duration_sec=retiming.effective_target,
            target_duration_sec=retiming.target_duration,
            speed_factor=retiming.speed_factor,
        )
        replaced: list[str] = []

        def _persist_final(m: SessionManifest) -> None:
            if m.final_video is not None and m.final_video.path != final.path:
                replaced.append(m.final_video.path)
            m.final_video = final

        ctx.manifests.update(session_id, _persist_final)
        ctx.files.remove_files(replaced)

        _advance_stage("done")

        def _complete(job: VideoJob) -> None:
            job.status = "completed"
            job.progress.completed = job.progress.total
            job.progress.message = "Completed"
            job.final_video = FinalVideoView(
                path=final.path,
                url=ctx.files.public_url(final.path),
                duration_sec=final.duration_sec,
                speed_factor=final.speed_factor,
            )
        jobs.update(job_id, _complete)
        logger.info(
            f"Video job {job_id} completed in {time.monotonic() - start_time:.2f}s -> {final.path}"
        )

    except Exception as e:
        logger.error(f"Video job {job_id} failed: {type(e).__name__}: {e}")

        def _fail(job: VideoJob) -> None:
            job.status = "failed"
            job.error = str(e)
            job.progress.message = f"Failed: {e}"
        jobs.update(job_id, _fail)
