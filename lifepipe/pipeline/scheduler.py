"""Bounded-concurrency transition generation.

A TransitionScheduler belongs to one job. Frame jobs use it to fire
speculative transitions as soon as a pair of frames exists; video jobs use
a fresh one to fill the pairs that are still missing. Every launch returns
an ``asyncio.Task`` handle kept on the scheduler, and completed records are
collected in ``completed`` until the owning job persists them.

A launch that finds every slot taken polls every ``poll_interval`` seconds
until one frees. It is never rejected.
"""

import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Awaitable, Callable

from lifepipe.pipeline.context import PipelineContext
from lifepipe.pipeline.outcomes import Outcome
from lifepipe.pipeline.prompts import build_transition_prompt
from lifepipe.schemas.manifest import (
    FrameRecord,
    SessionManifest,
    TransitionOrigin,
    TransitionRecord,
    transition_key,
)

logger = logging.getLogger(__name__)

TransitionWork = Callable[[FrameRecord, FrameRecord, TransitionOrigin], Awaitable[TransitionRecord]]


async def generate_transition(
    ctx: PipelineContext,
    session_id: str,
    background_mode: str,
    narrative_track: str | None,
    from_frame: FrameRecord,
    to_frame: FrameRecord,
    origin: TransitionOrigin = "speculative",
) -> TransitionRecord:
    """Render and download the clip bridging two consecutive frames."""
    prompt = build_transition_prompt(
        from_frame.age, to_frame.age, background_mode, narrative_track
    )
    url = await ctx.transition.generate_transition(
        Path(from_frame.image_path),
        Path(to_frame.image_path),
        prompt,
        ctx.video.segment_duration_sec,
        ctx.pipeline.aspect_ratio,
    )
    dest = ctx.files.transition_path(session_id, from_frame.age, to_frame.age)
    await ctx.transition.download(url, dest)

    return TransitionRecord(
        from_age=from_frame.age,
        to_age=to_frame.age,
        video_path=str(dest),
        prompt=prompt,
        from_image_path=from_frame.image_path,
        to_image_path=to_frame.image_path,
        origin=origin,
    )


def transition_work(ctx: PipelineContext, manifest: SessionManifest) -> TransitionWork:
    """Bind generate_transition to a session."""
    return partial(
        generate_transition,
        ctx,
        manifest.session_id,
        manifest.background_mode,
        manifest.narrative_track,
    )


class TransitionScheduler:
    """Launch transition generation with at most ``limit`` calls in flight."""

    def __init__(
        self,
        work: TransitionWork,
        limit: int,
        poll_interval: float = 1.0,
        label: str = "transitions",
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._work = work
        self.limit = limit
        self.poll_interval = poll_interval
        self.label = label

        self.in_flight = 0
        self.peak_in_flight = 0
        self.generation = 0
        self.started: set[str] = set()
        self.completed: dict[str, TransitionRecord] = {}
        self.states: dict[str, str] = {}
        self.futures: dict[str, asyncio.Task] = {}

    def launch(
        self,
        from_frame: FrameRecord,
        to_frame: FrameRecord,
        origin: TransitionOrigin = "speculative",
    ) -> asyncio.Task:
        """Start generating a pair without waiting for it.

        Launching a key that was already started returns the existing task.
        """
        key = transition_key(from_frame.age, to_frame.age)
        if key in self.futures:
            return self.futures[key]

        self.started.add(key)
        self.states[key] = "pending"
        task = asyncio.create_task(
            self._run(key, from_frame, to_frame, origin),
            name=f"{self.label}:{key}",
        )
        self.futures[key] = task
        return task

    async def _acquire(self) -> None:
        while self.in_flight >= self.limit:
            await asyncio.sleep(self.poll_interval)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    async def _run(
        self,
        key: str,
        from_frame: FrameRecord,
        to_frame: FrameRecord,
        origin: TransitionOrigin,
    ) -> Outcome[TransitionRecord]:
        generation = self.generation
        await self._acquire()
        self.states[key] = "running"
        logger.info(f"[{self.label}] generating transition {key} ({self.in_flight}/{self.limit} in flight)")
        try:
            record = await self._work(from_frame, to_frame, origin)
        except Exception as e:
            logger.warning(f"[{self.label}] transition {key} failed: {e}")
            self.states[key] = "failed"
            return Outcome.failed(str(e))
        finally:
            self.in_flight -= 1

        if generation != self.generation:
            self.states[key] = "discarded"
            logger.info(f"[{self.label}] transition {key} finished after its frames changed; discarded")
            return Outcome.skipped("frames changed while the transition was rendering")

        self.completed[key] = record
        self.states[key] = "completed"
        logger.info(f"[{self.label}] transition {key} ready: {record.video_path}")
        return Outcome.succeeded(record)

    def discard(self) -> list[str]:
        """Forget every completed record, including launches still in flight.

        Returns:
            Video paths of the dropped records, for the caller to delete.
        """
        self.generation += 1
        dropped = [record.video_path for record in self.completed.values()]
        for key in self.completed:
            self.states[key] = "discarded"
        self.completed.clear()
        return dropped

    def pending(self) -> list[asyncio.Task]:
        return [task for task in self.futures.values() if not task.done()]

    async def wait_for_pending(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for in-flight launches.

        Returns:
            True if nothing is left in flight.
        """
        tasks = self.pending()
        if not tasks:
            return True
        _, still_pending = await asyncio.wait(tasks, timeout=timeout)
        if still_pending:
            logger.warning(
                f"[{self.label}] {len(still_pending)} transition(s) still running after {timeout}s"
            )
        return not still_pending
