"""Pydantic models for in-memory frame and video job records.

Job records are polled by callers while a background task mutates them.
``snapshot()`` returns the JSON-ready view; the scheduler handle on a frame
job is excluded from it.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from lifepipe.schemas.manifest import BackgroundMode

JobStatus = Literal["queued", "running", "completed", "failed"]
AssemblyStage = Literal["idle", "editing", "retiming", "finalizing", "done"]


class TimelineFrame(BaseModel):
    age: int
    image_path: str
    image_url: str


class TransitionView(BaseModel):
    from_age: int
    to_age: int
    video_path: str
    video_url: str


class FinalVideoView(BaseModel):
    path: str
    url: str
    duration_sec: float
    speed_factor: float


class FrameProgress(BaseModel):
    total: int
    completed: int = 0
    current_age: Optional[int] = None
    message: str = "Queued"


class VideoProgress(BaseModel):
    total: int
    completed: int = 0
    current_step: str = "queued"
    message: str = "Queued"


class FrameJob(BaseModel):
    """Frame-generation job record.

    ``scheduler`` holds the job's TransitionScheduler: in-flight counter,
    started pair keys, completed transitions and task handles.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    job_id: str
    status: JobStatus = "queued"
    started_at: datetime
    updated_at: datetime
    background_mode: BackgroundMode
    ages: list[int]
    progress: FrameProgress
    frames: list[TimelineFrame] = Field(default_factory=list)
    session_id: Optional[str] = None
    error: Optional[str] = None
    scheduler: Any = Field(default=None, exclude=True, repr=False)

    def snapshot(self) -> dict:
        data = self.model_dump(mode="json")
        data["transitions"] = dict(self.scheduler.states) if self.scheduler is not None else {}
        return data


class VideoJob(BaseModel):
    """Video-creation job record."""

    job_id: str
    session_id: str
    status: JobStatus = "queued"
    started_at: datetime
    updated_at: datetime
    target_duration_sec: int
    progress: VideoProgress
    assembly_stage: AssemblyStage = "idle"
    transitions: list[TransitionView] = Field(default_factory=list)
    final_video: Optional[FinalVideoView] = None
    error: Optional[str] = None

    def snapshot(self) -> dict:
        return self.model_dump(mode="json")
