"""API route handlers and Pydantic request/response schemas."""

import logging
import secrets
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from lifepipe.config import settings
from lifepipe.errors import (
    FrameNotFoundError,
    InvalidSessionError,
    JobConflictError,
    JobNotFoundError,
    LifepipeError,
    MissingFramesError,
    SessionNotFoundError,
)
from lifepipe.orchestrator.service import Orchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class RunResponse(BaseModel):
    job_id: str
    status: str
    total_steps: int
    ages: list[int]


class RegenerateRequest(BaseModel):
    session_id: str
    age: int
    gender_hint: Optional[str] = None


class CreateVideosRequest(BaseModel):
    session_id: str
    target_duration_sec: Optional[float] = Field(
        default=None,
        description="Requested final length; clamped to the configured bounds",
    )


class CreateVideosResponse(BaseModel):
    job_id: str
    status: str
    total_steps: int
    target_duration_sec: int


class HealthResponse(BaseModel):
    status: str


def _http_error(exc: Exception) -> HTTPException:
    """Map domain errors to HTTP status codes."""
    if isinstance(exc, (SessionNotFoundError, FrameNotFoundError, JobNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, JobConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (InvalidSessionError, MissingFramesError, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def _parse_ages(raw: str) -> Optional[list[int]]:
    if not raw.strip():
        return None
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail=f"ages must be comma-separated integers, got {raw!r}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok")


@router.post("/lifetime/run", status_code=202, response_model=RunResponse)
async def start_run(
    image: Optional[UploadFile] = File(None),
    image_url: str = Form(""),
    background_mode: str = Form("flat"),
    gender_hint: str = Form("auto"),
    ages: str = Form(""),
    narrative_track: Optional[str] = Form(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Start a frame-generation job from an uploaded photo or an image URL."""
    if image is not None and image.filename:
        uploads_dir = Path(settings.storage.uploads_dir)
        uploads_dir.mkdir(parents=True, exist_ok=True)
        suffix = Path(image.filename).suffix.lower() or ".png"
        reference = uploads_dir / f"upload_{secrets.token_hex(6)}{suffix}"
        reference.write_bytes(await image.read())
    elif image_url:
        reference = image_url
    else:
        raise HTTPException(status_code=400, detail="Provide an image file or image_url")

    try:
        started = orchestrator.start_frame_job(
            reference,
            background_mode=background_mode,
            gender_hint=gender_hint,
            ages=_parse_ages(ages),
            narrative_track=narrative_track,
        )
    except (LifepipeError, ValueError) as e:
        raise _http_error(e)
    return RunResponse(**started)


@router.get("/lifetime/run-status/{job_id}")
async def run_status(job_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_frame_job(job_id)
    except LifepipeError as e:
        raise _http_error(e)


@router.post("/lifetime/regenerate-frame")
async def regenerate_frame(
    request: RegenerateRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Regenerate one age frame; dependent transitions and final video are discarded."""
    try:
        return await orchestrator.regenerate_frame(
            request.session_id, request.age, request.gender_hint
        )
    except (LifepipeError, ValueError) as e:
        raise _http_error(e)


@router.post("/lifetime/create-videos", status_code=202, response_model=CreateVideosResponse)
async def create_videos(
    request: CreateVideosRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
):
    try:
        started = orchestrator.start_video_job(request.session_id, request.target_duration_sec)
    except LifepipeError as e:
        raise _http_error(e)
    return CreateVideosResponse(**started)


@router.get("/lifetime/create-videos-status/{job_id}")
async def create_videos_status(job_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_video_job(job_id)
    except LifepipeError as e:
        raise _http_error(e)


@router.get("/lifetime/sessions/{session_id}")
async def get_session(session_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_session(session_id)
    except LifepipeError as e:
        raise _http_error(e)
