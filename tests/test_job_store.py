"""In-memory job registry: retention sweep and update stamping."""

from datetime import timedelta

from lifepipe.schemas.jobs import FrameJob, FrameProgress, VideoJob, VideoProgress
from lifepipe.services.job_store import InMemoryJobStore

from tests.fakes import FakeClock


def _frame_job(job_id: str, clock: FakeClock, status: str = "queued") -> FrameJob:
    return FrameJob(
        job_id=job_id,
        status=status,
        started_at=clock(),
        updated_at=clock(),
        background_mode="flat",
        ages=[0, 7],
        progress=FrameProgress(total=2),
    )


def test_put_and_get():
    clock = FakeClock()
    store = InMemoryJobStore(retention_seconds=60, clock=clock)
    store.put(_frame_job("lrun_1", clock))

    assert store.get("lrun_1").job_id == "lrun_1"
    assert store.get("lrun_2") is None
    assert [job.job_id for job in store.values()] == ["lrun_1"]


def test_sweep_evicts_by_age_regardless_of_status():
    clock = FakeClock()
    store = InMemoryJobStore(retention_seconds=60, clock=clock)
    store.put(_frame_job("lrun_running", clock, status="running"))
    store.put(_frame_job("lrun_done", clock, status="completed"))

    clock.now += timedelta(seconds=61)
    store.put(_frame_job("lrun_new", clock))

    assert store.get("lrun_running") is None
    assert store.get("lrun_done") is None
    assert store.get("lrun_new") is not None


def test_update_stamps_and_extends_retention():
    clock = FakeClock()
    store = InMemoryJobStore(retention_seconds=60, clock=clock)
    store.put(_frame_job("lrun_1", clock))

    clock.now += timedelta(seconds=50)
    job = store.update("lrun_1", lambda j: setattr(j, "status", "running"))
    assert job.status == "running"
    assert job.updated_at == clock.now

    clock.now += timedelta(seconds=50)
    assert store.get("lrun_1") is not None


def test_update_after_eviction_returns_none():
    clock = FakeClock()
    store = InMemoryJobStore(retention_seconds=10, clock=clock)
    store.put(_frame_job("lrun_1", clock))
    clock.now += timedelta(seconds=11)

    assert store.update("lrun_1", lambda j: setattr(j, "status", "failed")) is None


def test_frame_snapshot_includes_transition_states():
    clock = FakeClock()
    job = _frame_job("lrun_1", clock)

    class _Scheduler:
        states = {"0-7": "running"}

    job.scheduler = _Scheduler()
    snapshot = job.snapshot()

    assert snapshot["transitions"] == {"0-7": "running"}
    assert "scheduler" not in snapshot


def test_video_snapshot_is_json_ready():
    clock = FakeClock()
    job = VideoJob(
        job_id="lvid_1",
        session_id="lifetime_x",
        started_at=clock(),
        updated_at=clock(),
        target_duration_sec=12,
        progress=VideoProgress(total=3),
    )
    snapshot = job.snapshot()

    assert snapshot["assembly_stage"] == "idle"
    assert isinstance(snapshot["started_at"], str)
    assert snapshot["final_video"] is None
