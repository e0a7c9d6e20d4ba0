"""In-memory job registries with time-based eviction.

Frame and video jobs live only in memory. Records are swept once they have
not been updated for the retention window, whatever their status.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Generic, Optional, TypeVar

from lifepipe.config import settings

logger = logging.getLogger(__name__)

J = TypeVar("J")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(ABC, Generic[J]):
    """Registry of job records keyed by ``job_id``.

    Records must expose ``job_id`` and ``updated_at`` attributes.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    @abstractmethod
    def get(self, job_id: str) -> Optional[J]:
        ...

    @abstractmethod
    def put(self, job: J) -> None:
        ...

    @abstractmethod
    def values(self) -> list[J]:
        ...

    @abstractmethod
    def sweep(self) -> list[str]:
        """Evict expired records and return their ids."""
        ...

    def update(self, job_id: str, mutate: Callable[[J], None]) -> Optional[J]:
        """Apply ``mutate`` to a job and stamp ``updated_at``.

        Returns None when the record has already been evicted.
        """
        job = self.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id} was evicted before update")
            return None
        mutate(job)
        job.updated_at = self.now()
        return job


class InMemoryJobStore(JobStore[J]):
    """Dict-backed store; every access sweeps expired records first."""

    def __init__(
        self,
        retention_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(clock)
        if retention_seconds is None:
            retention_seconds = settings.pipeline.job_retention_seconds
        self.retention = timedelta(seconds=retention_seconds)
        self._jobs: dict[str, J] = {}

    def get(self, job_id: str) -> Optional[J]:
        self.sweep()
        return self._jobs.get(job_id)

    def put(self, job: J) -> None:
        self.sweep()
        self._jobs[job.job_id] = job

    def values(self) -> list[J]:
        self.sweep()
        return list(self._jobs.values())

    def sweep(self) -> list[str]:
        cutoff = self.now() - self.retention
        expired = [job_id for job_id, job in self._jobs.items() if job.updated_at < cutoff]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.info(f"Evicted {len(expired)} expired job record(s)")
        return expired
