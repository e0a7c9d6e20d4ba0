"""Result type for best-effort work.

Speculative transitions and gender prediction may fail without failing the
job that requested them. They report an ``Outcome`` instead of raising.
"""

from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class Outcome(BaseModel, Generic[T]):
    status: OutcomeStatus
    value: Optional[T] = None
    reason: str = ""

    @classmethod
    def succeeded(cls, value: T) -> "Outcome[T]":
        return cls(status=OutcomeStatus.SUCCEEDED, value=value)

    @classmethod
    def skipped(cls, reason: str) -> "Outcome[T]":
        return cls(status=OutcomeStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome[T]":
        return cls(status=OutcomeStatus.FAILED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED
