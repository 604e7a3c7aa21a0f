"""Job record Pydantic model."""

import time
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

JobStatus = Literal["pending", "completed", "error"]

TERMINAL_STATUSES = ("completed", "error")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_job_id() -> str:
    """Time-based base-36 prefix plus a random hex suffix, e.g. ``lx3k9q2a4f1c9e``."""
    return _to_base36(time.time_ns() // 1_000_000) + uuid4().hex[:6]


class JobRecord(BaseModel):
    """One submitted message tracked through pending/completed/error."""

    id: str = Field(min_length=1, pattern=r"^[a-z0-9]+$")
    status: JobStatus = "pending"
    message: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "JobRecord":
        if self.status == "completed" and (self.result is None or self.error is not None):
            raise ValueError("completed job must carry a result and no error")
        if self.status == "error" and (self.error is None or self.result is not None):
            raise ValueError("errored job must carry an error and no result")
        if self.status == "pending" and (self.result is not None or self.error is not None):
            raise ValueError("pending job cannot carry a result or error")
        return self

    @classmethod
    def new(cls, message: str, ttl_seconds: int, job_id: Optional[str] = None) -> "JobRecord":
        created = utcnow()
        return cls(
            id=job_id or generate_job_id(),
            status="pending",
            message=message,
            created_at=created,
            expires_at=created + timedelta(seconds=ttl_seconds),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def finish(
        self,
        status: JobStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> "JobRecord":
        """Return a terminal copy of a pending record. The message is dropped."""
        if self.is_terminal:
            raise ValueError(f"Job {self.id} is already {self.status}")
        return JobRecord(
            id=self.id,
            status=status,
            message=None,
            result=result,
            error=error,
            created_at=self.created_at,
            completed_at=utcnow(),
            processing_time_ms=processing_time_ms,
            expires_at=self.expires_at,
        )
