"""Job store backends with per-key expiry."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from chat_relay.config import Settings
from chat_relay.models.job import TERMINAL_STATUSES, JobRecord, JobStatus, utcnow
from chat_relay.utils.errors import JobStoreError

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Key to job-record mapping with a TTL per key.

    Terminal writes are conditional: ``finish`` only applies while the stored
    record is still ``pending``, so a record never leaves a terminal state.
    An expired record is reported as absent, exactly like one that never
    existed.
    """

    @abstractmethod
    async def put(self, record: JobRecord, ttl_seconds: int) -> None:
        """Store a record that expires ``ttl_seconds`` from now."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Return the record, or None when absent or expired."""

    @abstractmethod
    async def finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> bool:
        """Move a pending record to a terminal status. Returns False if nothing changed."""

    @abstractmethod
    async def sweep(self, max_age_seconds: int) -> int:
        """Drop expired records and terminal records older than ``max_age_seconds``."""

    async def complete(self, job_id: str, result: str, processing_time_ms: int) -> bool:
        return await self.finish(
            job_id, "completed", result=result, processing_time_ms=processing_time_ms
        )

    async def fail(self, job_id: str, reason: str, processing_time_ms: Optional[int] = None) -> bool:
        return await self.finish(
            job_id, "error", error=reason, processing_time_ms=processing_time_ms
        )

    async def close(self) -> None:
        pass


class InMemoryJobStore(JobStore):
    """Process-local, asyncio-locked job store.

    Only valid for a single long-lived process; every instance behind a load
    balancer would see its own map. Use it as a test double or for local runs.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    async def put(self, record: JobRecord, ttl_seconds: int) -> None:
        stored = record.model_copy(update={"expires_at": utcnow() + timedelta(seconds=ttl_seconds)})
        async with self._lock:
            self._jobs[record.id] = stored

    async def get(self, job_id: str) -> Optional[JobRecord]:
        async with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                return None
            if record.is_expired():
                self._jobs.pop(job_id, None)
                return None
            return record.model_copy()

    async def finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> bool:
        async with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.is_expired() or record.is_terminal:
                return False
            self._jobs[job_id] = record.finish(
                status, result=result, error=error, processing_time_ms=processing_time_ms
            )
            return True

    async def sweep(self, max_age_seconds: int) -> int:
        now = utcnow()
        cutoff = now - timedelta(seconds=max_age_seconds)
        async with self._lock:
            stale = [
                job_id
                for job_id, record in self._jobs.items()
                if record.is_expired(now)
                or (record.is_terminal and (record.completed_at or record.created_at) < cutoff)
            ]
            for job_id in stale:
                del self._jobs[job_id]
        return len(stale)


class SupabaseJobStore(JobStore):
    """Job store backed by a Supabase table, shared by every instance.

    Expected columns: ``job_id`` (primary key), ``status``, ``message``,
    ``result``, ``error``, ``created_at``, ``completed_at``,
    ``processing_time_ms``, ``expires_at``.
    """

    def __init__(self, supabase_client: Any, table: str = "chat_jobs") -> None:
        """
        Initialize the SupabaseJobStore.

        Args:
            supabase_client: Supabase client instance
            table: Name of the jobs table
        """
        self.supabase = supabase_client
        self.table = table

    @staticmethod
    def _to_row(record: JobRecord) -> dict[str, Any]:
        return {
            "job_id": record.id,
            "status": record.status,
            "message": record.message,
            "result": record.result,
            "error": record.error,
            "created_at": record.created_at.isoformat(),
            "completed_at": record.completed_at.isoformat() if record.completed_at else None,
            "processing_time_ms": record.processing_time_ms,
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        }

    @staticmethod
    def _from_row(row: dict[str, Any]) -> JobRecord:
        completed_at = row.get("completed_at")
        expires_at = row.get("expires_at")
        return JobRecord(
            id=row["job_id"],
            status=row["status"],
            message=row.get("message"),
            result=row.get("result"),
            error=row.get("error"),
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            processing_time_ms=row.get("processing_time_ms"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )

    async def put(self, record: JobRecord, ttl_seconds: int) -> None:
        stored = record.model_copy(update={"expires_at": utcnow() + timedelta(seconds=ttl_seconds)})
        try:
            result = self.supabase.table(self.table).insert(self._to_row(stored)).execute()
        except Exception as e:
            logger.error(f"Failed to create job {record.id}: {e}")
            raise JobStoreError("Failed to create request")

        if not result.data:
            logger.error(f"Insert returned no rows for job {record.id}")
            raise JobStoreError("Failed to create request")
        logger.info(f"Created job {record.id}")

    async def get(self, job_id: str) -> Optional[JobRecord]:
        try:
            result = self.supabase.table(self.table).select("*").eq("job_id", job_id).execute()
        except Exception as e:
            logger.error(f"Failed to get job {job_id}: {e}")
            raise JobStoreError()

        if not result.data:
            return None

        record = self._from_row(result.data[0])
        if record.is_expired():
            return None
        return record

    async def finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> bool:
        update_data: dict[str, Any] = {
            "status": status,
            "message": None,
            "result": result,
            "error": error,
            "completed_at": utcnow().isoformat(),
            "processing_time_ms": processing_time_ms,
        }
        try:
            response = (
                self.supabase.table(self.table)
                .update(update_data)
                .eq("job_id", job_id)
                .eq("status", "pending")
                .gt("expires_at", utcnow().isoformat())
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to update job {job_id}: {e}")
            raise JobStoreError("Failed to update request")

        return bool(response.data)

    async def sweep(self, max_age_seconds: int) -> int:
        now = utcnow()
        cutoff = (now - timedelta(seconds=max_age_seconds)).isoformat()
        removed = 0
        try:
            expired = (
                self.supabase.table(self.table).delete().lt("expires_at", now.isoformat()).execute()
            )
            removed += len(expired.data or [])
            finished = (
                self.supabase.table(self.table)
                .delete()
                .in_("status", list(TERMINAL_STATUSES))
                .lt("completed_at", cutoff)
                .execute()
            )
            removed += len(finished.data or [])
        except Exception as e:
            logger.error(f"Failed to sweep jobs: {e}")
            raise JobStoreError("Failed to sweep requests")
        return removed


async def sweep_periodically(store: JobStore, interval_seconds: float, max_age_seconds: int) -> None:
    """Best-effort sweep loop; runs until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await store.sweep(max_age_seconds)
        except JobStoreError as e:
            logger.warning(f"Job sweep failed: {e}")
            continue
        if removed:
            logger.info(f"Swept {removed} stale job(s)")


# Factory function for creating a JobStore with settings
def create_job_store(settings: Settings) -> JobStore:
    """
    Create the configured JobStore backend.

    Args:
        settings: Application settings

    Returns:
        InMemoryJobStore or SupabaseJobStore
    """
    if settings.job_store_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise JobStoreError("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")
        from supabase import create_client

        supabase_client = create_client(settings.supabase_url, settings.supabase_key)
        return SupabaseJobStore(supabase_client, table=settings.supabase_jobs_table)

    logger.warning("Using in-memory job store; valid for a single process only")
    return InMemoryJobStore()
