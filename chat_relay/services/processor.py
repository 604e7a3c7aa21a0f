"""Background processing of submitted chat jobs."""

import asyncio
import logging
import time
from typing import Dict, Optional

from chat_relay.services.completion import CompletionClient
from chat_relay.services.job_store import JobStore
from chat_relay.services.metrics import MetricsSink
from chat_relay.utils.errors import (
    ChatRelayError,
    CompletionAPIError,
    DuplicateJobError,
    JobStoreError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Processing was interrupted. Please try again."


class BackgroundProcessor:
    """Runs one completion for a pending job and records the terminal outcome."""

    def __init__(
        self,
        store: JobStore,
        client: CompletionClient,
        metrics: MetricsSink,
        deadline_seconds: float,
    ) -> None:
        """
        Initialize the BackgroundProcessor.

        Args:
            store: Job store holding the pending record
            client: Completion client for the upstream call
            metrics: Metrics sink for success/failure counters
            deadline_seconds: Internal deadline; shorter than the client's own timeout
        """
        self.store = store
        self.client = client
        self.metrics = metrics
        self.deadline_seconds = deadline_seconds

    async def process(self, job_id: str) -> None:
        """
        Process a job to a terminal state. Never raises, except on cancellation.

        The upstream call races the internal deadline; when the deadline wins
        the call is cancelled and the job is marked ``error``.
        """
        try:
            record = await self.store.get(job_id)
        except JobStoreError as e:
            logger.error(f"[{job_id}] Could not load job: {e}")
            return

        if record is None:
            logger.warning(f"[{job_id}] Job not found; it may have expired")
            return
        if record.is_terminal:
            logger.warning(f"[{job_id}] Job already {record.status}; skipping")
            return

        logger.info(f"[{job_id}] Started processing (message length {len(record.message or '')})")
        start = time.perf_counter()

        try:
            completion = await asyncio.wait_for(
                self.client.complete(record.message or ""),
                timeout=self.deadline_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"[{job_id}] Processing deadline of {self.deadline_seconds}s exceeded")
            self.metrics.increment("timeouts")
            await self._record_failure(job_id, UpstreamTimeoutError(), start)
            return
        except asyncio.CancelledError:
            logger.warning(f"[{job_id}] Processing cancelled")
            await self._record_failure(job_id, ChatRelayError(INTERRUPTED_MESSAGE), start)
            raise
        except ChatRelayError as e:
            logger.error(f"[{job_id}] Completion failed: {e}")
            if isinstance(e, UpstreamTimeoutError):
                self.metrics.increment("timeouts")
            await self._record_failure(job_id, e, start)
            return
        except Exception as e:
            logger.exception(f"[{job_id}] Unexpected processing error: {e}")
            await self._record_failure(job_id, CompletionAPIError(None, str(e)), start)
            return

        elapsed_ms = self._elapsed_ms(start)
        try:
            written = await self.store.complete(job_id, completion.text, elapsed_ms)
        except JobStoreError as e:
            logger.error(f"[{job_id}] Could not store result: {e}")
            self.metrics.increment("failed_requests")
            return

        if written:
            self.metrics.increment("successful_requests")
            self.metrics.observe("processing_ms", elapsed_ms)
            logger.info(f"[{job_id}] Completed in {elapsed_ms}ms")
        else:
            logger.warning(f"[{job_id}] Job no longer pending; result discarded")

    async def _record_failure(self, job_id: str, error: ChatRelayError, start: float) -> None:
        self.metrics.increment("failed_requests")
        try:
            written = await self.store.fail(job_id, error.message, self._elapsed_ms(start))
        except JobStoreError as e:
            logger.error(f"[{job_id}] Could not store failure: {e}")
            return
        if not written:
            logger.warning(f"[{job_id}] Job no longer pending; failure discarded")

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)


class JobRunner:
    """Registry of background tasks keyed by job id.

    At most one task runs per job id; finished tasks drop out of the registry.
    """

    def __init__(self, processor: BackgroundProcessor) -> None:
        self.processor = processor
        self._tasks: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def get_task(self, job_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(job_id)

    def submit(self, job_id: str) -> asyncio.Task:
        """Schedule processing on the running loop without awaiting it."""
        if self.running(job_id):
            raise DuplicateJobError()

        task = asyncio.create_task(self.processor.process(job_id), name=f"chat-job-{job_id}")
        self._tasks[job_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(job_id) is done:
                del self._tasks[job_id]

        task.add_done_callback(_forget)
        return task

    async def start(self, job_id: str) -> None:
        """Async entry point for FastAPI background tasks."""
        self.submit(job_id)

    async def shutdown(self) -> None:
        """Cancel every outstanding task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} background job(s)")
        self._tasks.clear()
