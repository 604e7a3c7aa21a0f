"""Client-side poller for the async chat endpoints."""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

logger = logging.getLogger(__name__)


class ChatClientError(Exception):
    """Server rejected the request or answered with an unexpected status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class JobExpiredError(ChatClientError):
    """Status endpoint returned 404: the job expired or never existed."""

    pass


class PollTimeoutError(ChatClientError):
    """Attempt budget exhausted while the job was still pending."""

    pass


@dataclass
class PollResult:
    request_id: str
    status: str
    result: Optional[str] = None
    error: Optional[str] = None
    processing_time: Optional[int] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "completed"


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"An unexpected server error occurred: {response.status_code} {response.reason_phrase}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"Server responded with status: {response.status_code}"


class ChatPoller:
    """Submits a message and polls its status until a terminal state."""

    def __init__(
        self,
        base_url: str,
        interval_seconds: float = 1.0,
        max_attempts: int = 45,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the ChatPoller.

        Args:
            base_url: Root URL of the chat relay service
            interval_seconds: Delay between status polls
            max_attempts: Poll budget before giving up
            timeout: Per-request HTTP timeout
            transport: Optional httpx transport (used by tests)
        """
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "ChatPoller":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit(self, message: str) -> str:
        """Submit a message and return the job id."""
        response = await self._client.post("/chat", json={"message": message})
        if response.status_code != 202:
            raise ChatClientError(_error_text(response), response.status_code)
        job_id = response.json()["id"]
        logger.debug(f"Submitted job {job_id}")
        return job_id

    async def poll(self, job_id: str) -> PollResult:
        """
        Poll until the job is terminal.

        Raises:
            JobExpiredError: Status endpoint returned 404 (not retried)
            PollTimeoutError: Still pending after ``max_attempts`` polls
            ChatClientError: Any other non-200 status
        """
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.interval_seconds)
            response = await self._client.get("/chat/status", params={"requestId": job_id})

            if response.status_code == 404:
                raise JobExpiredError(_error_text(response), 404)
            if response.status_code != 200:
                raise ChatClientError(_error_text(response), response.status_code)

            data = response.json()
            status = data.get("status")
            if status in ("completed", "error"):
                return PollResult(
                    request_id=job_id,
                    status=status,
                    result=data.get("result"),
                    error=data.get("error"),
                    processing_time=data.get("processingTime"),
                    attempts=attempt,
                )
            logger.debug(f"Job {job_id} still {status} after {attempt} poll(s)")

        raise PollTimeoutError(
            f"Request timed out after {self.max_attempts} attempts. Please try again."
        )

    async def ask(self, message: str) -> PollResult:
        """Submit a message and wait for its terminal status."""
        job_id = await self.submit(message)
        return await self.poll(job_id)

    async def stream(self, message: str) -> AsyncIterator[str]:
        """Yield reply fragments from a server running in stream mode."""
        async with self._client.stream("POST", "/chat", json={"message": message}) as response:
            if response.status_code != 200:
                await response.aread()
                raise ChatClientError(_error_text(response), response.status_code)
            async for text in response.aiter_text():
                if text:
                    yield text
