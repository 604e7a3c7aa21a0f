"""FastAPI routes for the chat relay API."""

import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_relay.api.deps import (
    get_completion_client,
    get_job_runner,
    get_job_store,
    get_metrics,
    get_request_id,
    get_settings_dep,
)
from chat_relay.config import Settings
from chat_relay.models.chat import ChatReply, ChatRequest, JobAccepted, JobStatusResponse
from chat_relay.models.job import JobRecord
from chat_relay.services.completion import CompletionClient
from chat_relay.services.job_store import JobStore
from chat_relay.services.metrics import InMemoryMetrics
from chat_relay.services.processor import JobRunner
from chat_relay.utils.errors import (
    ChatRelayError,
    JobNotFoundError,
    MissingRequestIdError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter()

# Sent on every response, including preflight and errors
CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,POST",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, "
        "Content-MD5, Content-Type, Date, X-Api-Version"
    ),
}


# ==================== Exception Handlers ====================


def _describe_validation_error(exc: RequestValidationError) -> str:
    for error in exc.errors():
        kind = error.get("type", "")
        loc = error.get("loc", ())
        if kind == "json_invalid":
            return "Request body must be valid JSON"
        if loc == ("body",) or "message" in loc:
            if kind in ("missing", "string_too_short"):
                return "Message is required in request body"
            if kind == "string_type":
                if error.get("input") is None:
                    return "Message is required in request body"
                return "Message must be a string"
    return "Invalid request"


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors as flat 400 responses.

    Bodies rejected here never reach the handler, so they are counted here
    the same way the handler counts its own rejections.
    """
    message = _describe_validation_error(exc)
    metrics = get_metrics(request)
    metrics.increment("total_requests")
    metrics.increment("failed_requests")
    logger.info(f"[{get_request_id(request)}] Rejected request: {message}")
    return JSONResponse(status_code=400, content={"error": message})


async def chat_relay_exception_handler(request: Request, exc: ChatRelayError) -> JSONResponse:
    """Handle application-specific errors."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle HTTP exceptions with the same flat format."""
    if exc.status_code == 405:
        message = "Method not allowed"
    elif exc.status_code == 404:
        message = "Not found"
    else:
        message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"[{get_request_id(request)}] Unexpected error: {exc}")
    return JSONResponse(
        status_code=500, content={"error": "Internal server error"}, headers=CORS_HEADERS
    )


# ==================== Chat Modes ====================


async def _submit_job(
    message: str,
    settings: Settings,
    store: JobStore,
    runner: JobRunner,
    background_tasks: BackgroundTasks,
    request_id: str,
) -> JSONResponse:
    record = JobRecord.new(message, ttl_seconds=settings.job_ttl_seconds)
    await store.put(record, settings.job_ttl_seconds)

    # Processing starts once the 202 has been handed to the server
    background_tasks.add_task(runner.start, record.id)

    logger.info(f"[{request_id}] Accepted job {record.id}")
    return JSONResponse(status_code=202, content=JobAccepted(id=record.id).model_dump())


async def _complete_now(
    message: str,
    settings: Settings,
    client: CompletionClient,
    metrics: InMemoryMetrics,
    request_id: str,
) -> JSONResponse:
    try:
        completion = await asyncio.wait_for(
            client.complete(message), timeout=settings.processing_timeout_seconds
        )
    except asyncio.TimeoutError:
        metrics.increment("timeouts")
        raise UpstreamTimeoutError()
    except UpstreamTimeoutError:
        metrics.increment("timeouts")
        raise

    metrics.increment("successful_requests")
    logger.info(f"[{request_id}] Completed synchronously")
    return JSONResponse(status_code=200, content=ChatReply(response=completion.text).model_dump())


async def _stream_reply(
    message: str,
    settings: Settings,
    client: CompletionClient,
    metrics: InMemoryMetrics,
    request_id: str,
) -> StreamingResponse:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.stream_timeout_seconds
    fragments = client.stream(message)

    # Pull the first fragment before headers are committed so an early
    # upstream failure can still be reported as a JSON error.
    try:
        first: Optional[str] = await asyncio.wait_for(
            fragments.__anext__(),
            timeout=min(settings.processing_timeout_seconds, settings.stream_timeout_seconds),
        )
    except StopAsyncIteration:
        first = None
    except asyncio.TimeoutError:
        await fragments.aclose()
        metrics.increment("timeouts")
        raise UpstreamTimeoutError()

    logger.info(f"[{request_id}] First fragment received; streaming")

    async def relay() -> AsyncIterator[str]:
        try:
            if first is not None:
                yield first
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    try:
                        fragment = await asyncio.wait_for(fragments.__anext__(), timeout=remaining)
                    except StopAsyncIteration:
                        break
                    yield fragment
            metrics.increment("successful_requests")
            logger.info(f"[{request_id}] Stream finished")
        except asyncio.TimeoutError:
            metrics.increment("timeouts")
            metrics.increment("failed_requests")
            logger.error(
                f"[{request_id}] Stream exceeded {settings.stream_timeout_seconds}s; closing body"
            )
        except ChatRelayError as e:
            metrics.increment("failed_requests")
            logger.error(f"[{request_id}] Upstream failed after headers were sent: {e}")
        finally:
            await fragments.aclose()

    return StreamingResponse(
        relay(),
        media_type="text/plain; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
    )


# ==================== Endpoints ====================


@router.options("/chat")
@router.options("/chat/status")
async def preflight() -> Response:
    """CORS preflight; headers are added by the CORS middleware."""
    return Response(status_code=200)


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    background_tasks: BackgroundTasks,
    request_id: str = Depends(get_request_id),
    settings: Settings = Depends(get_settings_dep),
    store: JobStore = Depends(get_job_store),
    client: CompletionClient = Depends(get_completion_client),
    metrics: InMemoryMetrics = Depends(get_metrics),
    runner: JobRunner = Depends(get_job_runner),
):
    """
    Relay a chat message to the completion API.

    Behaviour depends on the configured mode: ``async`` returns 202 with a
    job id to poll, ``sync`` returns the reply, ``stream`` relays fragments
    as a chunked text body.
    """
    metrics.increment("total_requests")
    try:
        payload.check_length(settings.max_message_length)
        logger.info(f"[{request_id}] Message length: {len(payload.message)}")

        if settings.chat_mode == "sync":
            return await _complete_now(payload.message, settings, client, metrics, request_id)
        if settings.chat_mode == "stream":
            return await _stream_reply(payload.message, settings, client, metrics, request_id)
        return await _submit_job(
            payload.message, settings, store, runner, background_tasks, request_id
        )
    except ChatRelayError as e:
        metrics.increment("failed_requests")
        logger.error(f"[{request_id}] Request failed with status {e.status_code}: {e}")
        raise


@router.get("/chat/status", response_model=JobStatusResponse, response_model_exclude_none=True)
async def chat_status(
    request_id: Optional[str] = Query(default=None, alias="requestId"),
    store: JobStore = Depends(get_job_store),
) -> JobStatusResponse:
    """
    Get the current state of a submitted job.

    Read-only; an expired job and an unknown id both return 404.
    """
    if not request_id:
        raise MissingRequestIdError()

    logger.info(f"Status check for request: {request_id}")
    record = await store.get(request_id)
    if record is None:
        raise JobNotFoundError()

    return JobStatusResponse.from_record(record)


@router.get("/health")
async def health(
    settings: Settings = Depends(get_settings_dep),
    metrics: InMemoryMetrics = Depends(get_metrics),
    runner: JobRunner = Depends(get_job_runner),
) -> dict:
    """Liveness probe with a metrics snapshot."""
    return {
        "status": "ok",
        "mode": settings.chat_mode,
        "running_jobs": len(runner),
        "metrics": metrics.snapshot(),
    }
