"""Application factory for the chat relay service."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_relay.api.routes import (
    CORS_HEADERS,
    chat_relay_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    router,
    validation_exception_handler,
)
from chat_relay.config import Settings, get_settings
from chat_relay.services.completion import CompletionClient, create_completion_client
from chat_relay.services.job_store import JobStore, create_job_store, sweep_periodically
from chat_relay.services.metrics import InMemoryMetrics
from chat_relay.services.processor import BackgroundProcessor, JobRunner
from chat_relay.utils.errors import ChatRelayError

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[JobStore] = None,
    completion_client: Optional[CompletionClient] = None,
    metrics: Optional[InMemoryMetrics] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Collaborators not passed in are created from settings when the app starts.

    Args:
        settings: Application settings (defaults to environment)
        store: Job store override
        completion_client: Completion client override
        metrics: Metrics sink override

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        job_store = store or create_job_store(settings)
        client = completion_client or create_completion_client(settings)
        sink = metrics or InMemoryMetrics()
        processor = BackgroundProcessor(
            job_store, client, sink, deadline_seconds=settings.processing_timeout_seconds
        )
        runner = JobRunner(processor)

        app.state.settings = settings
        app.state.job_store = job_store
        app.state.completion_client = client
        app.state.metrics = sink
        app.state.job_runner = runner

        sweeper: Optional[asyncio.Task] = None
        if settings.chat_mode == "async" and settings.sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(
                sweep_periodically(
                    job_store, settings.sweep_interval_seconds, settings.sweep_max_age_seconds
                )
            )
        logger.info(f"Chat relay started in {settings.chat_mode} mode")

        try:
            yield
        finally:
            logger.info("Chat relay shutting down")
            if sweeper is not None:
                sweeper.cancel()
                await asyncio.gather(sweeper, return_exceptions=True)
            await runner.shutdown()
            await job_store.close()
            if completion_client is None:
                await client.aclose()
            logger.info(f"Final metrics: {sink.snapshot()}")

    app = FastAPI(
        title="Chat Relay",
        description="Relays chat messages to an OpenAI-compatible completion API.",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request.state.request_id = uuid4().hex[:8]
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ChatRelayError, chat_relay_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(router)
    return app
