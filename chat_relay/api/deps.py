"""FastAPI dependencies for the chat relay API."""

from fastapi import Request

from chat_relay.config import Settings
from chat_relay.services.completion import CompletionClient
from chat_relay.services.job_store import JobStore
from chat_relay.services.metrics import InMemoryMetrics
from chat_relay.services.processor import JobRunner


def get_settings_dep(request: Request) -> Settings:
    """Dependency for application settings."""
    return request.app.state.settings


def get_job_store(request: Request) -> JobStore:
    """Dependency for the job store."""
    return request.app.state.job_store


def get_completion_client(request: Request) -> CompletionClient:
    """Dependency for the upstream completion client."""
    return request.app.state.completion_client


def get_metrics(request: Request) -> InMemoryMetrics:
    """Dependency for the metrics sink."""
    return request.app.state.metrics


def get_job_runner(request: Request) -> JobRunner:
    """Dependency for the background job runner."""
    return request.app.state.job_runner


def get_request_id(request: Request) -> str:
    """Short id used to prefix log lines for one request."""
    return getattr(request.state, "request_id", "-")
