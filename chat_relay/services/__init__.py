"""Service layer for the chat relay."""

from chat_relay.services.completion import (
    CompletionClient,
    CompletionResult,
    create_completion_client,
)
from chat_relay.services.job_store import (
    InMemoryJobStore,
    JobStore,
    SupabaseJobStore,
    create_job_store,
    sweep_periodically,
)
from chat_relay.services.metrics import InMemoryMetrics, MetricsSink
from chat_relay.services.processor import BackgroundProcessor, JobRunner

__all__ = [
    "CompletionClient",
    "CompletionResult",
    "create_completion_client",
    "JobStore",
    "InMemoryJobStore",
    "SupabaseJobStore",
    "create_job_store",
    "sweep_periodically",
    "MetricsSink",
    "InMemoryMetrics",
    "BackgroundProcessor",
    "JobRunner",
]
