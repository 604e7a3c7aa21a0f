"""Pydantic data models for the chat relay."""

from chat_relay.models.chat import (
    ChatReply,
    ChatRequest,
    ErrorResponse,
    JobAccepted,
    JobStatusResponse,
)
from chat_relay.models.job import JobRecord, JobStatus, generate_job_id

__all__ = [
    "ChatRequest",
    "ChatReply",
    "JobAccepted",
    "JobStatusResponse",
    "ErrorResponse",
    "JobRecord",
    "JobStatus",
    "generate_job_id",
]
