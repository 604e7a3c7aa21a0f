"""Utility modules for the chat relay."""

from chat_relay.utils.errors import (
    ChatRelayError,
    CompletionAPIError,
    CompletionError,
    DuplicateJobError,
    InsufficientQuotaError,
    JobNotFoundError,
    JobStoreError,
    MalformedResponseError,
    MessageValidationError,
    MissingRequestIdError,
    RateLimitedError,
    UpstreamTimeoutError,
    classify_upstream_status,
)

__all__ = [
    "ChatRelayError",
    "MessageValidationError",
    "MissingRequestIdError",
    "JobNotFoundError",
    "DuplicateJobError",
    "JobStoreError",
    "CompletionError",
    "UpstreamTimeoutError",
    "InsufficientQuotaError",
    "RateLimitedError",
    "MalformedResponseError",
    "CompletionAPIError",
    "classify_upstream_status",
]
