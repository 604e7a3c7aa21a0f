"""Python client for the chat relay endpoints."""

from chat_relay.client.poller import (
    ChatClientError,
    ChatPoller,
    JobExpiredError,
    PollResult,
    PollTimeoutError,
)

__all__ = [
    "ChatPoller",
    "PollResult",
    "ChatClientError",
    "JobExpiredError",
    "PollTimeoutError",
]
