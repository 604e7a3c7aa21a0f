"""Custom exception classes for the chat relay."""

from typing import Optional


class ChatRelayError(Exception):
    """Base exception for all application errors.

    ``status_code`` is the HTTP status reported to callers and ``message`` is
    the user-visible text placed in the ``error`` field of the response body.
    """

    status_code: int = 500
    default_message: str = "Error processing your request"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class MessageValidationError(ChatRelayError):
    """Inbound message is absent, empty or too long."""

    status_code = 400
    default_message = "Message is required in request body"


class MissingRequestIdError(ChatRelayError):
    """Status lookup without a request id."""

    status_code = 400
    default_message = "Request ID is required"


class JobNotFoundError(ChatRelayError):
    """Job record is absent from the store (never existed or expired)."""

    status_code = 404
    default_message = "Request not found. It may have expired or never existed."


class DuplicateJobError(ChatRelayError):
    """A background task is already running for this job id."""

    status_code = 409
    default_message = "Request is already being processed"


class JobStoreError(ChatRelayError):
    """Job store read or write failed."""

    status_code = 500
    default_message = "Error checking request status"


class CompletionError(ChatRelayError):
    """Base class for failures of the upstream completion API."""

    pass


class UpstreamTimeoutError(CompletionError):
    """Upstream call exceeded the processing deadline or transport timeout."""

    status_code = 504
    default_message = (
        "The AI service is taking too long to respond. "
        "Please try a shorter message or try again later."
    )


class InsufficientQuotaError(CompletionError):
    """Upstream returned HTTP 402."""

    status_code = 402
    default_message = "Account has insufficient balance. Please contact the administrator."


class RateLimitedError(CompletionError):
    """Upstream returned HTTP 429."""

    status_code = 429
    default_message = "Too many requests. Please try again later."


class MalformedResponseError(CompletionError):
    """Upstream response had no usable choice."""

    status_code = 500
    default_message = "Invalid response from the AI service"


class CompletionAPIError(CompletionError):
    """Any other upstream failure."""

    def __init__(self, upstream_status: Optional[int] = None, detail: str = "") -> None:
        self.upstream_status = upstream_status
        self.detail = detail
        super().__init__()

    def __str__(self) -> str:
        if self.upstream_status is not None:
            return f"Completion API error {self.upstream_status}: {self.detail}"
        return f"Completion API error: {self.detail}"


def classify_upstream_status(status_code: int, body: str = "") -> CompletionError:
    """Map a non-2xx upstream status code to the matching exception."""
    if status_code == 402:
        return InsufficientQuotaError()
    if status_code == 429:
        return RateLimitedError()
    if status_code in (408, 504):
        return UpstreamTimeoutError()
    return CompletionAPIError(status_code, body[:500])
