"""Request and response models for the chat endpoints."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from chat_relay.models.job import JobRecord
from chat_relay.utils.errors import MessageValidationError


class ChatRequest(BaseModel):
    """Inbound chat message."""

    message: StrictStr = Field(min_length=1)

    def check_length(self, max_length: int) -> None:
        """Raise MessageValidationError when the message exceeds the configured bound."""
        if len(self.message) > max_length:
            raise MessageValidationError(f"Message too long (max {max_length} characters)")


class JobAccepted(BaseModel):
    """Response for an accepted async submission."""

    id: str
    status: Literal["pending"] = "pending"


class ChatReply(BaseModel):
    """Response for a synchronous completion."""

    response: str


class JobStatusResponse(BaseModel):
    """Projection of a job record returned by the status endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="requestId")
    status: str
    result: Optional[str] = None
    error: Optional[str] = None
    timestamp: str
    completed_at: Optional[str] = Field(default=None, alias="completedAt")
    processing_time: Optional[int] = Field(default=None, alias="processingTime")

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobStatusResponse":
        return cls(
            request_id=record.id,
            status=record.status,
            result=record.result,
            error=record.error,
            timestamp=record.created_at.isoformat(),
            completed_at=record.completed_at.isoformat() if record.completed_at else None,
            processing_time=record.processing_time_ms,
        )


class ErrorResponse(BaseModel):
    """Flat error body returned for every failure."""

    error: str
