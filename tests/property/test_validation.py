"""Property-based tests for data model validation.

Feature: chat-relay
Properties 1-4: message bounds, job identifiers, record invariants, deadlines
"""

import re

import pytest
from hypothesis import given, settings, strategies as st
from pydantic import ValidationError

from chat_relay.models.chat import ChatRequest, JobStatusResponse
from chat_relay.models.job import JobRecord, generate_job_id
from chat_relay.utils.errors import MessageValidationError
from tests.conftest import make_settings

JOB_ID_PATTERN = re.compile(r"^[a-z0-9]+$")

valid_messages = st.text(min_size=1, max_size=200)
too_long_messages = st.text(min_size=201, max_size=400)


class TestProperty1MessageBounds:
    """Property 1: Message Length Bounds.

    *For any* message of 1..200 characters the request is accepted; an empty
    message or one longer than the bound is rejected.
    """

    @settings(max_examples=100)
    @given(message=valid_messages)
    def test_messages_within_bound_accepted(self, message: str) -> None:
        request = ChatRequest(message=message)
        request.check_length(200)
        assert request.message == message

    @settings(max_examples=100)
    @given(message=too_long_messages)
    def test_messages_over_bound_rejected(self, message: str) -> None:
        request = ChatRequest(message=message)
        with pytest.raises(MessageValidationError) as exc_info:
            request.check_length(200)
        assert exc_info.value.status_code == 400
        assert "200" in exc_info.value.message

    def test_empty_message_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ChatRequest(message="")

    @pytest.mark.parametrize("value", [None, 42, ["hello"], {"text": "hi"}])
    def test_non_string_message_rejected(self, value) -> None:
        with pytest.raises(ValidationError):
            ChatRequest(message=value)

    def test_boundary_lengths(self) -> None:
        ChatRequest(message="a" * 200).check_length(200)
        with pytest.raises(MessageValidationError):
            ChatRequest(message="a" * 201).check_length(200)


class TestProperty2JobIdentifiers:
    """Property 2: Job Identifiers.

    *For any* batch of generated ids, every id matches ``[a-z0-9]+`` and no
    id repeats.
    """

    @settings(max_examples=50)
    @given(count=st.integers(min_value=1, max_value=200))
    def test_ids_are_unique_and_well_formed(self, count: int) -> None:
        ids = [generate_job_id() for _ in range(count)]
        assert len(set(ids)) == count
        assert all(JOB_ID_PATTERN.match(job_id) for job_id in ids)

    def test_new_record_is_pending_with_expiry(self) -> None:
        record = JobRecord.new("hello", ttl_seconds=900)
        assert record.status == "pending"
        assert record.message == "hello"
        assert record.expires_at is not None
        assert (record.expires_at - record.created_at).total_seconds() == 900
        assert not record.is_terminal


class TestProperty3RecordInvariants:
    """Property 3: Result/Error Presence.

    ``result`` is present iff completed and ``error`` iff errored; a
    terminal record cannot transition again.
    """

    def test_completed_requires_result(self) -> None:
        with pytest.raises(ValidationError):
            JobRecord(id="abc123", status="completed")

    def test_error_requires_error_text(self) -> None:
        with pytest.raises(ValidationError):
            JobRecord(id="abc123", status="error")

    def test_never_both_result_and_error(self) -> None:
        with pytest.raises(ValidationError):
            JobRecord(id="abc123", status="completed", result="hi", error="boom")

    def test_pending_cannot_carry_outcome(self) -> None:
        with pytest.raises(ValidationError):
            JobRecord(id="abc123", status="pending", result="hi")

    def test_id_must_be_lowercase_alphanumeric(self) -> None:
        with pytest.raises(ValidationError):
            JobRecord(id="ABC-123")

    @settings(max_examples=50)
    @given(result=st.text(max_size=100))
    def test_finish_drops_message_and_stamps_completion(self, result: str) -> None:
        record = JobRecord.new("hello", ttl_seconds=60)
        done = record.finish("completed", result=result, processing_time_ms=12)
        assert done.status == "completed"
        assert done.result == result
        assert done.error is None
        assert done.message is None
        assert done.completed_at is not None
        assert done.expires_at == record.expires_at

    def test_finish_twice_rejected(self) -> None:
        done = JobRecord.new("hello", ttl_seconds=60).finish("error", error="boom")
        with pytest.raises(ValueError):
            done.finish("completed", result="late")

    def test_status_projection_uses_wire_names(self) -> None:
        record = JobRecord.new("hello", ttl_seconds=60).finish(
            "completed", result="hi", processing_time_ms=40
        )
        body = JobStatusResponse.from_record(record).model_dump(by_alias=True, exclude_none=True)
        assert body["requestId"] == record.id
        assert body["status"] == "completed"
        assert body["result"] == "hi"
        assert body["processingTime"] == 40
        assert "error" not in body
        assert "timestamp" in body and "completedAt" in body


class TestProperty4Deadlines:
    """Property 4: Internal Deadline Shorter Than Transport Timeout."""

    @settings(max_examples=50)
    @given(
        upstream=st.floats(min_value=0.5, max_value=60),
        margin=st.floats(min_value=0.01, max_value=0.4),
    )
    def test_shorter_processing_deadline_accepted(self, upstream: float, margin: float) -> None:
        config = make_settings(
            upstream_timeout_seconds=upstream,
            processing_timeout_seconds=upstream - margin,
        )
        assert config.processing_timeout_seconds < config.upstream_timeout_seconds

    @settings(max_examples=50)
    @given(
        upstream=st.floats(min_value=0.5, max_value=60),
        extra=st.floats(min_value=0, max_value=10),
    )
    def test_processing_deadline_not_shorter_rejected(self, upstream: float, extra: float) -> None:
        with pytest.raises(ValidationError):
            make_settings(
                upstream_timeout_seconds=upstream,
                processing_timeout_seconds=upstream + extra,
            )
