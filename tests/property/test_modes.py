"""API tests for the synchronous and streaming modes.

Feature: chat-relay
Properties 17-18: direct replies, streamed relay
"""

import json
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient
from hypothesis import given, settings, strategies as st

from chat_relay.main import create_app
from chat_relay.services.job_store import InMemoryJobStore
from chat_relay.services.metrics import InMemoryMetrics
from chat_relay.utils.errors import (
    CompletionAPIError,
    InsufficientQuotaError,
    MalformedResponseError,
    RateLimitedError,
    UpstreamTimeoutError,
)
from tests.conftest import FakeCompletionClient, make_settings, upstream_client


def _client(completion: FakeCompletionClient, mode: str, store: InMemoryJobStore = None, **overrides):
    app = create_app(
        settings=make_settings(chat_mode=mode, **overrides),
        store=store if store is not None else InMemoryJobStore(),
        completion_client=completion,
        metrics=InMemoryMetrics(),
    )
    return TestClient(app)


class TestProperty17SyncMode:
    """Property 17: Synchronous Replies.

    The reply is returned directly; upstream failures map to their status
    codes with a flat error body, and nothing is written to the job store.
    """

    def test_reply(self) -> None:
        store = InMemoryJobStore()
        with _client(FakeCompletionClient(text="Hi!"), "sync", store=store) as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == 200
        assert response.json() == {"response": "Hi!"}
        assert len(store) == 0

    @pytest.mark.parametrize(
        "error, status",
        [
            (InsufficientQuotaError(), 402),
            (RateLimitedError(), 429),
            (UpstreamTimeoutError(), 504),
            (MalformedResponseError(), 500),
            (CompletionAPIError(503, "unavailable"), 500),
        ],
    )
    def test_upstream_errors(self, error, status: int) -> None:
        with _client(FakeCompletionClient(error=error), "sync") as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == status
        assert response.json() == {"error": error.message}

    def test_internal_deadline(self) -> None:
        completion = FakeCompletionClient(delay=30)
        with _client(completion, "sync", processing_timeout_seconds=0.1) as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == 504
        assert completion.cancelled

    def test_validation_still_applies(self) -> None:
        with _client(FakeCompletionClient(), "sync") as client:
            assert client.post("/chat", json={"message": ""}).status_code == 400
            assert client.post("/chat", json={"message": "x" * 201}).status_code == 400


class TestProperty18StreamMode:
    """Property 18: Streamed Relay.

    *For any* fixed upstream reply the concatenated body equals the full
    text; failures before the first fragment are structured errors, failures
    after it just end the body.
    """

    @settings(max_examples=25, deadline=None)
    @given(fragments=st.lists(st.text(min_size=1, max_size=10), min_size=1, max_size=10))
    def test_body_is_concatenation_of_fragments(self, fragments: List[str]) -> None:
        completion = FakeCompletionClient(fragments=fragments)
        with _client(completion, "stream") as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == 200
        assert response.text == "".join(fragments)

    def test_stream_headers(self) -> None:
        completion = FakeCompletionClient(fragments=["Hel", "lo"])
        with _client(completion, "stream") as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["access-control-allow-origin"] == "*"
        assert "content-length" not in response.headers

    def test_empty_upstream_stream(self) -> None:
        with _client(FakeCompletionClient(fragments=[]), "stream") as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == 200
        assert response.text == ""

    @pytest.mark.parametrize(
        "error, status",
        [(RateLimitedError(), 429), (InsufficientQuotaError(), 402), (CompletionAPIError(), 500)],
    )
    def test_failure_before_first_fragment(self, error, status: int) -> None:
        with _client(FakeCompletionClient(error=error), "stream") as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == status
        assert response.json() == {"error": error.message}

    def test_timeout_before_first_fragment(self) -> None:
        completion = FakeCompletionClient(delay=30)
        with _client(completion, "stream", processing_timeout_seconds=0.1) as client:
            response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == 504

    def test_failure_mid_stream_truncates_body(self) -> None:
        completion = FakeCompletionClient(
            fragments=["one ", "two ", "three"], error=RateLimitedError(), fail_after=2
        )
        with _client(completion, "stream") as client:
            response = client.post("/chat", json={"message": "hello"})
            metrics = client.get("/health").json()["metrics"]
        assert response.status_code == 200
        assert response.text == "one two "
        assert metrics["failed_requests"] == 1

    def test_slow_stream_is_cut_at_total_deadline(self) -> None:
        fragments = ["one ", "two ", "three ", "four ", "five "]
        completion = FakeCompletionClient(fragments=fragments, fragment_delay=0.4)
        with _client(completion, "stream", stream_timeout_seconds=1.0) as client:
            response = client.post("/chat", json={"message": "hello"})
            metrics = client.get("/health").json()["metrics"]
        assert response.status_code == 200
        assert response.text.startswith("one ")
        assert response.text != "".join(fragments)
        assert "".join(fragments).startswith(response.text)
        assert completion.cancelled
        assert metrics["timeouts"] == 1
        assert metrics["failed_requests"] == 1
        assert metrics.get("successful_requests", 0) == 0

    def test_malformed_event_mid_stream_ends_body(self) -> None:
        body = (
            b"data: " + json.dumps({"choices": [{"delta": {"content": "ok"}}]}).encode()
            + b"\n\ndata: " + json.dumps({"choices": ["oops"]}).encode() + b"\n\n"
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body)

        app = create_app(
            settings=make_settings(chat_mode="stream"),
            store=InMemoryJobStore(),
            completion_client=upstream_client(handler),
            metrics=InMemoryMetrics(),
        )
        with TestClient(app) as client:
            response = client.post("/chat", json={"message": "hello"})
            metrics = client.get("/health").json()["metrics"]
        assert response.status_code == 200
        assert response.text == "ok"
        assert metrics["failed_requests"] == 1
