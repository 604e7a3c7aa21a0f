"""Pytest fixtures for chat relay tests."""

import asyncio
import json
from typing import Any, Callable, List, Optional

import httpx
import pytest

from chat_relay.config import Settings
from chat_relay.services.completion import CompletionClient, CompletionResult


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the developer's environment."""
    values: dict[str, Any] = {
        "deepseek_api_key": "test-key",
        "completion_base_url": "https://upstream.test",
        "upstream_timeout_seconds": 2.0,
        "processing_timeout_seconds": 1.0,
        "sweep_interval_seconds": 0,
        "chat_mode": "async",
        "job_store_backend": "memory",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def completion_body(text: str) -> dict:
    return {
        "id": "cmpl-1",
        "model": "deepseek-chat",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 5, "completion_tokens": 3},
    }


def sse_body(fragments: List[str]) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}),
    ]
    for fragment in fragments:
        lines.append("data: " + json.dumps({"choices": [{"delta": {"content": fragment}}]}))
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def upstream_client(
    handler: Callable[[httpx.Request], httpx.Response], **settings_overrides: Any
) -> CompletionClient:
    """CompletionClient whose HTTP traffic is served by ``handler``."""
    settings = make_settings(**settings_overrides)
    return CompletionClient(
        api_key=settings.deepseek_api_key,
        base_url=settings.completion_base_url,
        model=settings.completion_model,
        system_prompt=settings.system_prompt,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.upstream_timeout_seconds,
        transport=httpx.MockTransport(handler),
    )


class FakeCompletionClient:
    """In-process stand-in for the upstream API."""

    def __init__(
        self,
        text: str = "Hello there!",
        delay: float = 0.0,
        error: Optional[Exception] = None,
        fragments: Optional[List[str]] = None,
        fail_after: Optional[int] = None,
        fragment_delay: float = 0.0,
    ) -> None:
        self.text = text
        self.delay = delay
        self.error = error
        self.fragments = fragments if fragments is not None else [text]
        self.fail_after = fail_after
        self.fragment_delay = fragment_delay
        self.calls: List[str] = []
        self.cancelled = False
        self.closed = False

    async def complete(self, message: str) -> CompletionResult:
        self.calls.append(message)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return CompletionResult(text=self.text, model="fake")

    async def stream(self, message: str):
        self.calls.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None and self.fail_after is None:
            raise self.error
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index == self.fail_after:
                raise self.error
            if index and self.fragment_delay:
                try:
                    await asyncio.sleep(self.fragment_delay)
                except asyncio.CancelledError:
                    self.cancelled = True
                    raise
            yield fragment

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()
