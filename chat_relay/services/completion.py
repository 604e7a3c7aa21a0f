"""Completion client for an OpenAI-compatible chat-completion API."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx

from chat_relay.config import Settings
from chat_relay.utils.errors import (
    CompletionAPIError,
    MalformedResponseError,
    UpstreamTimeoutError,
    classify_upstream_status,
)

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"
STREAM_DONE = "[DONE]"


@dataclass
class CompletionResult:
    text: str
    model: str = ""
    usage: dict[str, Any] = field(default_factory=dict)


class CompletionClient:
    """One request per call to the upstream ``/chat/completions`` endpoint.

    No retries: every failure is classified and raised immediately.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        system_prompt: str,
        temperature: float = 0.5,
        max_tokens: int = 50,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the CompletionClient.

        Args:
            api_key: Bearer token for the upstream API
            base_url: Root URL of the OpenAI-compatible API
            model: Model name sent with every request
            system_prompt: Fixed system instruction prepended to the user message
            temperature: Sampling temperature
            max_tokens: Completion token cap
            timeout: Hard transport timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def _build_payload(self, message: str, stream: bool) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": message},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": stream,
        }

    @staticmethod
    def _parse_completion(data: Any) -> CompletionResult:
        if not isinstance(data, dict):
            raise MalformedResponseError()
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            logger.error(f"Completion response has no choices: {str(data)[:200]}")
            raise MalformedResponseError()

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        text = message.get("content") if isinstance(message, dict) else None
        if not isinstance(text, str):
            raise MalformedResponseError()

        return CompletionResult(
            text=text,
            model=data.get("model", ""),
            usage=data.get("usage") or {},
        )

    async def complete(self, message: str) -> CompletionResult:
        """
        Request a full, non-streamed completion.

        Args:
            message: User message

        Returns:
            CompletionResult with the text of the first choice

        Raises:
            UpstreamTimeoutError: Transport timeout
            InsufficientQuotaError: Upstream returned 402
            RateLimitedError: Upstream returned 429
            MalformedResponseError: Response had no usable choice
            CompletionAPIError: Any other upstream failure
        """
        payload = self._build_payload(message, stream=False)
        try:
            response = await self._client.post(COMPLETIONS_PATH, json=payload)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError() from e
        except httpx.HTTPError as e:
            raise CompletionAPIError(None, str(e)) from e

        if response.status_code != 200:
            logger.error(f"Completion API status code: {response.status_code}")
            raise classify_upstream_status(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError() from e

        return self._parse_completion(data)

    async def stream(self, message: str) -> AsyncIterator[str]:
        """
        Request a streamed completion and yield text fragments as they arrive.

        Empty deltas (role announcements, finish markers) are skipped.
        """
        payload = self._build_payload(message, stream=True)
        try:
            async with self._client.stream("POST", COMPLETIONS_PATH, json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Completion API status code: {response.status_code}")
                    raise classify_upstream_status(response.status_code, body)

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == STREAM_DONE:
                        break
                    fragment = self._parse_delta(data)
                    if fragment:
                        yield fragment
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError() from e
        except httpx.HTTPError as e:
            raise CompletionAPIError(None, str(e)) from e

    @staticmethod
    def _parse_delta(data: str) -> str:
        try:
            chunk = json.loads(data)
        except ValueError as e:
            raise MalformedResponseError() from e
        if not isinstance(chunk, dict):
            raise MalformedResponseError()
        choices = chunk.get("choices")
        if not choices:
            return ""
        if not isinstance(choices, list) or not isinstance(choices[0], dict):
            logger.error(f"Stream event has malformed choices: {data[:200]}")
            raise MalformedResponseError()

        delta = choices[0].get("delta") or {}
        if not isinstance(delta, dict):
            raise MalformedResponseError()
        content = delta.get("content")
        if content is not None and not isinstance(content, str):
            raise MalformedResponseError()
        return content or ""

    async def aclose(self) -> None:
        await self._client.aclose()


# Factory function for creating CompletionClient with settings
def create_completion_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> CompletionClient:
    """
    Create a CompletionClient instance using application settings.

    Returns:
        Configured CompletionClient instance
    """
    if not settings.deepseek_api_key:
        logger.warning("DEEPSEEK_API_KEY is not set; upstream calls will be rejected")
    return CompletionClient(
        api_key=settings.deepseek_api_key,
        base_url=settings.completion_base_url,
        model=settings.completion_model,
        system_prompt=settings.system_prompt,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.upstream_timeout_seconds,
        transport=transport,
    )
