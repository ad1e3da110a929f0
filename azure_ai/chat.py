"""Chat-completion client for the Azure-hosted assistant model.

Supports a single-shot completion (with retries) and an SSE token stream.
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, AsyncIterator

import httpx

from bmo.config import ChatSettings, RetrySettings, settings

from .utils import AzureAPIError, azure_retrying, raise_for_status

logger = logging.getLogger(__name__)

ChatMessage = dict[str, str]

_DONE = object()


def parse_sse_line(line: str) -> Any:
    """Parse one Server-Sent Events line from a streamed completion.

    Returns:
        The delta text, ``None`` for lines without content, or the ``_DONE``
        sentinel for ``data: [DONE]``
    """
    if not line.startswith("data: "):
        return None

    data = line[len("data: "):].strip()
    if data == "[DONE]":
        return _DONE

    try:
        parsed = json.loads(data)
    except ValueError:
        return None

    choices = parsed.get("choices") or [] if isinstance(parsed, dict) else []
    if not choices:
        return None
    return (choices[0].get("delta") or {}).get("content") or None


class ChatClient:
    """Async chat-completion client."""

    def __init__(
        self,
        config: ChatSettings | None = None,
        retry: RetrySettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or settings.chat
        self.retry = retry or settings.retry
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.config.timeout)

    def _headers(self) -> dict[str, str]:
        return {"api-key": self.config.api_key}

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the assistant reply for ``messages``.

        Raises:
            AzureAPIError: On HTTP errors (after retries) or an unexpected payload
        """
        payload = {
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
            "stream": False,
        }

        async for attempt in azure_retrying(self.retry.max_retries, self.retry.delay, self.retry.multiplier):
            with attempt:
                async with self._client() as client:
                    response = await client.post(self.config.endpoint, json=payload, headers=self._headers())
                raise_for_status(response, "Chat")

        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise AzureAPIError("Unexpected chat response format")
        return content

    async def stream(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply fragments as they arrive."""
        payload = {
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "stream": True,
        }

        async with self._client() as client:
            async with client.stream(
                "POST",
                self.config.endpoint,
                json=payload,
                headers=self._headers(),
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise_for_status(response, "Chat")

                async for line in response.aiter_lines():
                    content = parse_sse_line(line)
                    if content is _DONE:
                        return
                    if content:
                        yield content


@lru_cache(maxsize=1)
def get_chat_client() -> ChatClient:
    return ChatClient()


async def chat_completion(
    messages: list[ChatMessage],
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> str:
    """Convenience wrapper around the default client."""
    return await get_chat_client().complete(messages, temperature=temperature, max_tokens=max_tokens)
