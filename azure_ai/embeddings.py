"""Embedding service backed by the Azure embeddings endpoint.

Wraps the REST call with retry logic and tolerant response parsing.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import httpx

from bmo.config import EmbeddingSettings, RetrySettings, settings

from .utils import AzureAPIError, azure_retrying, raise_for_status

logger = logging.getLogger(__name__)


class EmbeddingError(AzureAPIError):
    """Raised when an embedding cannot be computed."""
    pass


def parse_embedding_response(data: Any) -> list[float]:
    """Pull the first embedding out of the shapes the endpoint may return.

    Accepts ``{"data": [{"embedding": [...]}]}``, ``[{"embedding": [...]}]``,
    ``[[...]]`` and ``{"embedding": [...]}``. Returns [] when none match.
    """
    if isinstance(data, dict):
        items = data.get("data")
        if isinstance(items, list) and items and isinstance(items[0], dict) and items[0].get("embedding"):
            return items[0]["embedding"]
        if data.get("embedding"):
            return data["embedding"]
        return []

    if isinstance(data, list) and data:
        first = data[0]
        if isinstance(first, dict):
            return first.get("embedding") or []
        if isinstance(first, list):
            return first

    return []


class EmbeddingsClient:
    """Async client for single and batched embedding requests."""

    def __init__(
        self,
        config: EmbeddingSettings | None = None,
        retry: RetrySettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or settings.embeddings
        self.retry = retry or settings.retry
        self._transport = transport

    async def _post(self, payload: dict[str, Any]) -> Any:
        headers = {"api-key": self.config.api_key}
        async for attempt in azure_retrying(self.retry.max_retries, self.retry.delay, self.retry.multiplier):
            with attempt:
                async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                    response = await client.post(self.config.endpoint, json=payload, headers=headers)
                raise_for_status(response, "Embeddings")
        return response.json()

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingError: If the text is empty or the response has no usable vector
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        data = await self._post({
            "input": text,
            "model": self.config.model,
            "dimensions": self.config.dimensions,
        })
        embedding = parse_embedding_response(data)
        self._check(embedding)
        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request, preserving input order."""
        if not texts:
            logger.warning("Empty text list provided to embed_batch")
            return []

        data = await self._post({
            "input": list(texts),
            "model": self.config.model,
            "dimensions": self.config.dimensions,
        })
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or len(items) != len(texts):
            raise EmbeddingError("Unexpected embeddings response format")

        items = sorted(items, key=lambda item: item.get("index", 0))
        embeddings = [item.get("embedding") or [] for item in items]
        for embedding in embeddings:
            self._check(embedding)
        return embeddings

    def _check(self, embedding: list[float]) -> None:
        if not embedding:
            raise EmbeddingError("Empty embedding in response")
        if len(embedding) != self.config.dimensions:
            raise EmbeddingError(
                f"Embedding has {len(embedding)} dimensions, expected {self.config.dimensions}"
            )


@lru_cache(maxsize=1)
def get_embeddings_client() -> EmbeddingsClient:
    return EmbeddingsClient()


async def embed_single(text: str) -> list[float]:
    """Convenience function to embed a single text with the default client."""
    return await get_embeddings_client().embed(text)
