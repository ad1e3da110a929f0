"""Azure Document Intelligence (prebuilt invoice model) client.

Submits a document for analysis and polls the long-running operation with a
capped exponential delay until it succeeds, fails or runs out of attempts.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from functools import lru_cache
from typing import Any

import httpx

from bmo.config import DocumentIntelligenceSettings, RetrySettings, settings

from .utils import AzureAPIError, azure_retrying, raise_for_status

logger = logging.getLogger(__name__)

SERVICE = "Document Intelligence"


class DocumentIntelligenceClient:
    """Thin async wrapper over the analyze + poll REST calls."""

    def __init__(
        self,
        config: DocumentIntelligenceSettings | None = None,
        retry: RetrySettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or settings.docint
        self.retry = retry or settings.retry
        self._transport = transport

    @property
    def analyze_url(self) -> str:
        endpoint = self.config.endpoint.rstrip("/") + "/"
        return (
            f"{endpoint}formrecognizer/documentModels/{self.config.model_id}:analyze"
            f"?api-version={self.config.api_version}"
        )

    def _headers(self) -> dict[str, str]:
        return {"Ocp-Apim-Subscription-Key": self.config.api_key}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=30.0)

    async def submit(self, content: bytes) -> str:
        """Start an analysis and return its Operation-Location URL.

        Raises:
            AzureAPIError: On a non-2xx response or a missing Operation-Location
        """
        payload = {"base64Source": base64.b64encode(content).decode("ascii")}

        async for attempt in azure_retrying(self.retry.analysis_max_retries, self.retry.analysis_delay):
            with attempt:
                async with self._client() as client:
                    response = await client.post(self.analyze_url, json=payload, headers=self._headers())
                raise_for_status(response, SERVICE)

        operation_location = response.headers.get("Operation-Location")
        if not operation_location:
            raise AzureAPIError("No operation location in response")
        return operation_location

    async def poll(self, operation_location: str) -> dict[str, Any]:
        """Poll an analysis operation until it reaches a terminal state.

        Raises:
            AzureAPIError: If the analysis fails, polling errors, or attempts run out
        """
        delay = self.config.poll_initial_delay

        async with self._client() as client:
            for attempt in range(1, self.config.poll_max_attempts + 1):
                response = await client.get(operation_location, headers=self._headers())
                if not response.is_success:
                    raise AzureAPIError(
                        f"Document Intelligence polling error: {response.text}",
                        status_code=response.status_code,
                    )

                result = response.json()
                status = result.get("status")
                if status == "succeeded":
                    logger.debug(f"Analysis succeeded after {attempt} poll(s)")
                    return result
                if status == "failed":
                    message = (result.get("error") or {}).get("message") or "Unknown error"
                    raise AzureAPIError(f"Analysis failed: {message}")

                await asyncio.sleep(delay)
                delay = min(delay * self.config.poll_backoff, self.config.poll_max_delay)

        raise AzureAPIError("Analysis timeout")

    async def analyze(self, content: bytes) -> dict[str, Any]:
        """Submit a document and wait for the analysis result."""
        operation_location = await self.submit(content)
        logger.info("Analysis request submitted, polling for results")
        return await self.poll(operation_location)


def extract_fields(result: dict[str, Any]) -> tuple[dict[str, dict[str, Any]], float]:
    """Flatten the first analyzed document's fields.

    Each field becomes ``{"value": ..., "confidence": ...}``. A missing or zero
    confidence counts as 1.0.

    Returns:
        Tuple of (fields, minimum confidence across fields)
    """
    min_confidence = 1.0
    fields: dict[str, dict[str, Any]] = {}

    documents = (result.get("analyzeResult") or {}).get("documents") or []
    if not documents:
        return fields, min_confidence

    for name, field in (documents[0].get("fields") or {}).items():
        field = field or {}
        confidence = field.get("confidence") or 1.0
        min_confidence = min(min_confidence, confidence)
        fields[name] = {
            "value": field.get("content") or field.get("value") or field.get("contentArray"),
            "confidence": confidence,
        }

    return fields, min_confidence


@lru_cache(maxsize=1)
def get_document_intelligence_client() -> DocumentIntelligenceClient:
    return DocumentIntelligenceClient()
