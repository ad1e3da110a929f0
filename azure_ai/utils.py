"""Shared error handling and retry policy for Azure REST calls."""
from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


class AzureAPIError(Exception):
    """Raised when an Azure endpoint returns an error or an unexpected payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def is_retryable_error(error: BaseException) -> bool:
    """Network failures, 5xx, 429 and 408 are retried; everything else is not."""
    if isinstance(error, httpx.TransportError):
        return True

    status = getattr(error, "status_code", None)
    if status is None:
        return False
    return 500 <= status < 600 or status in (408, 429)


def parse_azure_error(error: Any) -> str:
    """Extract a readable message from an Azure error body or exception."""
    if isinstance(error, bytes):
        error = error.decode("utf-8", errors="replace")

    if isinstance(error, str):
        try:
            error = json.loads(error)
        except ValueError:
            return error or "Unknown Azure API error"

    if isinstance(error, dict):
        inner = error.get("error")
        if isinstance(inner, dict) and inner.get("message"):
            return inner["message"]
        if error.get("message"):
            return error["message"]

    if isinstance(error, BaseException) and str(error):
        return str(error)

    return "Unknown Azure API error"


def raise_for_status(response: httpx.Response, service: str) -> None:
    """Raise AzureAPIError for non-2xx responses, keeping the status code."""
    if response.is_success:
        return
    message = parse_azure_error(response.text)
    raise AzureAPIError(f"{service} API error: {message}", status_code=response.status_code)


def azure_retrying(max_retries: int, delay: float, multiplier: float = 2.0) -> AsyncRetrying:
    """Build the retry loop used around Azure calls.

    Waits ``delay``, ``delay * multiplier``, ... between attempts and gives up
    after ``max_retries`` retries, re-raising the last error.

    Usage:
        async for attempt in azure_retrying(3, 1.0):
            with attempt:
                ...
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=delay, exp_base=multiplier),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
