"""Appwrite REST client for accounts, users and file storage.

Server-side calls authenticate with the project API key; account calls
(email sessions, password recovery) run as a guest of the project.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx

from .config import AppwriteSettings, settings
from .errors import BmoError

logger = logging.getLogger(__name__)


class AppwriteError(BmoError):
    """Raised when an Appwrite call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class StoredFile:
    """Metadata of a file in an Appwrite bucket."""
    file_id: str
    name: str
    mime_type: str | None
    size: int | None


class AppwriteClient:
    """Async wrapper over the Appwrite REST API."""

    def __init__(
        self,
        config: AppwriteSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or settings.appwrite
        self._transport = transport

    def _client(self, *, server: bool = True) -> httpx.AsyncClient:
        headers = {"X-Appwrite-Project": self.config.project_id}
        if server:
            headers["X-Appwrite-Key"] = self.config.api_key
        return httpx.AsyncClient(
            base_url=self.config.endpoint.rstrip("/"),
            headers=headers,
            transport=self._transport,
            timeout=self.config.timeout,
        )

    async def _request(self, method: str, path: str, *, server: bool = True, **kwargs) -> httpx.Response:
        try:
            async with self._client(server=server) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Appwrite request {method} {path} failed: {e}")
            raise AppwriteError(f"Appwrite unavailable: {e}") from e

        if not response.is_success:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            raise AppwriteError(message or f"Appwrite error {response.status_code}", status_code=response.status_code)
        return response

    # Users (server API)

    async def create_user(self, email: str, password: str | None = None, name: str | None = None) -> dict[str, Any]:
        payload = {
            "userId": "unique()",
            "email": email,
            "password": password or secrets.token_urlsafe(24),
            "name": name or email.split("@")[0],
        }
        response = await self._request("POST", "/users", json=payload)
        return response.json()

    async def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        response = await self._request("GET", "/users", params={"search": email})
        for user in response.json().get("users", []):
            if user.get("email", "").lower() == email.lower():
                return user
        return None

    async def get_or_create_user(self, email: str, name: str | None = None) -> dict[str, Any]:
        """Create the user, or return the existing one on a 409 conflict."""
        try:
            return await self.create_user(email, name=name)
        except AppwriteError as e:
            if e.status_code != 409:
                raise
        existing = await self.find_user_by_email(email)
        if existing is None:
            raise AppwriteError(f"User {email} exists but could not be found", status_code=409)
        return existing

    async def get_user(self, user_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/users/{user_id}")
        return response.json()

    async def update_name(self, user_id: str, name: str) -> dict[str, Any]:
        response = await self._request("PATCH", f"/users/{user_id}/name", json={"name": name})
        return response.json()

    async def update_email(self, user_id: str, email: str) -> dict[str, Any]:
        response = await self._request("PATCH", f"/users/{user_id}/email", json={"email": email})
        return response.json()

    async def update_password(self, user_id: str, password: str) -> dict[str, Any]:
        response = await self._request("PATCH", f"/users/{user_id}/password", json={"password": password})
        return response.json()

    async def delete_session(self, user_id: str, session_id: str) -> None:
        await self._request("DELETE", f"/users/{user_id}/sessions/{session_id}")

    # Account (guest API)

    async def create_email_session(self, email: str, password: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            "/account/sessions/email",
            server=False,
            json={"email": email, "password": password},
        )
        return response.json()

    async def create_recovery(self, email: str, url: str | None = None) -> None:
        await self._request(
            "POST",
            "/account/recovery",
            server=False,
            json={"email": email, "url": url or self.config.recovery_url},
        )

    # Storage

    def _files_path(self, bucket_id: str | None) -> str:
        return f"/storage/buckets/{bucket_id or self.config.bucket_id}/files"

    async def upload_file(
        self,
        content: bytes,
        filename: str,
        mime_type: str | None = None,
        bucket_id: str | None = None,
    ) -> StoredFile:
        response = await self._request(
            "POST",
            self._files_path(bucket_id),
            data={"fileId": "unique()"},
            files={"file": (filename, content, mime_type or "application/octet-stream")},
        )
        return _stored_file(response.json())

    async def download_file(self, file_id: str, bucket_id: str | None = None) -> bytes:
        response = await self._request("GET", f"{self._files_path(bucket_id)}/{file_id}/download")
        return response.content

    async def delete_file(self, file_id: str, bucket_id: str | None = None) -> None:
        await self._request("DELETE", f"{self._files_path(bucket_id)}/{file_id}")

    async def list_files(self, bucket_id: str | None = None) -> list[StoredFile]:
        response = await self._request("GET", self._files_path(bucket_id))
        return [_stored_file(item) for item in response.json().get("files", [])]


def _stored_file(data: dict[str, Any]) -> StoredFile:
    return StoredFile(
        file_id=data["$id"],
        name=data.get("name", ""),
        mime_type=data.get("mimeType"),
        size=data.get("sizeOriginal"),
    )


@lru_cache(maxsize=1)
def get_appwrite_client() -> AppwriteClient:
    return AppwriteClient()
