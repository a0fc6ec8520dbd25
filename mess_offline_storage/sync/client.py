"""
Remote API client.

The sync engine and the orchestrator talk to the remote API only through
``RemoteApiClient``. ``AiohttpApiClient`` is the HTTP implementation;
tests substitute an ``AsyncMock``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import aiohttp

from ..config import ApiConfig

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    """Normalized remote response."""

    success: bool
    data: Any = None
    status: int | None = None
    error: str | None = None


class RemoteApiClient(ABC):
    """Abstract remote API boundary."""

    @abstractmethod
    async def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        not_found_ok: bool = False,
    ) -> ApiResponse:
        """Send one request.

        Args:
            method: HTTP verb
            endpoint: Path relative to the API base URL
            data: JSON body (ignored for GET)
            headers: Extra headers
            timeout: Total timeout in seconds
            not_found_ok: Report 404 as a successful empty result

        Returns:
            ApiResponse; transport errors are reported, not raised
        """

    async def get(self, endpoint: str, **kwargs: Any) -> ApiResponse:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, data: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.request("POST", endpoint, data, **kwargs)

    async def put(self, endpoint: str, data: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.request("PUT", endpoint, data, **kwargs)

    async def delete(self, endpoint: str, **kwargs: Any) -> ApiResponse:
        return await self.request("DELETE", endpoint, **kwargs)

    async def close(self) -> None:
        """Release client resources."""


class AiohttpApiClient(RemoteApiClient):
    """HTTP client over one shared aiohttp session.

    Responses shaped ``{"success": bool, "data": ..., "error"/"message": ...}``
    are unwrapped; any other 2xx body counts as success.
    """

    def __init__(self, config: ApiConfig | None = None, session: aiohttp.ClientSession | None = None):
        self.config = config or ApiConfig()
        self._session = session
        self._owns_session = session is None

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        base = self.config.base_url.rstrip("/")
        path = "/" + endpoint.lstrip("/")
        # Callers may pass paths that already carry the base's /api prefix
        if base.endswith("/api") and (path == "/api" or path.startswith("/api/")):
            path = path[len("/api"):]
        return base + path

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json", "Accept": "application/json"}
            if self.config.auth_token:
                headers["Authorization"] = f"Bearer {self.config.auth_token}"
            self._session = aiohttp.ClientSession(headers=headers)
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        not_found_ok: bool = False,
    ) -> ApiResponse:
        method = method.upper()
        url = self._url(endpoint)
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.config.timeout)
        body = data if method != "GET" else None

        try:
            async with self._get_session().request(
                method, url, json=body, headers=headers, timeout=client_timeout
            ) as response:
                payload = await self._read_body(response)
                status = response.status
                reason = response.reason
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {url} failed: {e!r}")
            return ApiResponse(success=False, error=str(e) or type(e).__name__)

        if status == 404 and not_found_ok:
            return ApiResponse(success=True, data=None, status=status)

        if status >= 400:
            error = _error_message(payload) or f"HTTP {status} {reason or ''}".strip()
            logger.debug(f"{method} {url} returned {status}: {error}")
            return ApiResponse(success=False, data=payload, status=status, error=error)

        if isinstance(payload, dict) and "success" in payload:
            success = bool(payload["success"])
            return ApiResponse(
                success=success,
                data=payload.get("data"),
                status=status,
                error=None if success else _error_message(payload) or "request failed",
            )
        return ApiResponse(success=True, data=payload, status=status)

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        if response.content_type == "application/json":
            try:
                return await response.json()
            except (aiohttp.ContentTypeError, ValueError):
                pass
        text = await response.text()
        return text or None

    async def check_health(self, timeout: float = 5.0) -> bool:
        """Probe the API health path."""
        response = await self.request("GET", self.config.health_path, timeout=timeout)
        return response.success

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


def _error_message(payload: Any) -> str | None:
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message")
        return str(message) if message else None
    return None
