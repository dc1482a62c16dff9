"""Async HTTP client for the progress and learning-path services."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import Settings
from ..errors import AuthExpiredError, MalformedDataError, RemoteRequestError, TransientNetworkError

logger = logging.getLogger(__name__)


class ApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` that maps failures onto skillpath errors.

    The bearer token is held here. A 401 clears it and raises ``AuthExpiredError``;
    nothing else about local state is touched.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ApiClient":
        return cls(settings.api_base_url, timeout=settings.api_timeout_seconds, **kwargs)

    def set_auth_token(self, token: Optional[str]) -> None:
        self._token = token

    def clear_auth_token(self) -> None:
        self._token = None

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{method} {path} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status == 401:
            logger.warning("Remote rejected credentials for %s %s; clearing cached token", method, path)
            self.clear_auth_token()
            raise AuthExpiredError(f"{method} {path} requires re-authentication.")
        if status >= 500:
            raise TransientNetworkError(f"{method} {path} returned {status}", status_code=status)
        if status >= 400:
            raise RemoteRequestError(f"{method} {path} returned {status}", status_code=status)

        if status == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedDataError(f"{method} {path} returned a non-JSON body") from exc
        return _unwrap(body, method, path)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def _unwrap(body: Any, method: str, path: str) -> Any:
    if not isinstance(body, dict) or "success" not in body:
        return body
    if not body.get("success"):
        message = body.get("message") or "request was not successful"
        raise RemoteRequestError(f"{method} {path}: {message}")
    return body.get("data")


__all__ = ["ApiClient"]
