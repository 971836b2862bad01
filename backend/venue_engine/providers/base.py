"""Provider interface and the HTTP plumbing shared by the remote providers."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..errors import ProviderError, ProviderTimeout, ProviderValidationError
from ..models import Coordinate, ProviderVenue, SearchQuery

logger = logging.getLogger(__name__)


class Provider(ABC):
    """A third-party place search. Each variant normalizes its own payloads."""

    name: str = "provider"

    @abstractmethod
    async def search(self, query: SearchQuery, *, limit: int = 20) -> list[ProviderVenue]:
        """Return at most ``limit`` venues near ``query.origin``."""

    async def aclose(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class HTTPProvider(Provider):
    """Provider backed by a JSON HTTP API reached through ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip() or None
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    def _headers(self) -> dict[str, str]:
        raise NotImplementedError

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.configured:
            raise ProviderValidationError(self.name, "API key not configured")
        client = await self._get_client()
        url = f"{self._base_url}{path}"
        try:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(self.name, self._timeout) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"request failed: {exc}") from exc
        if response.status_code >= 400:
            # Body may echo request details; keep it short and out of INFO logs
            logger.debug("%s error body: %s", self.name, response.text[:200])
            error_cls = ProviderError
            if 400 <= response.status_code < 500 and response.status_code != 429:
                error_cls = ProviderValidationError
            raise error_cls(
                self.name,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderValidationError(self.name, "invalid JSON payload") from exc
        if not isinstance(payload, dict):
            raise ProviderValidationError(self.name, "payload root must be an object")
        return payload

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def coordinate_or_none(lat: Any, lng: Any) -> Coordinate | None:
    try:
        return Coordinate(float(lat), float(lng))
    except (TypeError, ValueError):
        return None


__all__ = ["HTTPProvider", "Provider", "coordinate_or_none"]
