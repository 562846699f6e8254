"""Display-name ownership checks against the external name registry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from hlchat.core.clock import Clock, now_ms
from hlchat.core.settings import settings

logger = logging.getLogger(__name__)

HTTP_OK = 200


class NameRegistryClient:
    """Thin HTTP client for the ``names_owner`` registry endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.name_registry_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.name_registry_api_key
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.name_registry_timeout_seconds
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers = {"X-API-Key": self.api_key} if self.api_key else {}
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=httpx.Timeout(self.timeout_seconds),
                    headers=headers,
                    transport=self._transport,
                )
        return self._client

    async def names_owned_by(self, address: str) -> list[str]:
        """Return the names the registry lists for ``address``.

        Raises:
            httpx.HTTPError: On network failure or timeout.
            ValueError: If the registry answers with a non-200 status or an
                unexpected body.
        """
        client = await self._ensure_client()
        response = await client.get(f"/utils/names_owner/{quote(address)}")
        if response.status_code != HTTP_OK:
            raise ValueError(f"name registry responded with {response.status_code}")
        payload: Any = response.json()
        if not isinstance(payload, list):
            raise ValueError("name registry returned a non-list body")
        return [str(item.get("name") or "") for item in payload if isinstance(item, dict)]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class NameOwnershipCache:
    """Positive-only TTL cache over :class:`NameRegistryClient`.

    Only confirmed ownership is cached; a registry miss or outage is always
    re-asked on the next call.
    """

    def __init__(
        self,
        registry: NameRegistryClient | None = None,
        ttl_ms: int | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.registry = registry or NameRegistryClient()
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.name_cache_ttl_seconds * 1000
        self._clock = clock
        self._confirmed: dict[str, int] = {}

    @staticmethod
    def _key(address: str, name: str) -> str:
        return f"{address.lower()}::{name.lower()}"

    async def owns_name(self, address: str, name: str | None) -> bool:
        """Return True if ``address`` owns ``name``; an absent name is always valid."""
        if not name:
            return True

        key = self._key(address, name)
        now = self._clock()
        cached_at = self._confirmed.get(key)
        if cached_at is not None and now - cached_at < self.ttl_ms:
            return True

        try:
            owned = await self.registry.names_owned_by(address)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Name registry lookup failed for %s: %s", address, exc)
            return False

        wanted = name.lower()
        if any(candidate.lower() == wanted for candidate in owned):
            self._confirmed[key] = now
            return True
        return False

    def sweep(self) -> int:
        """Evict confirmations older than the TTL."""
        cutoff = self._clock() - self.ttl_ms
        expired = [key for key, stored in self._confirmed.items() if stored <= cutoff]
        for key in expired:
            self._confirmed.pop(key, None)
        return len(expired)


_name_cache: NameOwnershipCache | None = None


def get_name_cache() -> NameOwnershipCache:
    """Return the process-wide name ownership cache."""
    global _name_cache
    if _name_cache is None:
        _name_cache = NameOwnershipCache()
    return _name_cache
