"""Key-value store capability used by the registry.

Each call is atomic on its own; nothing spans keys. Stores that can version
their entries set ``supports_versions`` and honour ``expected_version`` on
writes, where ``0`` means the key must currently be absent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import asyncio
import logging
import time
from typing import Callable

import httpx

from errors import StoreUnavailable, WriteConflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entry:
    value: str
    version: int | None = None


class KVStore(ABC):
    supports_versions = False

    @abstractmethod
    async def get(self, key: str) -> Entry | None:
        ...

    @abstractmethod
    async def put(self, key: str, value: str, ttl: int, expected_version: int | None = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str, expected_version: int | None = None) -> bool:
        ...

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        ...


class MemoryKV(KVStore):
    """In-process store with lazy TTL expiry and per-key versions."""

    supports_versions = True

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[float, int, str]] = {}  # key -> (expires_at, version, value)
        self._seq = 0
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> tuple[float, int, str] | None:
        item = self._data.get(key)
        if item is None:
            return None
        if self._clock() > item[0]:
            self._data.pop(key, None)
            return None
        return item

    def _check(self, key: str, expected_version: int | None) -> None:
        if expected_version is None:
            return
        item = self._live(key)
        current = item[1] if item else 0
        if current != expected_version:
            raise WriteConflict(f"{key}: expected version {expected_version}, found {current}")

    async def get(self, key: str) -> Entry | None:
        async with self._lock:
            item = self._live(key)
        if item is None:
            return None
        return Entry(value=item[2], version=item[1])

    async def put(self, key: str, value: str, ttl: int, expected_version: int | None = None) -> int:
        async with self._lock:
            self._check(key, expected_version)
            self._seq += 1
            self._data[key] = (self._clock() + ttl, self._seq, value)
            return self._seq

    async def delete(self, key: str, expected_version: int | None = None) -> bool:
        async with self._lock:
            self._check(key, expected_version)
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    async def list_keys(self, prefix: str = "") -> list[str]:
        async with self._lock:
            return [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]


class HttpKV(KVStore):
    """Client for a kv_node instance."""

    supports_versions = True

    def __init__(self, base_url: str, timeout: float = 3, transport: httpx.AsyncBaseTransport | None = None):
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.request(method, f"{self._base}{path}", **kwargs)
        except Exception as e:
            raise StoreUnavailable(f"{method} {path}: {e!r}") from e

        if r.status_code == 409:
            raise WriteConflict(f"{method} {path}: {r.text}")
        if r.status_code >= 400 and r.status_code != 404:
            raise StoreUnavailable(f"{method} {path}: {r.status_code}: {r.text}")
        return r

    @staticmethod
    def _decode(r: httpx.Response, field: str):
        try:
            return r.json()[field]
        except (ValueError, KeyError, TypeError) as e:
            raise StoreUnavailable(f"malformed kv node reply ({field}): {e!r}") from e

    async def get(self, key: str) -> Entry | None:
        r = await self._request("GET", "/kv/entry", params={"key": key})
        if r.status_code == 404:
            return None
        value = self._decode(r, "value")
        version = self._decode(r, "version")
        if not isinstance(value, str) or not isinstance(version, (int, type(None))):
            raise StoreUnavailable(f"malformed kv node reply for {key!r}")
        return Entry(value=value, version=version)

    async def put(self, key: str, value: str, ttl: int, expected_version: int | None = None) -> None:
        payload = {"value": value, "ttl": ttl, "if_version": expected_version}
        r = await self._request("PUT", "/kv/entry", params={"key": key}, json=payload)
        if r.status_code == 404:
            raise StoreUnavailable("PUT /kv/entry: kv node has no such route")

    async def delete(self, key: str, expected_version: int | None = None) -> bool:
        params = {"key": key}
        if expected_version is not None:
            params["if_version"] = expected_version
        r = await self._request("DELETE", "/kv/entry", params=params)
        if r.status_code == 404:
            logger.debug("delete of missing key %s", key)
            return False
        return True

    async def list_keys(self, prefix: str = "") -> list[str]:
        r = await self._request("GET", "/kv", params={"prefix": prefix})
        keys = self._decode(r, "keys")
        if not isinstance(keys, list):
            raise StoreUnavailable("malformed kv node reply (keys)")
        return [str(k) for k in keys]
