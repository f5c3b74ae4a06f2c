"""Per-service node lists kept in the key-value store.

Every operation is one read-modify-write cycle on a single key: read the
stored node list, change it in memory, then put it back (or delete the key
once the list is empty). When the store can version entries the write is
conditional and the cycle is retried on conflict; otherwise the last writer
wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Optional

from errors import AddressNotFound, CorruptRecord, ServiceNotFound, WriteConflict
from kv_store import KVStore
from nodes import NodeRecord, decode_nodes, encode_nodes, is_expired, now_ms
from settings import RegistrySettings

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    REGISTER = "register"  # first registration, or rejoin after expiry
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class HeartbeatResult:
    service: str
    address: str
    outcome: Outcome
    last_heartbeat: int
    next_deadline: int


# (nodes to write or None for no write, value returned to the caller)
Mutation = Callable[[Optional[list[NodeRecord]], int], tuple[Optional[list[NodeRecord]], object]]


class ServiceLedger:
    def __init__(self, store: KVStore, settings: RegistrySettings | None = None,
                 clock: Callable[[], int] = now_ms):
        self.store = store
        self.settings = settings or RegistrySettings()
        self._clock = clock

    def is_expired(self, record: NodeRecord, now: int) -> bool:
        return is_expired(record, now, self.settings.expiry_window_ms)

    async def _read(self, service: str) -> tuple[list[NodeRecord] | None, int | None]:
        entry = await self.store.get(service)
        version = 0 if self.store.supports_versions else None
        if entry is None:
            return None, version
        try:
            nodes = decode_nodes(service, entry.value)
        except CorruptRecord as e:
            logger.error("cannot decode node list for %s: %s", service, e.reason)
            raise
        if self.store.supports_versions:
            version = entry.version
        return nodes, version

    async def _write(self, service: str, nodes: list[NodeRecord], version: int | None) -> None:
        if nodes:
            await self.store.put(service, encode_nodes(nodes), self.settings.store_ttl_seconds,
                                 expected_version=version)
            logger.debug("stored %d node(s) for %s", len(nodes), service)
        else:
            await self.store.delete(service, expected_version=version)
            logger.debug("deleted empty service %s", service)

    async def _cycle(self, service: str, mutate: Mutation):
        attempts = self.settings.max_write_attempts if self.store.supports_versions else 1
        for attempt in range(1, attempts + 1):
            nodes, version = await self._read(service)
            new_nodes, result = mutate(nodes, self._clock())
            if new_nodes is None:
                return result
            try:
                await self._write(service, new_nodes, version)
            except WriteConflict:
                if attempt == attempts:
                    logger.warning("giving up on %s after %d conflicting writes", service, attempts)
                    raise
                logger.debug("write conflict on %s, retrying (attempt %d)", service, attempt)
                continue
            return result

    async def upsert_heartbeat(self, service: str, address: str) -> HeartbeatResult:
        window = self.settings.expiry_window_ms

        def mutate(nodes, now):
            nodes = nodes or []
            for rec in nodes:
                if rec.address == address:
                    rec.last_heartbeat = max(rec.last_heartbeat, now)
                    outcome = Outcome.HEARTBEAT
                    stamp = rec.last_heartbeat
                    break
            else:
                nodes.append(NodeRecord(address=address, last_heartbeat=now))
                outcome = Outcome.REGISTER
                stamp = now
            return nodes, HeartbeatResult(service, address, outcome, stamp, stamp + window)

        result = await self._cycle(service, mutate)
        if result.outcome is Outcome.REGISTER:
            logger.info("registered %s for %s", address, service)
        else:
            logger.debug("heartbeat %s for %s", address, service)
        return result

    async def remove_node(self, service: str, address: str) -> None:
        def mutate(nodes, now):
            if nodes is None:
                raise ServiceNotFound(service)
            remaining = [rec for rec in nodes if rec.address != address]
            if len(remaining) == len(nodes):
                raise AddressNotFound(service, address)
            return remaining, None

        await self._cycle(service, mutate)
        logger.info("unregistered %s from %s", address, service)

    async def expire_and_compact(self, service: str) -> list[NodeRecord]:
        def mutate(nodes, now):
            if nodes is None:
                return None, []
            active = [rec for rec in nodes if not self.is_expired(rec, now)]
            return active, active

        active = await self._cycle(service, mutate)
        return active

    async def list_active(self, service: str) -> list[NodeRecord]:
        return await self.expire_and_compact(service)
