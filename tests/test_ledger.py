"""Tests for ServiceLedger read-modify-write cycles."""

from __future__ import annotations

import asyncio
import json

import pytest

from errors import AddressNotFound, CorruptRecord, ServiceNotFound, StoreUnavailable, WriteConflict
from kv_store import MemoryKV
from ledger import Outcome, ServiceLedger
from settings import RegistrySettings


async def stored(store, key):
    entry = await store.get(key)
    return None if entry is None else json.loads(entry.value)


class YieldingKV(MemoryKV):
    """Gives other tasks a turn between a read and the following write."""

    async def get(self, key):
        entry = await super().get(key)
        await asyncio.sleep(0)
        return entry


class UnversionedKV(YieldingKV):
    supports_versions = False

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.expected = []

    async def put(self, key, value, ttl, expected_version=None):
        self.expected.append(expected_version)
        await super().put(key, value, ttl)


class InterferingKV(MemoryKV):
    """Slips a foreign write in ahead of the next `times` puts."""

    def __init__(self, *args, times=1, **kwargs):
        super().__init__(*args, **kwargs)
        self.times = times
        self.puts = 0

    async def put(self, key, value, ttl, expected_version=None):
        self.puts += 1
        if self.times:
            self.times -= 1
            foreign = json.dumps([{"address": f"intruder-{self.puts}", "lastHeartbeat": 10**13}])
            await super().put(key, foreign, ttl)
        await super().put(key, value, ttl, expected_version=expected_version)


class BrokenKV(MemoryKV):
    async def get(self, key):
        raise StoreUnavailable("store timed out")


class TestUpsertHeartbeat:
    @pytest.mark.asyncio
    async def test_first_call_registers(self, ledger, store, clock):
        result = await ledger.upsert_heartbeat("a", "10.0.0.1")
        assert result.outcome is Outcome.REGISTER
        assert result.last_heartbeat == clock.ms
        assert result.next_deadline == clock.ms + 300_000
        assert await stored(store, "a") == [{"address": "10.0.0.1", "lastHeartbeat": clock.ms}]

    @pytest.mark.asyncio
    async def test_renewal_is_idempotent(self, ledger, store, clock):
        first = await ledger.upsert_heartbeat("a", "10.0.0.1")
        clock.advance(5_000)
        second = await ledger.upsert_heartbeat("a", "10.0.0.1")
        assert first.outcome is Outcome.REGISTER
        assert second.outcome is Outcome.HEARTBEAT
        assert second.last_heartbeat == clock.ms
        assert await stored(store, "a") == [{"address": "10.0.0.1", "lastHeartbeat": clock.ms}]

    @pytest.mark.asyncio
    async def test_second_address_appended(self, ledger, store):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        await ledger.upsert_heartbeat("a", "10.0.0.2")
        assert [n["address"] for n in await stored(store, "a")] == ["10.0.0.1", "10.0.0.2"]

    @pytest.mark.asyncio
    async def test_expired_node_renewed_before_compaction(self, ledger, clock):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        clock.advance(400_000)
        result = await ledger.upsert_heartbeat("a", "10.0.0.1")
        assert result.outcome is Outcome.HEARTBEAT

    @pytest.mark.asyncio
    async def test_rejoin_after_compaction_registers(self, ledger, clock):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        clock.advance(400_000)
        assert await ledger.list_active("a") == []
        result = await ledger.upsert_heartbeat("a", "10.0.0.1")
        assert result.outcome is Outcome.REGISTER

    @pytest.mark.asyncio
    async def test_heartbeat_never_moves_backwards(self, ledger, store, clock):
        await store.put("a", json.dumps([{"address": "x", "lastHeartbeat": clock.ms + 10_000}]), ttl=60)
        result = await ledger.upsert_heartbeat("a", "x")
        assert result.last_heartbeat == clock.ms + 10_000

    @pytest.mark.asyncio
    async def test_written_with_store_ttl(self, store, clock):
        ledger = ServiceLedger(store, RegistrySettings(store_ttl_seconds=60), clock=clock)
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        clock.advance(61_000)
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_not_overwritten(self, ledger, store):
        await store.put("a", "{{garbage", ttl=60)
        with pytest.raises(CorruptRecord):
            await ledger.upsert_heartbeat("a", "10.0.0.1")
        assert (await store.get("a")).value == "{{garbage"

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, settings, clock):
        ledger = ServiceLedger(BrokenKV(clock=clock.seconds), settings, clock=clock)
        with pytest.raises(StoreUnavailable):
            await ledger.upsert_heartbeat("a", "10.0.0.1")


class TestRemoveNode:
    @pytest.mark.asyncio
    async def test_remove_one_of_two(self, ledger, store):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        await ledger.upsert_heartbeat("a", "10.0.0.2")
        await ledger.remove_node("a", "10.0.0.1")
        assert [n["address"] for n in await stored(store, "a")] == ["10.0.0.2"]

    @pytest.mark.asyncio
    async def test_remove_last_deletes_key(self, ledger, store):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        await ledger.remove_node("a", "10.0.0.1")
        assert await store.get("a") is None
        assert await store.list_keys() == []
        assert await ledger.list_active("a") == []

    @pytest.mark.asyncio
    async def test_unknown_service(self, ledger):
        with pytest.raises(ServiceNotFound) as exc:
            await ledger.remove_node("nope", "10.0.0.1")
        assert exc.value.service == "nope"

    @pytest.mark.asyncio
    async def test_unknown_address(self, ledger, store):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        with pytest.raises(AddressNotFound) as exc:
            await ledger.remove_node("a", "10.0.0.9")
        assert exc.value.address == "10.0.0.9"
        assert len(await stored(store, "a")) == 1

    @pytest.mark.asyncio
    async def test_second_removal_fails(self, ledger):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        await ledger.upsert_heartbeat("a", "10.0.0.2")
        await ledger.remove_node("a", "10.0.0.1")
        with pytest.raises(AddressNotFound):
            await ledger.remove_node("a", "10.0.0.1")

    @pytest.mark.asyncio
    async def test_corrupt_payload(self, ledger, store):
        await store.put("a", "nope", ttl=60)
        with pytest.raises(CorruptRecord):
            await ledger.remove_node("a", "10.0.0.1")


class TestExpireAndCompact:
    @pytest.mark.asyncio
    async def test_boundary(self, ledger, store, clock):
        now = clock.ms
        await store.put("a", json.dumps([
            {"address": "stale", "lastHeartbeat": now - 300_001},
            {"address": "fresh", "lastHeartbeat": now - 299_999},
        ]), ttl=60)
        active = await ledger.list_active("a")
        assert [n.address for n in active] == ["fresh"]
        assert [n["address"] for n in await stored(store, "a")] == ["fresh"]

    @pytest.mark.asyncio
    async def test_all_expired_deletes_key(self, ledger, store, clock):
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        clock.advance(300_001)
        assert await ledger.expire_and_compact("a") == []
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_absent_service_is_empty(self, ledger, store):
        assert await ledger.list_active("ghost") == []
        assert await store.list_keys() == []

    @pytest.mark.asyncio
    async def test_stored_empty_list_is_removed(self, ledger, store):
        await store.put("a", "[]", ttl=60)
        assert await ledger.expire_and_compact("a") == []
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_shortened_window(self, store, clock):
        ledger = ServiceLedger(store, RegistrySettings(expiry_window_ms=1_000), clock=clock)
        await ledger.upsert_heartbeat("a", "10.0.0.1")
        clock.advance(1_001)
        assert await ledger.list_active("a") == []

    @pytest.mark.asyncio
    async def test_corrupt_is_not_treated_as_empty(self, ledger, store):
        await store.put("a", "[1, 2", ttl=60)
        with pytest.raises(CorruptRecord):
            await ledger.list_active("a")
        assert await store.get("a") is not None


class TestConcurrentWriters:
    @pytest.mark.asyncio
    async def test_conditional_write_keeps_both_nodes(self, settings, clock):
        store = YieldingKV(clock=clock.seconds)
        a = ServiceLedger(store, settings, clock=clock)
        b = ServiceLedger(store, settings, clock=clock)
        await asyncio.gather(a.upsert_heartbeat("svc", "10.0.0.1"), b.upsert_heartbeat("svc", "10.0.0.2"))
        assert sorted(n["address"] for n in await stored(store, "svc")) == ["10.0.0.1", "10.0.0.2"]

    @pytest.mark.asyncio
    async def test_unversioned_store_last_writer_wins(self, settings, clock):
        store = UnversionedKV(clock=clock.seconds)
        a = ServiceLedger(store, settings, clock=clock)
        b = ServiceLedger(store, settings, clock=clock)
        await asyncio.gather(a.upsert_heartbeat("svc", "10.0.0.1"), b.upsert_heartbeat("svc", "10.0.0.2"))
        assert [n["address"] for n in await stored(store, "svc")] == ["10.0.0.2"]
        assert store.expected == [None, None]

    @pytest.mark.asyncio
    async def test_retry_rereads_foreign_write(self, settings, clock):
        store = InterferingKV(clock=clock.seconds, times=1)
        ledger = ServiceLedger(store, settings, clock=clock)
        result = await ledger.upsert_heartbeat("svc", "10.0.0.1")
        assert result.outcome is Outcome.REGISTER
        assert sorted(n["address"] for n in await stored(store, "svc")) == ["10.0.0.1", "intruder-1"]
        assert store.puts == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, clock):
        store = InterferingKV(clock=clock.seconds, times=100)
        ledger = ServiceLedger(store, RegistrySettings(max_write_attempts=3), clock=clock)
        with pytest.raises(WriteConflict):
            await ledger.upsert_heartbeat("svc", "10.0.0.1")
        assert store.puts == 3


@pytest.mark.asyncio
async def test_end_to_end_scenario(ledger, store, clock):
    t = clock.ms
    first = await ledger.upsert_heartbeat("a", "10.0.0.1")
    assert first.outcome is Outcome.REGISTER
    assert first.next_deadline == t + 300_000

    clock.advance(100_000)
    renewed = await ledger.upsert_heartbeat("a", "10.0.0.1")
    assert renewed.outcome is Outcome.HEARTBEAT
    assert renewed.last_heartbeat == t + 100_000

    clock.advance(50_000)
    assert len(await ledger.list_active("a")) == 1

    clock.advance(300_000)
    assert await ledger.list_active("a") == []
    assert await store.get("a") is None
