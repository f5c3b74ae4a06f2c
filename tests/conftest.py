"""pytest configuration for registry tests."""

import pytest

from kv_store import MemoryKV
from ledger import ServiceLedger
from settings import RegistrySettings

T0 = 1_700_000_000_000  # ms


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = T0):
        self.ms = start

    def __call__(self) -> int:
        return self.ms

    def seconds(self) -> float:
        return self.ms / 1000

    def advance(self, ms: int) -> None:
        self.ms += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return RegistrySettings()


@pytest.fixture
def store(clock):
    return MemoryKV(clock=clock.seconds)


@pytest.fixture
def ledger(store, settings, clock):
    return ServiceLedger(store, settings, clock=clock)
