"""Global test fixtures for the Veil test suite."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from pathlib import Path

import pytest

from veil.core.config import SensorSettings, clear_config_cache
from veil.core.logging import bind_local_peer
from veil.identity.store import IdentityStore, derive_identity, generate_key_material
from veil.sensor.envelope import Envelope, EventType
from veil.transport.memory import MemoryNetwork, MemoryRouter


class FakeBus:
    """Collects envelopes handed to the bus."""

    def __init__(self) -> None:
        self.envelopes: list[Envelope] = []

    def send_to_bus(self, envelope: Envelope) -> None:
        self.envelopes.append(envelope)

    def of_type(self, event_type: EventType) -> list[Envelope]:
        return [e for e in self.envelopes if e.event_type is event_type]

    async def wait_for(self, predicate: Callable[[Envelope], bool], timeout: float = 2.0) -> Envelope:
        """Poll until an envelope matching *predicate* arrives."""
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            for envelope in self.envelopes:
                if predicate(envelope):
                    return envelope
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("Timed out waiting for envelope")
            await asyncio.sleep(0.01)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove VEIL_ environment variables; reset the config singleton and peer log tag."""
    for key in list(os.environ.keys()):
        if key.startswith("VEIL_"):
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()
    bind_local_peer(None)


@pytest.fixture
def settings(tmp_path: Path) -> SensorSettings:
    """Settings with no warm-up and a quiet health loop."""
    return SensorSettings(
        base_dir=tmp_path / "veil",
        warmup_seconds=0,
        health_check_interval=0,
        status_check_interval=3600,
        graceful_shutdown_timeout=5,
    )


@pytest.fixture
def network() -> MemoryNetwork:
    return MemoryNetwork()


@pytest.fixture
def router(network: MemoryNetwork) -> MemoryRouter:
    return MemoryRouter(network)


@pytest.fixture
def launched_router(router: MemoryRouter) -> MemoryRouter:
    router.launch()
    return router


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity():
    return derive_identity(generate_key_material())


@pytest.fixture
def identity_store() -> IdentityStore:
    return IdentityStore()
