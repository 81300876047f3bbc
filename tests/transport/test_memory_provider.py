"""Tests for veil.transport.memory - the in-process router provider."""

from __future__ import annotations

import pytest

from veil.identity.store import derive_identity, generate_key_material
from veil.transport.memory import (
    STATUS_DISCONNECTED,
    STATUS_OK,
    STATUS_UNKNOWN,
    MemoryNetwork,
    MemoryRouter,
)
from veil.transport.provider import ProviderSessionError, RouterProvider


class TestMemoryRouter:
    def test_satisfies_provider_protocol(self, router):
        assert isinstance(router, RouterProvider)

    def test_status_follows_lifecycle(self, router):
        assert router.raw_status() == STATUS_UNKNOWN

        router.launch(hidden=True)
        assert router.raw_status() == STATUS_OK
        assert router.is_hidden()

        router.shutdown_gracefully(10)
        assert router.raw_status() == STATUS_DISCONNECTED
        assert router.counts == {"launch": 1, "restart": 0, "shutdown": 0, "shutdown_gracefully": 1}

    def test_generated_keys_are_seeds(self, router):
        derive_identity(router.generate_key())


class TestMemorySession:
    def _session(self, router):
        manager = router.create_disconnected_manager(generate_key_material(), {})
        return manager.session

    def test_connect_registers(self, launched_router):
        session = self._session(launched_router)

        session.connect()

        assert launched_router.network.find(session.address) is session
        assert len(launched_router.network) == 1

    def test_double_destroy_raises_already_closed(self, launched_router):
        session = self._session(launched_router)
        session.connect()
        session.destroy_session()

        with pytest.raises(ProviderSessionError, match="Already closed"):
            session.destroy_session()

        assert len(launched_router.network) == 0

    def test_routers_share_a_network(self):
        network = MemoryNetwork()
        first, second = MemoryRouter(network), MemoryRouter(network)
        first.launch()
        second.launch()
        a, b = self._session(first), self._session(second)
        a.connect()
        b.connect()

        assert a.lookup_dest(b.address) == b.address
        assert a.send_message(b.address, b"x")
        assert b.receive_message(1) == b"x"
        assert b.receive_message(1) is None
