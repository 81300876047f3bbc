# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Lifecycle Manager - owns the sensor's start, restart and shutdown sequences.

State machine::

    IDLE -> STARTING -> WAITING_FOR_WARMUP -> INITIALIZING_SESSION -> RUNNING
    RUNNING -> RESTARTING -> (soft) RUNNING | (hard) STARTING ...
    RUNNING -> SHUTTING_DOWN -> SHUTDOWN
    RUNNING -> GRACEFULLY_SHUTTING_DOWN -> GRACEFULLY_SHUTDOWN
    any failed start -> ERROR

Concurrency model:
- Provider callbacks arrive on provider threads and are posted onto one
  asyncio queue; a single consumer task processes them, so status, the
  restart policy and pending verifiers are only touched on the event loop.
- Blocking provider and file calls run in worker threads.
- ``_lock`` serialises start/restart/teardown; a restart finishes tearing
  down the old session before connecting a new one.
- ``_stopping`` interrupts the warm-up wait.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from veil.core.config import SensorSettings, filter_session_options, get_config
from veil.core.exceptions import VeilException
from veil.core.logging import bind_local_peer
from veil.identity.peer import PeerAddress
from veil.identity.store import IdentityStore, LocalIdentity
from veil.sensor.environment import DirectoryEnvironment, EnvironmentPreparer
from veil.sensor.health import HealthCheckTask, is_verifier
from veil.sensor.relay import MessageBus, RelayBridge
from veil.sensor.status import OperationalStatus, RestartKind, StatusDecision, StatusMonitor
from veil.transport.provider import RouterProvider
from veil.transport.session import SessionEvent, SessionEventKind, SessionTransport

logger = logging.getLogger(__name__)


class LifecycleState(StrEnum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    WAITING_FOR_WARMUP = "WAITING_FOR_WARMUP"
    INITIALIZING_SESSION = "INITIALIZING_SESSION"
    RUNNING = "RUNNING"
    RESTARTING = "RESTARTING"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    SHUTDOWN = "SHUTDOWN"
    GRACEFULLY_SHUTTING_DOWN = "GRACEFULLY_SHUTTING_DOWN"
    GRACEFULLY_SHUTDOWN = "GRACEFULLY_SHUTDOWN"
    ERROR = "ERROR"


_STOPPING_STATES = frozenset(
    {
        LifecycleState.SHUTTING_DOWN,
        LifecycleState.SHUTDOWN,
        LifecycleState.GRACEFULLY_SHUTTING_DOWN,
        LifecycleState.GRACEFULLY_SHUTDOWN,
    }
)


def _flag(properties: Mapping[str, str], key: str, default: bool) -> bool:
    raw = properties.get(key)
    if raw is None:
        return default
    return str(raw).lower() in ("true", "1", "yes")


class LifecycleManager:
    """Runs the transport session for one local identity.

    Args:
        provider: The routing provider.
        bus: Receives inbound messages and status changes.
        settings: Sensor settings (defaults to :func:`get_config`).
        identity_store: Key file manager (defaults to one using the
            provider's key generation).
        environment: Directory preparation (defaults to the transport dir).
    """

    def __init__(
        self,
        provider: RouterProvider,
        bus: MessageBus,
        settings: SensorSettings | None = None,
        identity_store: IdentityStore | None = None,
        environment: EnvironmentPreparer | None = None,
    ) -> None:
        self.settings = settings or get_config()
        self.provider = provider
        self.network = self.settings.network
        self.identity_store = identity_store or IdentityStore(provider.generate_key, self.network)
        self.environment = environment or DirectoryEnvironment(self.settings.transport_dir)

        self.relay = RelayBridge(
            bus,
            network=self.network,
            max_safe_datagram_size=self.settings.max_safe_datagram_size,
        )
        self.monitor = StatusMonitor(
            block_timeout=self.settings.block_timeout_seconds,
            restart_attempts_until_hard_restart=self.settings.restart_attempts_until_hard_restart,
            on_status_change=self.relay.publish_status,
        )
        self.relay.on_session_closed = self.monitor.report_session_closed
        self.health = HealthCheckTask(
            self.relay,
            local_peer=lambda: self.local_peer,
            check_status=self.check_status,
            seed_address=self.settings.seed_address,
            network=self.network,
            verify_interval=self.settings.health_check_interval,
            status_interval=self.settings.status_check_interval,
        )

        self._state = LifecycleState.IDLE
        self._properties: dict[str, str] = {}
        self._identity: LocalIdentity | None = None
        self._transport: SessionTransport | None = None
        self._launched = False
        self._started = False

        self._lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue[tuple[SessionTransport, SessionEvent]] | None = None
        self._event_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._shutdown_task: asyncio.Task | None = None

        self._stats: dict[str, int] = {
            "starts": 0,
            "failed_starts": 0,
            "sessions_created": 0,
            "sessions_destroyed": 0,
            "events": 0,
            "restart_requests": 0,
        }

    # -------------------------------------------------------------------------
    # ACCESSORS
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def status(self) -> OperationalStatus | None:
        return self.monitor.status

    @property
    def transport(self) -> SessionTransport | None:
        return self._transport

    @property
    def identity(self) -> LocalIdentity | None:
        return self._identity

    @property
    def local_peer(self) -> PeerAddress | None:
        if self._identity is None or self._transport is None:
            return None
        return self._identity.peer

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "state": self._state.value,
            "monitor": self.monitor.get_stats(),
            "transport": self._transport.get_stats() if self._transport else None,
            "relay": self.relay.get_stats(),
            "health": self.health.get_stats(),
        }

    def _set_state(self, state: LifecycleState, status: OperationalStatus | None = None) -> None:
        if state != self._state:
            logger.debug("Lifecycle %s -> %s", self._state.value, state.value)
        self._state = state
        if status is not None:
            self.monitor.update_status(status)

    # -------------------------------------------------------------------------
    # START
    # -------------------------------------------------------------------------

    async def start(self, properties: Mapping[str, str] | None = None) -> bool:
        """Launch the router, wait for warm-up and initialise the session.

        Returns False (status ERROR) on any failure; a failed start is not
        retried here.
        """
        if self._state is LifecycleState.RUNNING:
            logger.warning("Sensor already running")
            return True
        self._stopping.clear()
        async with self._lock:
            return await self._start(properties if properties is not None else self._properties)

    async def _start(self, properties: Mapping[str, str]) -> bool:
        logger.info("Initializing sensor...")
        self._stats["starts"] += 1
        self._started = True
        self._properties = {str(k): str(v) for k, v in properties.items()}
        hidden = _flag(self._properties, "hidden", self.settings.hidden)
        self._ensure_event_consumer()

        try:
            self._set_state(LifecycleState.STARTING, OperationalStatus.STARTING)
            await asyncio.to_thread(self.environment.prepare)

            logger.info("Launching router...")
            await asyncio.to_thread(self.provider.launch, hidden)
            self._launched = True

            self._set_state(LifecycleState.WAITING_FOR_WARMUP, OperationalStatus.WAITING)
            logger.info("Waiting %.0f seconds for router to warm up...", self.settings.warmup_seconds)
            if await self._wait_for_stop(self.settings.warmup_seconds):
                logger.warning("Start interrupted, exiting")
                self._stats["failed_starts"] += 1
                return False

            logger.info("Router should be warmed up. Initializing session...")
            self._set_state(LifecycleState.INITIALIZING_SESSION, OperationalStatus.INITIALIZING)
            await self._initialize_session()
        except VeilException as exc:
            logger.error("Unable to start sensor: %s", exc)
            self._stats["failed_starts"] += 1
            self._set_state(LifecycleState.ERROR, OperationalStatus.ERROR)
            return False
        except Exception:
            logger.exception("Unable to start sensor")
            self._stats["failed_starts"] += 1
            self._set_state(LifecycleState.ERROR, OperationalStatus.ERROR)
            return False

        if self._stopping.is_set():
            return False

        self._set_state(LifecycleState.RUNNING)
        await self.check_status()
        self.health.start()
        logger.info("Started.")
        return True

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to *timeout*; True if a shutdown interrupted the wait."""
        if self._stopping.is_set():
            return True
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def _initialize_session(self) -> None:
        if self._transport is not None:
            # Never hold two live sessions
            await self._destroy_transport()

        is_test = _flag(self._properties, "isTest", self.settings.is_test)
        identity = await asyncio.to_thread(self.identity_store.load_or_create, self.settings.key_file)
        options = filter_session_options(self._properties)

        def on_event(event: SessionEvent) -> None:
            self._post_event(transport, event)

        transport = SessionTransport(self.provider, on_event, network=self.network)
        await asyncio.to_thread(transport.connect, identity, options)
        self._stats["sessions_created"] += 1

        self._identity = identity
        self._transport = transport
        self.relay.attach(transport)
        bind_local_peer(identity.fingerprint)

        if await asyncio.to_thread(self.provider.is_in_strict_country):
            logger.warning("This peer is in a 'strict' country defined by the router.")
        if await asyncio.to_thread(self.provider.is_hidden):
            logger.warning("Router was placed in hidden mode.")

        if not is_test:
            self.relay.publish_local_peer(identity.peer)

    # -------------------------------------------------------------------------
    # EVENTS
    # -------------------------------------------------------------------------

    def _ensure_event_consumer(self) -> None:
        if self._event_task is not None and not self._event_task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._event_task = asyncio.create_task(self._consume_events(self._events), name="veil-session-events")

    def _post_event(self, source: SessionTransport, event: SessionEvent) -> None:
        """Thread-safe hand-off from a provider callback to the event loop."""
        loop, queue = self._loop, self._events
        if loop is None or queue is None:
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, (source, event))
        except RuntimeError:
            logger.debug("Event loop closed; dropping %s", event.kind)

    async def _consume_events(self, queue: asyncio.Queue[tuple[SessionTransport, SessionEvent]]) -> None:
        while True:
            source, event = await queue.get()
            try:
                await self._handle_event(source, event)
            except Exception:
                logger.exception("Error handling session event %s", event.kind)
            finally:
                queue.task_done()

    async def _handle_event(self, source: SessionTransport, event: SessionEvent) -> None:
        if source is not self._transport:
            logger.debug("Ignoring %s from a previous session", event.kind)
            return
        self._stats["events"] += 1

        if event.kind is SessionEventKind.MESSAGE_AVAILABLE:
            received = await asyncio.to_thread(source.receive, event.msg_id, event.size)
            if received is not None:
                sender, payload = received
                if is_verifier(payload):
                    self.health.verify(payload)
                else:
                    self.relay.deliver_inbound(sender, payload)

        await self.check_status()

    async def drain_events(self) -> None:
        """Wait until every queued session event has been handled."""
        if self._events is not None:
            await self._events.join()

    # -------------------------------------------------------------------------
    # STATUS
    # -------------------------------------------------------------------------

    async def check_status(self) -> StatusDecision | None:
        """Poll the router status and apply the status policy.

        A restart demanded by the policy is scheduled on its own task.
        """
        if self._state is not LifecycleState.RUNNING:
            return None
        try:
            raw = await asyncio.to_thread(self.provider.raw_status)
        except Exception:
            logger.exception("Unable to read router status")
            return None
        decision = self.monitor.evaluate(raw)
        if decision.restart:
            self._request_restart()
        return decision

    def _request_restart(self) -> None:
        self._stats["restart_requests"] += 1
        if self._restart_task is not None and not self._restart_task.done():
            logger.info("Restart already in progress")
            return
        self._restart_task = asyncio.create_task(self.restart(), name="veil-restart")

    async def wait_for_restart(self) -> bool | None:
        """Await the scheduled restart, if any; returns its result."""
        task = self._restart_task
        if task is None:
            return None
        return await task

    # -------------------------------------------------------------------------
    # RESTART
    # -------------------------------------------------------------------------

    async def restart(self) -> bool:
        """Restart the router, soft unless the ceiling is reached.

        A hard restart is also used when no session survived the last start.
        """
        async with self._lock:
            if self._state in _STOPPING_STATES or self._stopping.is_set():
                logger.info("Shutdown in progress; not restarting")
                return False
            if not self._started:
                logger.warning("Unable to restart: sensor was never started")
                return False

            # Without a live session only a full restart can recover
            kind = self.monitor.next_restart(force_hard=self._transport is None)
            self._set_state(LifecycleState.RESTARTING, OperationalStatus.RESTARTING)

            if kind is RestartKind.HARD:
                logger.info("Full restart of router...")
                await self._teardown(graceful=False)
                if self._stopping.is_set():
                    return False
                if not await self._start(self._properties):
                    logger.warning("Issues starting router.")
                    return False
                self.monitor.hard_restart_succeeded()
                logger.info("Hard restart of router completed.")
                return True

            logger.info("Soft restart of router...")
            try:
                await asyncio.to_thread(self.provider.restart)
            except Exception:
                logger.exception("Soft restart of router failed")
                self._set_state(LifecycleState.ERROR, OperationalStatus.ERROR)
                return False
            self._set_state(LifecycleState.RUNNING)
            logger.info("Router soft restart completed.")
            return True

    # -------------------------------------------------------------------------
    # SHUTDOWN
    # -------------------------------------------------------------------------

    async def shutdown(self) -> bool:
        """Stop the session and router immediately (in the background)."""
        return self._begin_shutdown(graceful=False)

    async def graceful_shutdown(self) -> bool:
        """Stop the session and ask the router to stop gracefully (in the background)."""
        return self._begin_shutdown(graceful=True)

    def _begin_shutdown(self, graceful: bool) -> bool:
        if self._shutdown_task is not None and not self._shutdown_task.done():
            logger.info("Shutdown already in progress")
            return True
        if graceful:
            self._set_state(LifecycleState.GRACEFULLY_SHUTTING_DOWN, OperationalStatus.GRACEFULLY_SHUTTING_DOWN)
        else:
            self._set_state(LifecycleState.SHUTTING_DOWN, OperationalStatus.SHUTTING_DOWN)
        self._stopping.set()
        self._shutdown_task = asyncio.create_task(self._shutdown_worker(graceful), name="veil-shutdown")
        return True

    async def _shutdown_worker(self, graceful: bool) -> None:
        async with self._lock:
            await self._teardown(graceful=graceful)
            if graceful:
                self._set_state(LifecycleState.GRACEFULLY_SHUTDOWN, OperationalStatus.GRACEFULLY_SHUTDOWN)
                logger.info("Router gracefully stopped.")
            else:
                self._set_state(LifecycleState.SHUTDOWN, OperationalStatus.SHUTDOWN)
                logger.info("Router stopped.")

        event_task, self._event_task = self._event_task, None
        if event_task is not None:
            event_task.cancel()
            try:
                await event_task
            except asyncio.CancelledError:
                pass

    async def wait_stopped(self) -> None:
        """Wait for a pending shutdown to finish."""
        if self._shutdown_task is not None:
            await self._shutdown_task

    async def _destroy_transport(self) -> None:
        transport, self._transport = self._transport, None
        self.relay.detach()
        bind_local_peer(None)
        if transport is not None:
            await asyncio.to_thread(transport.destroy)
            self._stats["sessions_destroyed"] += 1

    async def _teardown(self, graceful: bool) -> None:
        """Stop the health task, destroy the session, then stop the router."""
        logger.info("Router %sstopping...", "gracefully " if graceful else "")
        await self.health.stop()
        await self._destroy_transport()

        if not self._launched:
            return
        try:
            if graceful:
                timeout = self.settings.graceful_shutdown_timeout
                await asyncio.wait_for(
                    asyncio.to_thread(self.provider.shutdown_gracefully, timeout),
                    timeout=timeout,
                )
            else:
                await asyncio.to_thread(self.provider.shutdown)
        except TimeoutError:
            logger.warning("Router did not stop within %.0f seconds", self.settings.graceful_shutdown_timeout)
        except Exception:
            logger.warning("Issues shutting down router", exc_info=True)
        self._launched = False

    # -------------------------------------------------------------------------
    # UNSUPPORTED
    # -------------------------------------------------------------------------

    async def pause(self) -> bool:
        """The transport has no suspend capability."""
        return False

    async def unpause(self) -> bool:
        return False
