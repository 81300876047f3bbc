#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Veil CLI - Run and inspect an overlay network sensor.

Commands:
  veil start                 Run the sensor until interrupted
  veil identity              Show (creating if needed) the local identity
  veil status                Query a running sensor's status endpoint

Examples:
  # Run against the in-process router with a short warm-up
  veil start --warmup 5

  # Show the local peer address as JSON
  veil --json identity

  # Check a running sensor
  veil status --port 8475
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import ValidationError

from veil import __version__
from veil.core.config import SensorSettings, get_config
from veil.core.exceptions import VeilException
from veil.core.logging import configure_logging
from veil.identity.store import IdentityStore, generate_key_material
from veil.sensor.envelope import Envelope, EventType
from veil.sensor.lifecycle import LifecycleManager
from veil.sensor.relay import QueueBus
from veil.sensor.status_server import StatusServer
from veil.transport.memory import MemoryRouter

logger = logging.getLogger(__name__)


def build_settings(args: argparse.Namespace) -> SensorSettings:
    """Layer command-line overrides on top of environment settings."""
    overrides: dict[str, Any] = {}
    for arg_name, field_name in (
        ("base_dir", "base_dir"),
        ("seed", "seed_address"),
        ("warmup", "warmup_seconds"),
        ("status_host", "status_host"),
        ("status_port", "status_port"),
    ):
        value = getattr(args, arg_name, None)
        if value is not None:
            overrides[field_name] = value
    if getattr(args, "hidden", False):
        overrides["hidden"] = True
    if getattr(args, "test", False):
        overrides["is_test"] = True
    if not overrides:
        return get_config()
    return SensorSettings(**overrides)


async def _drain_bus(bus: QueueBus, as_json: bool) -> None:
    while True:
        envelope: Envelope = await bus.queue.get()
        if as_json:
            print(envelope.to_json(), flush=True)
        elif envelope.event_type is EventType.TEXT:
            print(f"[{envelope.name}] {envelope.content!r}", flush=True)
        else:
            logger.info("Bus event %s: %s", envelope.event_type, envelope.content)


async def cmd_start(args: argparse.Namespace) -> int:
    """Run the sensor against the in-process router."""
    settings = build_settings(args)
    bus = QueueBus()
    manager = LifecycleManager(MemoryRouter(), bus, settings=settings)
    server = StatusServer(manager, host=settings.status_host, port=settings.status_port)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    drain_task = asyncio.create_task(_drain_bus(bus, args.json))
    try:
        if not args.no_status_server:
            await server.start()

        start_task = asyncio.create_task(manager.start())
        stop_wait = asyncio.create_task(shutdown_event.wait())
        await asyncio.wait({start_task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)

        if start_task.done():
            if not start_task.result():
                print("❌ Sensor failed to start", file=sys.stderr)
                stop_wait.cancel()
                await manager.shutdown()
                await manager.wait_stopped()
                return 1
            if not args.json:
                peer = manager.local_peer
                print(f"Sensor running as {peer.address if peer else '?'}")
                print("Press Ctrl+C to stop")
            await stop_wait
        else:
            stop_wait.cancel()

        await manager.graceful_shutdown()
        await manager.wait_stopped()
        await start_task

    except Exception as e:
        logger.exception(f"Sensor error: {e}")
        return 1

    finally:
        drain_task.cancel()
        try:
            await drain_task
        except asyncio.CancelledError:
            pass
        await server.stop()
        if not args.json:
            print("Sensor stopped")

    return 0


def cmd_identity(args: argparse.Namespace) -> int:
    """Show the local identity, creating the key file on first use."""
    settings = build_settings(args)
    store = IdentityStore(generate_key_material, settings.network)
    try:
        identity = store.load_or_create(settings.key_file)
    except VeilException as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    data = {
        **identity.peer.to_dict(),
        "key_file": str(settings.key_file),
    }
    if args.json:
        print(json.dumps(data, indent=2))
    else:
        print(f"Network:     {data['network']}")
        print(f"Address:     {data['address']}")
        print(f"Fingerprint: {data['fingerprint']}")
        print(f"Key file:    {data['key_file']}")
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Query a running sensor's status endpoint."""
    url = f"http://{args.host}:{args.port}/status"

    try:
        timeout = aiohttp.ClientTimeout(total=5)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                if response.status == 200:
                    data = await response.json()

                    if args.json:
                        print(json.dumps(data, indent=2))
                    else:
                        _print_status(data)

                    return 0
                else:
                    text = await response.text()
                    print(f"❌ Error: HTTP {response.status}: {text}", file=sys.stderr)
                    return 1

    except aiohttp.ClientConnectorError:
        print(f"❌ Cannot connect to sensor at {args.host}:{args.port}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1


def _print_status(data: dict[str, Any]) -> None:
    """Print sensor status in human-readable format."""
    stats = data.get("stats", {})
    monitor = stats.get("monitor", {})
    status = monitor.get("status")

    print("═" * 60)
    print("               VEIL SENSOR STATUS")
    print("═" * 60)
    print()

    status_icon = "🟢" if status == "NETWORK_CONNECTED" else "🔴"
    print(f"{status_icon} Status: {status or 'unknown'} ({stats.get('state', '?')})")
    print(f"🛰  Router status: {monitor.get('raw_status') or '?'}")

    peer = data.get("peer")
    if peer:
        print(f"📍 Address: {peer.get('address', '?')}")
        print(f"🔑 Fingerprint: {peer.get('fingerprint', '?')}")

    print()
    print("🔁 Restarts:")
    print(f"   Soft: {monitor.get('soft_restarts', 0)}")
    print(f"   Hard: {monitor.get('hard_restarts', 0)}")
    print(f"   Attempts since last success: {monitor.get('restart_attempts', 0)}")

    transport = stats.get("transport") or {}
    print()
    print("📈 Datagrams:")
    print(f"   Sent: {transport.get('sent', 0)}")
    print(f"   Received: {transport.get('received', 0)}")
    print(f"   Dropped: {transport.get('dropped', 0)}")

    health = stats.get("health", {})
    latency = health.get("last_latency")
    print()
    print("💓 Verifiers:")
    print(f"   Confirmed: {health.get('verifiers_confirmed', 0)}/{health.get('verifiers_sent', 0)}")
    if latency is not None:
        print(f"   Last round trip: {latency:.3f}s")

    print()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="veil",
        description="Veil - anonymous-overlay network sensor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  VEIL_BASE_DIR                Sensor data directory (default: ~/.veil)
  VEIL_SEED_ADDRESS            Destination used for connection verifiers
  VEIL_WARMUP_SECONDS          Router warm-up wait (default: 180)
  VEIL_LOG_LEVEL               Log level (default: INFO)
        """,
    )

    parser.add_argument("--version", action="version", version=f"veil {__version__}")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        help="Sensor data directory",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # start command
    start_parser = subparsers.add_parser(
        "start",
        help="Run the sensor",
        description="Run the sensor against the in-process router until interrupted.",
    )
    start_parser.add_argument(
        "--seed",
        "-s",
        help="Seed destination address for connection verifiers",
    )
    start_parser.add_argument(
        "--warmup",
        type=float,
        help="Seconds to wait for the router to warm up",
    )
    start_parser.add_argument(
        "--hidden",
        action="store_true",
        help="Launch the router in hidden mode",
    )
    start_parser.add_argument(
        "--test",
        action="store_true",
        help="Test mode: do not publish the local peer",
    )
    start_parser.add_argument(
        "--status-host",
        help="Status endpoint bind address (default: 127.0.0.1)",
    )
    start_parser.add_argument(
        "--status-port",
        type=int,
        help="Status endpoint port (default: 8475)",
    )
    start_parser.add_argument(
        "--no-status-server",
        action="store_true",
        help="Do not serve /health and /status",
    )

    # identity command
    subparsers.add_parser(
        "identity",
        help="Show the local identity",
        description="Show the local peer address, creating the key file on first use.",
    )

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Query sensor status",
        description="Get status information from a running sensor.",
    )
    status_parser.add_argument(
        "--host",
        default="localhost",
        help="Sensor host (default: localhost)",
    )
    status_parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=8475,
        help="Status port (default: 8475)",
    )

    return parser


async def async_main(args: argparse.Namespace) -> int:
    """Async main entry point."""
    if args.command == "start":
        return await cmd_start(args)
    elif args.command == "status":
        return await cmd_status(args)
    else:
        parser = create_parser()
        parser.print_help()
        return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        configure_logging(level="DEBUG" if args.verbose else None)
    except ValidationError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        return 1

    if args.command == "identity":
        return cmd_identity(args)
    return asyncio.run(async_main(args))


# For CLI entry point
app = main


if __name__ == "__main__":
    sys.exit(main())
