"""Tests for the veil CLI.

Tests cover:
1. Argument parsing
2. Settings overrides from the command line
3. identity / status commands
"""

from __future__ import annotations

import json
import socket
from pathlib import Path

import pytest

from veil.cli.main import build_settings, cmd_identity, cmd_status, create_parser, main
from veil.sensor.lifecycle import LifecycleManager
from veil.sensor.status_server import StatusServer


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ============================================================================
# Parsing
# ============================================================================


class TestParser:
    def test_start_options(self):
        args = create_parser().parse_args(
            ["--base-dir", "/tmp/v", "start", "--seed", "abc", "--warmup", "5", "--hidden", "--test"]
        )

        assert args.command == "start"
        assert args.base_dir == Path("/tmp/v")
        assert args.seed == "abc"
        assert args.warmup == 5.0
        assert args.hidden and args.test

    def test_status_defaults(self):
        args = create_parser().parse_args(["status"])

        assert args.host == "localhost"
        assert args.port == 8475

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0

        assert "usage: veil" in capsys.readouterr().out


class TestBuildSettings:
    def test_overrides(self, tmp_path: Path):
        args = create_parser().parse_args(
            ["--base-dir", str(tmp_path), "start", "--warmup", "1", "--status-port", "9000", "--test"]
        )

        settings = build_settings(args)

        assert settings.base_dir == tmp_path
        assert settings.warmup_seconds == 1
        assert settings.status_port == 9000
        assert settings.is_test is True
        assert settings.hidden is False

    def test_env_still_applies(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("VEIL_BLOCK_TIMEOUT_SECONDS", "30")
        args = create_parser().parse_args(["--base-dir", str(tmp_path), "identity"])

        assert build_settings(args).block_timeout_seconds == 30


# ============================================================================
# Commands
# ============================================================================


class TestIdentityCommand:
    def test_creates_and_reports(self, tmp_path: Path, capsys):
        args = create_parser().parse_args(["--json", "--base-dir", str(tmp_path), "identity"])

        assert cmd_identity(args) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["network"] == "I2P"
        assert data["key_file"] == str(tmp_path / "i2p" / "local_dest.key")
        assert Path(data["key_file"]).exists()

    def test_stable_across_runs(self, tmp_path: Path, capsys):
        args = create_parser().parse_args(["--json", "--base-dir", str(tmp_path), "identity"])

        cmd_identity(args)
        first = json.loads(capsys.readouterr().out)
        cmd_identity(args)
        second = json.loads(capsys.readouterr().out)

        assert first["address"] == second["address"]

    def test_unwritable_key_file(self, tmp_path: Path, capsys):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        args = create_parser().parse_args(["--base-dir", str(blocker), "identity"])

        assert cmd_identity(args) == 1
        assert "Error" in capsys.readouterr().err


class TestStatusCommand:
    @pytest.mark.asyncio
    async def test_reports_running_sensor(self, router, bus, settings, capsys):
        manager = LifecycleManager(router, bus, settings=settings)
        await manager.start({})
        port = _free_port()
        server = StatusServer(manager, host="127.0.0.1", port=port)
        await server.start()
        try:
            args = create_parser().parse_args(["--json", "status", "--host", "127.0.0.1", "--port", str(port)])

            assert await cmd_status(args) == 0

            data = json.loads(capsys.readouterr().out)
            assert data["peer"]["address"] == manager.local_peer.address
        finally:
            await server.stop()
            await manager.shutdown()
            await manager.wait_stopped()

    @pytest.mark.asyncio
    async def test_human_readable(self, router, bus, settings, capsys):
        manager = LifecycleManager(router, bus, settings=settings)
        await manager.start({})
        port = _free_port()
        server = StatusServer(manager, host="127.0.0.1", port=port)
        await server.start()
        try:
            args = create_parser().parse_args(["status", "--host", "127.0.0.1", "--port", str(port)])

            assert await cmd_status(args) == 0

            out = capsys.readouterr().out
            assert "VEIL SENSOR STATUS" in out
            assert "NETWORK_CONNECTED" in out
        finally:
            await server.stop()
            await manager.shutdown()
            await manager.wait_stopped()

    @pytest.mark.asyncio
    async def test_nothing_listening(self, capsys):
        args = create_parser().parse_args(["status", "--host", "127.0.0.1", "--port", str(_free_port())])

        assert await cmd_status(args) == 1
        assert "Cannot connect" in capsys.readouterr().err
