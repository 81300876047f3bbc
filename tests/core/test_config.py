"""Tests for veil.core.config - SensorSettings and session option filtering.

Tests cover:
- Settings loading with defaults
- Environment variable overrides
- Validation of durations and the restart ceiling
- Singleton behavior (get_config / clear_config_cache)
- Whitelisting of provider session options
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from veil.core.config import (
    SESSION_PARAMETERS,
    TUNNEL_NICKNAME,
    SensorSettings,
    clear_config_cache,
    filter_session_options,
    get_config,
)

# ============================================================================
# SensorSettings - Default Values
# ============================================================================


class TestSensorSettingsDefaults:
    """Test that SensorSettings loads with the documented defaults."""

    def test_timing_defaults(self):
        """Warm-up and block timeout default to three minutes."""
        settings = SensorSettings()

        assert settings.warmup_seconds == 180
        assert settings.block_timeout_seconds == 180
        assert settings.restart_attempts_until_hard_restart == 3
        assert settings.health_check_interval == 600
        assert settings.status_check_interval == 60
        assert settings.graceful_shutdown_timeout == 660

    def test_network_defaults(self):
        settings = SensorSettings()

        assert settings.network == "I2P"
        assert settings.seed_address is None
        assert settings.hidden is False
        assert settings.is_test is False
        assert settings.max_safe_datagram_size == 31500

    def test_logging_defaults(self):
        settings = SensorSettings()

        assert settings.log_level == "INFO"
        assert settings.log_format == ""
        assert settings.log_file is None

    def test_key_file_under_transport_dir(self, tmp_path: Path):
        """The key file lives at <base_dir>/i2p/local_dest.key."""
        settings = SensorSettings(base_dir=tmp_path)

        assert settings.transport_dir == tmp_path / "i2p"
        assert settings.key_file == tmp_path / "i2p" / "local_dest.key"


# ============================================================================
# SensorSettings - Environment Overrides
# ============================================================================


class TestSensorSettingsEnvironment:
    """Test VEIL_ environment variable overrides."""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("VEIL_WARMUP_SECONDS", "5")
        monkeypatch.setenv("VEIL_SEED_ADDRESS", "seed-dest")
        monkeypatch.setenv("VEIL_HIDDEN", "true")

        settings = SensorSettings()

        assert settings.warmup_seconds == 5
        assert settings.seed_address == "seed-dest"
        assert settings.hidden is True

    def test_unknown_env_ignored(self, monkeypatch):
        monkeypatch.setenv("VEIL_NOT_A_SETTING", "whatever")

        SensorSettings()

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError):
            SensorSettings(warmup_seconds=-1)

    def test_zero_restart_ceiling_rejected(self):
        with pytest.raises(ValidationError):
            SensorSettings(restart_attempts_until_hard_restart=0)


# ============================================================================
# Global Config
# ============================================================================


class TestGetConfig:
    def test_singleton(self):
        assert get_config() is get_config()

    def test_clear_cache_reloads(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("VEIL_WARMUP_SECONDS", "7")
        clear_config_cache()

        second = get_config()

        assert second is not first
        assert second.warmup_seconds == 7


# ============================================================================
# Session Options
# ============================================================================


class TestFilterSessionOptions:
    """Only whitelisted tunnel parameters reach the provider."""

    def test_nicknames_always_set(self):
        options = filter_session_options(None)

        assert options == {
            "inbound.nickname": TUNNEL_NICKNAME,
            "outbound.nickname": TUNNEL_NICKNAME,
        }

    def test_whitelisted_keys_pass_through(self):
        properties = {key: "2" for key in SESSION_PARAMETERS}

        options = filter_session_options(properties)

        for key in SESSION_PARAMETERS:
            assert options[key] == "2"

    def test_unknown_keys_dropped(self):
        options = filter_session_options(
            {
                "inbound.length": "3",
                "i2cp.leaseSetEncType": "4",
                "isTest": "true",
            }
        )

        assert options["inbound.length"] == "3"
        assert "i2cp.leaseSetEncType" not in options
        assert "isTest" not in options

    def test_domain_socket_whitelisted(self):
        options = filter_session_options({"i2cp.domainSocket": "/tmp/i2cp.sock"})

        assert options["i2cp.domainSocket"] == "/tmp/i2cp.sock"
