# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Core configuration - centralized config for the veil package.

All environment-based configuration should flow through this module.

Usage:
    from veil.core.config import get_config
    config = get_config()

    warmup = config.warmup_seconds
    log_level = config.log_level
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Tunnel-quality parameters the provider accepts from us.  Anything else in
# the start properties is ignored.
PARAMETER_DOMAIN_SOCKET = "i2cp.domainSocket"
SESSION_PARAMETERS: tuple[str, ...] = (
    PARAMETER_DOMAIN_SOCKET,
    "inbound.length",
    "inbound.lengthVariance",
    "inbound.quantity",
    "inbound.backupQuantity",
    "outbound.length",
    "outbound.lengthVariance",
    "outbound.quantity",
    "outbound.backupQuantity",
)

TUNNEL_NICKNAME = "veil"


class SensorSettings(BaseSettings):
    """Configuration settings for the Veil sensor.

    Settings can be configured via environment variables with the
    ``VEIL_`` prefix (e.g. ``VEIL_WARMUP_SECONDS=30``).
    """

    model_config = SettingsConfigDict(
        env_prefix="VEIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # DIRECTORIES
    # ==========================================================================

    base_dir: Path = Field(
        default=Path.home() / ".veil",
        description="Working directory; the transport lives in <base_dir>/i2p",
    )

    # ==========================================================================
    # NETWORK
    # ==========================================================================

    network: str = Field(
        default="I2P",
        description="Network tag a destination peer must carry",
    )
    seed_address: str | None = Field(
        default=None,
        description="Seed destination for verifier messages (self if unset)",
    )
    hidden: bool = Field(default=False, description="Run the router in hidden mode")
    is_test: bool = Field(
        default=False,
        description="Test mode: do not publish the local peer to the bus",
    )
    max_safe_datagram_size: int = Field(
        default=31500,
        description="Content above this size is sent with a warning",
    )

    # ==========================================================================
    # LIFECYCLE TIMING (seconds)
    # ==========================================================================

    warmup_seconds: float = Field(default=180.0, description="Router warm-up wait")
    block_timeout_seconds: float = Field(
        default=180.0,
        description="Continuous blocked time before a restart is triggered",
    )
    restart_attempts_until_hard_restart: int = Field(
        default=3,
        description="Restart attempt at which a soft restart escalates to hard",
    )
    health_check_interval: float = Field(
        default=600.0,
        description="Interval between verifier messages",
    )
    status_check_interval: float = Field(
        default=60.0,
        description="Interval between router status checks",
    )
    graceful_shutdown_timeout: float = Field(
        default=660.0,
        description="Upper bound for a graceful router stop",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
    )
    log_file: str | None = Field(default=None, description="Log file path (optional)")

    # ==========================================================================
    # STATUS ENDPOINT
    # ==========================================================================

    status_host: str = Field(default="127.0.0.1", description="Status endpoint bind address")
    status_port: int = Field(default=8475, description="Status endpoint port")

    @field_validator("restart_attempts_until_hard_restart")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("restart_attempts_until_hard_restart must be >= 1")
        return v

    @field_validator(
        "warmup_seconds",
        "block_timeout_seconds",
        "health_check_interval",
        "status_check_interval",
        "graceful_shutdown_timeout",
    )
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("durations must be >= 0")
        return v

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def transport_dir(self) -> Path:
        """Directory owned by the transport provider."""
        return Path(self.base_dir).expanduser() / "i2p"

    @property
    def key_file(self) -> Path:
        """Path of the persisted identity key."""
        return self.transport_dir / "local_dest.key"


def filter_session_options(properties: Mapping[str, str] | None) -> dict[str, str]:
    """Return the session options to hand to the provider.

    Only whitelisted tunnel parameters pass through; unrecognised keys are
    dropped without complaint.  Tunnel nicknames are always set.
    """
    options = {
        "inbound.nickname": TUNNEL_NICKNAME,
        "outbound.nickname": TUNNEL_NICKNAME,
    }
    for key, value in (properties or {}).items():
        if key in SESSION_PARAMETERS:
            options[key] = str(value)
    return options


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: SensorSettings | None = None


def get_config() -> SensorSettings:
    """Get the global configuration instance.

    Returns:
        The singleton SensorSettings instance.
    """
    global _config
    if _config is None:
        _config = SensorSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
