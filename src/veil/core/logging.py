# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Logging for the sensor process.

Every handler installed by :func:`configure_logging` carries a
:class:`SensorContextFilter`, which stamps each record with:

- ``peer``: short fingerprint of the local peer while a session is up
- ``envelope``: id of the envelope being relayed (see :func:`envelope_scope`)
- ``fields``: structured values passed with ``extra=log_fields(...)``

Records render as one JSON object per line for files and pipes, or as a
plain text line for terminals.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from .config import get_config

ENVELOPE_ID_LENGTH = 16
PEER_TAG_LENGTH = 8

_envelope_id: ContextVar[str | None] = ContextVar("veil_envelope_id", default=None)

# Process-wide: callbacks arrive on provider threads and on tasks created
# before the session exists, so a context variable would not reach them.
_local_peer: str | None = None


def bind_local_peer(fingerprint: str | None) -> None:
    """Tag subsequent records with *fingerprint* (None clears the tag)."""
    global _local_peer
    _local_peer = fingerprint[:PEER_TAG_LENGTH] if fingerprint else None


def current_envelope() -> str | None:
    return _envelope_id.get()


@contextmanager
def envelope_scope(envelope_id: str) -> Iterator[str]:
    """Tag records logged inside the block with *envelope_id*.

    Example:
        with envelope_scope(envelope.envelope_id):
            logger.info("Sending message...")
    """
    token = _envelope_id.set(envelope_id[:ENVELOPE_ID_LENGTH])
    try:
        yield envelope_id[:ENVELOPE_ID_LENGTH]
    finally:
        _envelope_id.reset(token)


def log_fields(**fields: Any) -> dict[str, Any]:
    """Build the ``extra=`` mapping for structured values on one record."""
    return {"fields": fields}


class SensorContextFilter(logging.Filter):
    """Attach peer, envelope and field attributes to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.peer = _local_peer
        record.envelope = _envelope_id.get()
        if not isinstance(getattr(record, "fields", None), dict):
            record.fields = {}
        tags = [tag for tag in (record.peer, record.envelope) if tag]
        record.tags = f"[{' '.join(tags)}] " if tags else ""
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in ("peer", "envelope"):
            value = getattr(record, key, None)
            if value:
                data[key] = value
        fields = getattr(record, "fields", None)
        if fields:
            data["fields"] = fields
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """``time level logger [peer envelope] message`` for terminals.

    Structured fields are appended as ``key=value`` pairs.
    """

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s %(tags)s%(message)s",
            datefmt="%H:%M:%S",
        )

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = getattr(record, "fields", None)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Install the sensor handlers on the root logger.

    Args:
        level: Log level; defaults to ``VEIL_LOG_LEVEL``.
        json_format: Force JSON (True) or text (False) on stderr. Defaults to
            ``VEIL_LOG_FORMAT``; when that is empty, JSON unless stderr is a
            terminal.
        log_file: Extra JSON log file; defaults to ``VEIL_LOG_FILE``.
    """
    config = get_config()

    if level is None:
        level = config.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    if json_format is None:
        chosen = config.log_format.lower()
        json_format = chosen == "json" or (chosen != "text" and not sys.stderr.isatty())

    if log_file is None:
        log_file = config.log_file

    context = SensorContextFilter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    handlers[0].setFormatter(JSONFormatter() if json_format else TextFormatter())
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        handler.addFilter(context)
        root.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
