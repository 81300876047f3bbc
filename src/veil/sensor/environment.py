# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Working directory preparation for the transport provider."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from veil.core.exceptions import EnvironmentPreparationError

logger = logging.getLogger(__name__)

# Created if possible; a failure is only a warning
OPTIONAL_DIRS: tuple[str, ...] = ("config", "router", "pid", "log", "app")
# Required before a session can be initialised
CERTIFICATE_DIRS: tuple[str, ...] = ("certificates", "certificates/reseed", "certificates/ssl")


@runtime_checkable
class EnvironmentPreparer(Protocol):
    def prepare(self) -> None: ...


class DirectoryEnvironment:
    """Creates the transport directory tree under *base_dir*.

    Raises :class:`EnvironmentPreparationError` when the base or any
    certificate directory cannot be created.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def path(self, name: str) -> Path:
        return self.base_dir / name

    def prepare(self) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise EnvironmentPreparationError(
                f"Unable to create base directory {self.base_dir}: {exc}", path=str(self.base_dir)
            ) from exc

        for name in OPTIONAL_DIRS:
            try:
                self.path(name).mkdir(exist_ok=True)
            except OSError as exc:
                logger.warning("Unable to create %s directory %s: %s", name, self.path(name), exc)

        for name in CERTIFICATE_DIRS:
            target = self.path(name)
            try:
                target.mkdir(exist_ok=True)
            except OSError as exc:
                raise EnvironmentPreparationError(
                    f"Unable to create {target}: {exc}", path=str(target)
                ) from exc
        logger.debug("Environment prepared in %s", self.base_dir)
