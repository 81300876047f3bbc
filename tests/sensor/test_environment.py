"""Tests for veil.sensor.environment - transport directory preparation."""

from __future__ import annotations

from pathlib import Path

import pytest

from veil.core.exceptions import EnvironmentPreparationError
from veil.sensor.environment import CERTIFICATE_DIRS, OPTIONAL_DIRS, DirectoryEnvironment


class TestDirectoryEnvironment:
    def test_creates_tree(self, tmp_path: Path):
        base = tmp_path / "i2p"

        DirectoryEnvironment(base).prepare()

        for name in OPTIONAL_DIRS + CERTIFICATE_DIRS:
            assert (base / name).is_dir()

    def test_idempotent(self, tmp_path: Path):
        env = DirectoryEnvironment(tmp_path / "i2p")

        env.prepare()
        env.prepare()

    def test_optional_dir_failure_only_warns(self, tmp_path: Path, caplog):
        base = tmp_path / "i2p"
        base.mkdir()
        (base / "log").write_text("")

        DirectoryEnvironment(base).prepare()

        assert (base / "certificates" / "ssl").is_dir()
        assert "Unable to create log directory" in caplog.text

    def test_certificate_dir_failure_fatal(self, tmp_path: Path):
        base = tmp_path / "i2p"
        base.mkdir()
        (base / "certificates").write_text("")

        with pytest.raises(EnvironmentPreparationError) as exc_info:
            DirectoryEnvironment(base).prepare()

        assert exc_info.value.path == str(base / "certificates")

    def test_base_dir_failure_fatal(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(EnvironmentPreparationError):
            DirectoryEnvironment(blocker / "i2p").prepare()
