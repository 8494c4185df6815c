"""Tests for the ParameterStore — per-module parameter files."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from kmodstack.core.parameter_store import ConfigError, ParameterStore


class TestParameterStore:
    def test_missing_file_is_empty(self, param_store: ParameterStore):
        assert param_store.get("base") == ()

    def test_single_parameter(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "uvm.conf").write_text("modeset=1\n")
        assert param_store.get("uvm") == ("modeset=1",)
        assert param_store.get("base") == ()

    def test_round_trip_preserves_order(self, config_dir: Path, param_store: ParameterStore):
        lines = [f"NVreg_Option{i}={i * 3}" for i in range(12)]
        (config_dir / "nvidia.conf").write_text("\n".join(lines) + "\n")
        assert list(param_store.get("nvidia")) == lines

    def test_final_line_without_newline(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "nvidia.conf").write_text("a=1\nb=2")
        assert param_store.get("nvidia") == ("a=1", "b=2")

    def test_blank_lines_skipped(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "nvidia.conf").write_text("\na=1\n\n   \nb=2\n\n")
        assert param_store.get("nvidia") == ("a=1", "b=2")

    def test_whitespace_only_lines_skipped(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "nvidia.conf").write_text("a=1\n\t\n \t \n\r\nb=2\n")
        assert param_store.get("nvidia") == ("a=1", "b=2")

    def test_tokens_are_verbatim(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "nvidia.conf").write_text('NVreg_RegistryDwords="A=1;B=2"\r\n  spaced  \n')
        assert param_store.get("nvidia") == ('NVreg_RegistryDwords="A=1;B=2"', "  spaced  ")

    def test_non_utf8_is_config_error(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "nvidia.conf").write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(ConfigError) as excinfo:
            param_store.get("nvidia")
        assert excinfo.value.module == "nvidia"
        assert "nvidia" in str(excinfo.value)

    def test_nul_bytes_is_config_error(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "nvidia.conf").write_bytes(b"a=1\x00\n")
        with pytest.raises(ConfigError, match="NUL"):
            param_store.get("nvidia")

    def test_directory_is_config_error(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "nvidia.conf").mkdir()
        with pytest.raises(ConfigError):
            param_store.get("nvidia")

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores file permissions")
    def test_unreadable_is_config_error(self, config_dir: Path, param_store: ParameterStore):
        path = config_dir / "nvidia.conf"
        path.write_text("a=1\n")
        path.chmod(0)
        try:
            with pytest.raises(ConfigError):
                param_store.get("nvidia")
        finally:
            path.chmod(0o644)

    def test_get_is_cached(self, config_dir: Path, param_store: ParameterStore):
        path = config_dir / "nvidia.conf"
        path.write_text("a=1\n")
        assert param_store.get("nvidia") == ("a=1",)
        path.write_text("b=2\n")
        assert param_store.get("nvidia") == ("a=1",)
        assert param_store.load("nvidia") == ("b=2",)

    def test_parameter_set_snapshot(self, config_dir: Path, param_store: ParameterStore):
        (config_dir / "uvm.conf").write_text("modeset=1\n")
        param_store.get("uvm")
        param_store.get("base")
        snapshot = param_store.parameter_set()
        assert snapshot.get("uvm") == ("modeset=1",)
        assert snapshot.get("base") == ()
        assert "base" in snapshot

    def test_logs_discovered_parameters(
        self, config_dir: Path, param_store: ParameterStore, caplog: pytest.LogCaptureFixture
    ):
        (config_dir / "uvm.conf").write_text("modeset=1\n")
        with caplog.at_level(logging.INFO, logger="kmodstack.core.parameter_store"):
            param_store.get("uvm")
        assert "uvm" in caplog.text
        assert "modeset=1" in caplog.text
