"""
tests/test_config.py — YAML configuration loader
=================================================
"""

from __future__ import annotations

from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from kudos.config import load_config


def _write(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_full_file(self, tmp_path):
        cfg = load_config(
            _write(
                tmp_path,
                "community_name: Guide de Lyon\n"
                "timezone: Europe/Paris\n"
                "debug: true\n"
                "enforce_daily_limits: true\n"
                "max_update_attempts: 5\n"
                "storage_backoff_base: 0.1\n"
                "catalog_path: catalog.yaml\n",
            )
        )
        assert cfg.community_name == "Guide de Lyon"
        assert cfg.debug is True
        assert cfg.enforce_daily_limits is True
        assert cfg.max_update_attempts == 5
        assert cfg.storage_backoff_base == 0.1
        assert cfg.catalog_path == "catalog.yaml"
        assert cfg.tz == ZoneInfo("Europe/Paris")

    def test_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, "community_name: Test City\n"))
        assert cfg.timezone == "Europe/Paris"
        assert cfg.debug is False
        assert cfg.enforce_daily_limits is False
        assert cfg.max_update_attempts == 3
        assert cfg.catalog_path is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_community_name(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "timezone: UTC\n"))

    def test_unknown_timezone(self, tmp_path):
        with pytest.raises(ValueError, match="timezone"):
            load_config(_write(tmp_path, "community_name: X\ntimezone: Mars/Olympus\n"))

    @pytest.mark.parametrize("key", ["max_update_attempts", "storage_retry_attempts"])
    def test_attempts_must_be_positive(self, tmp_path, key):
        with pytest.raises(ValueError, match=key):
            load_config(_write(tmp_path, f"community_name: X\n{key}: 0\n"))

    def test_future_skew(self, tmp_path):
        cfg = load_config(_write(tmp_path, "community_name: X\nmax_future_skew_seconds: 60\n"))
        assert cfg.max_future_skew_seconds == 60.0
        assert load_config(_write(tmp_path, "community_name: X\n")).max_future_skew_seconds == 300.0
        with pytest.raises(ValueError, match="max_future_skew_seconds"):
            load_config(_write(tmp_path, "community_name: X\nmax_future_skew_seconds: -5\n"))

    def test_negative_backoff(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, "community_name: X\nstorage_backoff_max: -1\n"))
