"""
kudos.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for the engine's runtime knobs (timezone used for
calendar-day streaks, retry budgets, daily-limit enforcement, optional
catalog override).  Secrets and connection strings stay in the
environment (``DATABASE_URL``), loaded from ``.env``.

Usage::

    from kudos.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Guide de Lyon"
    print(cfg.timezone)          # "Europe/Paris"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo

import yaml

from kudos.constants import DEFAULT_TIMEZONE


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class KudosConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Calendar-day boundaries for streaks, daily limits and windowed boards
    timezone: str = DEFAULT_TIMEZONE

    # Debug mode turns logged invariant violations into hard failures
    debug: bool = False

    # Reject actions beyond PointAction.daily_limit (off: limits are advisory)
    enforce_daily_limits: bool = False

    # Optimistic-concurrency retries before ServiceUnavailable
    max_update_attempts: int = 3

    # Storage I/O retries with exponential backoff + jitter
    storage_retry_attempts: int = 3
    storage_backoff_base: float = 0.05
    storage_backoff_max: float = 1.0

    # How far ahead of the server clock occurred_at may be; later is rejected
    max_future_skew_seconds: float = 300.0

    # Optional YAML catalog replacing the built-in one
    catalog_path: str | None = None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> KudosConfig:
    """Read *path* and return a :class:`KudosConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a value is out of range or the timezone is unknown.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    cfg = KudosConfig(
        community_name=raw["community_name"],
        timezone=raw.get("timezone", DEFAULT_TIMEZONE),
        debug=bool(raw.get("debug", False)),
        enforce_daily_limits=bool(raw.get("enforce_daily_limits", False)),
        max_update_attempts=int(raw.get("max_update_attempts", 3)),
        storage_retry_attempts=int(raw.get("storage_retry_attempts", 3)),
        storage_backoff_base=float(raw.get("storage_backoff_base", 0.05)),
        storage_backoff_max=float(raw.get("storage_backoff_max", 1.0)),
        max_future_skew_seconds=float(raw.get("max_future_skew_seconds", 300.0)),
        catalog_path=raw.get("catalog_path") or None,
    )
    _validate(cfg)
    return cfg


def _validate(cfg: KudosConfig) -> None:
    if cfg.max_update_attempts < 1:
        raise ValueError("max_update_attempts must be at least 1")
    if cfg.storage_retry_attempts < 1:
        raise ValueError("storage_retry_attempts must be at least 1")
    if cfg.storage_backoff_base < 0 or cfg.storage_backoff_max < 0:
        raise ValueError("storage backoff values must be non-negative")
    if cfg.max_future_skew_seconds < 0:
        raise ValueError("max_future_skew_seconds must be non-negative")
    try:
        ZoneInfo(cfg.timezone)
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {cfg.timezone!r}") from exc
