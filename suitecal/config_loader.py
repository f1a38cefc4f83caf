"""suitecal.config_loader

Config loader for the suitecal engine and server.

- Reads YAML (PyYAML); files ending in ``.json`` are read as JSON.
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .core.exceptions import UnknownTimezone
from .core.timezone_utils import DEFAULT_TIMEZONE, validate_timezone

logger = logging.getLogger(__name__)

MIN_DISPATCH_INTERVAL = 10
MAX_DISPATCH_INTERVAL = 3600


@dataclass
class Config:
    """Typed configuration for suitecal.

    Fields:
        default_timezone: zone applied to series created without one
        reminder_lookahead_minutes: dispatch horizon N in (now, now+N]
        dispatch_interval_seconds: seconds between dispatch ticks (10..3600)
        default_reminder_minutes: minutes_before of the default timed reminder
        all_day_reminder_hour: local hour all-day reminders fire at (0..23)
        max_occurrences_per_expansion: safety cap on one expansion
        server_bind: host to bind the HTTP server to
        server_port: port for the HTTP server
        log_level: logging level name
        store_path: optional JSON file backing the in-memory datastore
    """

    default_timezone: str = DEFAULT_TIMEZONE
    reminder_lookahead_minutes: int = 5
    dispatch_interval_seconds: int = 60
    default_reminder_minutes: int = 10
    all_day_reminder_hour: int = 9
    max_occurrences_per_expansion: int = 1000
    server_bind: str = "0.0.0.0"  # nosec: B104 - intentional default; override via config/env
    server_port: int = 8080
    log_level: str = "INFO"
    store_path: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric values are coerced to int; out-of-range values are clamped and
        an unknown default timezone falls back to UTC, each with a warning.
        """
        if data is None:
            data = {}

        def _coerce_int(key: str, default: int) -> int:
            raw = data.get(key, default)
            try:
                return int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default

        def _clamp(key: str, value: int, low: int, high: int) -> int:
            if value < low:
                logger.warning("%s %d below minimum; coercing to %d", key, value, low)
                return low
            if value > high:
                logger.warning("%s %d above maximum; coercing to %d", key, value, high)
                return high
            return value

        interval = _clamp(
            "dispatch_interval_seconds",
            _coerce_int("dispatch_interval_seconds", 60),
            MIN_DISPATCH_INTERVAL,
            MAX_DISPATCH_INTERVAL,
        )
        lookahead = _clamp(
            "reminder_lookahead_minutes", _coerce_int("reminder_lookahead_minutes", 5), 1, 1440
        )
        all_day_hour = _clamp("all_day_reminder_hour", _coerce_int("all_day_reminder_hour", 9), 0, 23)
        max_occurrences = _clamp(
            "max_occurrences_per_expansion",
            _coerce_int("max_occurrences_per_expansion", 1000),
            1,
            100_000,
        )

        default_tz = str(data.get("default_timezone") or DEFAULT_TIMEZONE)
        try:
            default_tz = validate_timezone(default_tz)
        except UnknownTimezone:
            logger.warning("Config default_timezone=%r is unknown; using %s", default_tz, DEFAULT_TIMEZONE)
            default_tz = DEFAULT_TIMEZONE

        server_bind = data.get("server_bind", "0.0.0.0")  # nosec: B104
        server_bind = str(server_bind) if server_bind is not None else "0.0.0.0"  # nosec: B104

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        store_path = data.get("store_path")
        if store_path is not None:
            store_path = str(store_path)

        return cls(
            default_timezone=default_tz,
            reminder_lookahead_minutes=lookahead,
            dispatch_interval_seconds=interval,
            default_reminder_minutes=_coerce_int("default_reminder_minutes", 10),
            all_day_reminder_hour=all_day_hour,
            max_occurrences_per_expansion=max_occurrences,
            server_bind=server_bind,
            server_port=_coerce_int("server_port", 8080),
            log_level=log_level,
            store_path=store_path,
        )


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a YAML file, or a JSON file when the suffix is ``.json``."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    loaded = yaml.safe_load(text)
    # safe_load returns None for empty files
    if loaded is None:
        return {}
    return loaded


def load_config(path: str | None = None) -> Config:
    """Load configuration from a YAML/JSON file and return a Config instance.

    Args:
        path: Optional path to the config file. Defaults to ./suitecal.yaml
              (relative to current working dir).

    Returns:
        Config dataclass instance with values from file (or defaults).

    Behavior:
    - If file is missing: returns Config() with defaults.
    - If file exists but top-level is not a mapping: raises ValueError.
    """
    p = Path(path) if path else Path.cwd() / "suitecal.yaml"
    logger.debug("Attempting to load config from %s", p)
    if not p.exists():
        logger.info("Config file %s not found; using defaults", p)
        return Config()

    raw = _load_yaml_or_json(p)
    if not isinstance(raw, dict):
        logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
        raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
    cfg = Config.from_dict(raw)
    logger.info("Loaded configuration from %s", p)
    logger.debug("Configuration values: %s", cfg)
    return cfg
