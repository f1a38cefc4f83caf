"""Environment-based configuration for the suitecal server."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Environment variable -> (config key, is integer)
ENV_MAPPING: dict[str, tuple[str, bool]] = {
    "SUITECAL_DEFAULT_TIMEZONE": ("default_timezone", False),
    "SUITECAL_REMINDER_LOOKAHEAD_MINUTES": ("reminder_lookahead_minutes", True),
    "SUITECAL_DISPATCH_INTERVAL": ("dispatch_interval_seconds", True),
    "SUITECAL_DEFAULT_REMINDER_MINUTES": ("default_reminder_minutes", True),
    "SUITECAL_ALL_DAY_REMINDER_HOUR": ("all_day_reminder_hour", True),
    "SUITECAL_MAX_OCCURRENCES": ("max_occurrences_per_expansion", True),
    "SUITECAL_SERVER_BIND": ("server_bind", False),
    "SUITECAL_SERVER_PORT": ("server_port", True),
    "SUITECAL_LOG_LEVEL": ("log_level", False),
    "SUITECAL_STORE_PATH": ("store_path", False),
}


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Skips blank lines and ``#`` comments and strips single or double quotes
    from values. Returns an empty dict when the file is missing or unreadable.
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return result

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        val = val.strip().strip('"').strip("'")
        if key:
            result[key] = val
    return result


class ConfigManager:
    """Manages configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load the .env file into ``os.environ`` without overriding existing values.

        Returns:
            Keys that were set from the file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Map ``SUITECAL_*`` environment variables onto config keys.

        Invalid integers are logged and ignored.
        """
        cfg: dict[str, Any] = {}
        for env_name, (key, is_int) in ENV_MAPPING.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            if is_int:
                try:
                    cfg[key] = int(raw)
                except ValueError:
                    logger.warning("Invalid %s=%r; ignoring", env_name, raw)
                continue
            cfg[key] = raw
        return cfg

    def load_full_config(self, base: dict[str, Any] | None = None) -> dict[str, Any]:
        """Load the .env file, then overlay environment values on ``base``."""
        self.load_env_file()
        merged = dict(base or {})
        merged.update(self.build_config_from_env())
        return merged
