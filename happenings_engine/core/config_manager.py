"""Configuration management for happenings_engine.

Settings come from ``HAPPENINGS_*`` environment variables. A ``.env`` file in
the working directory may supply defaults for any variable the environment
does not already define.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "on"})

# Plain string settings: environment variable -> config key
_STR_SETTINGS: dict[str, str] = {
    "HAPPENINGS_DATA_PATH": "data_path",
    "HAPPENINGS_WEB_HOST": "server_bind",
    "HAPPENINGS_SITE_TIMEZONE": "site_timezone",
}

# Integer settings: environment variable -> (config key, minimum accepted value)
_INT_SETTINGS: dict[str, tuple[str, int]] = {
    "HAPPENINGS_WINDOW_DAYS": ("default_window_days", 1),
    "HAPPENINGS_MAX_WINDOW_DAYS": ("max_window_days", 1),
    "HAPPENINGS_MAX_EVENTS": ("max_events", 1),
    "HAPPENINGS_MAX_TOTAL_OCCURRENCES": ("max_total_occurrences", 1),
    "HAPPENINGS_MAX_PER_EVENT": ("max_per_event", 1),
    "HAPPENINGS_WEB_PORT": ("server_port", 1),
}


def parse_env_file(path: Path) -> dict[str, str]:
    """Read ``KEY=VALUE`` pairs from a .env file.

    Blank lines, ``#`` comments and lines without ``=`` are skipped, and one
    layer of surrounding quotes is stripped from values. A missing or
    unreadable file yields an empty dict.
    """
    if not path.exists():
        return {}

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", path, exc_info=True)
        return {}

    pairs: dict[str, str] = {}
    for line in (raw.strip() for raw in lines):
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        if key:
            pairs[key] = value.strip().strip('"').strip("'")
    return pairs


def _parse_int_setting(env_key: str, raw: str, minimum: int) -> int | None:
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; ignoring", env_key, raw)
        return None
    if value < minimum:
        logger.warning("%s=%d below minimum %d; ignoring", env_key, value, minimum)
        return None
    return value


class ConfigManager:
    """Builds the engine configuration dict from the environment."""

    def __init__(self, env_file_path: Path | None = None):
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Copy .env values into ``os.environ`` where the key is unset.

        Returns:
            Keys that were taken from the .env file, in file order
        """
        defaults = parse_env_file(self.env_file_path)
        if not defaults:
            logger.debug("No .env defaults found at %s", self.env_file_path)
            return []

        applied = [key for key in defaults if key not in os.environ]
        for key in applied:
            os.environ[key] = defaults[key]

        if applied:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(applied))
        return applied

    def build_config_from_env(self) -> dict[str, Any]:
        """Map ``HAPPENINGS_*`` variables onto config keys.

        Integer settings that fail to parse or fall below their minimum are
        dropped with a warning. A default window wider than the configured
        maximum window is clamped to the maximum.

        Returns:
            Configuration dictionary accepted by start_server
        """
        env = os.environ
        cfg: dict[str, Any] = {
            cfg_key: env[env_key] for env_key, cfg_key in _STR_SETTINGS.items() if env.get(env_key)
        }

        for env_key, (cfg_key, minimum) in _INT_SETTINGS.items():
            raw = env.get(env_key)
            if raw:
                value = _parse_int_setting(env_key, raw, minimum)
                if value is not None:
                    cfg[cfg_key] = value

        window = cfg.get("default_window_days")
        ceiling = cfg.get("max_window_days")
        if window is not None and ceiling is not None and window > ceiling:
            logger.warning(
                "HAPPENINGS_WINDOW_DAYS=%d exceeds HAPPENINGS_MAX_WINDOW_DAYS=%d; clamping",
                window,
                ceiling,
            )
            cfg["default_window_days"] = ceiling

        debug = env.get("HAPPENINGS_DEBUG", "")
        if debug:
            cfg["debug_logging"] = debug.strip().lower() in _TRUTHY

        log_level = env.get("HAPPENINGS_LOG_LEVEL")
        if log_level:
            cfg["log_level"] = log_level.upper()

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Apply .env defaults, then build the config from the environment."""
        self.load_env_file()
        return self.build_config_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a config dict or attribute-style object."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
