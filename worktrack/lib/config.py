"""
Configuration loader for worktrack.

Loads worktrack.yaml and merges it over defaults. A missing file is not an
error: defaults are returned.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pytz
import yaml

from worktrack.lib.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "worktrack.yaml"
CONFIG_ENV_VAR = "WORKTRACK_CONFIG"

DEFAULT_TITLE_MAX_LENGTH = 200


@dataclass
class NotificationConfig:
    """Notification settings from the `notifications` section."""
    enabled: bool = True
    desktop: bool = False  # Use notify-send instead of the log-only notifier


@dataclass
class TrackerConfig:
    """Top-level configuration."""
    store_path: Path = Path(".worktrack")
    timezone: str = "UTC"
    title_max_length: int = DEFAULT_TITLE_MAX_LENGTH
    lock_timeout: int = 30
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def tzinfo(self):
        return pytz.timezone(self.timezone)


def _expect(data: dict, key: str, kind: type, path: str):
    value = data[key]
    # bool is an int subclass; reject it where a number is expected
    if kind is int and isinstance(value, bool):
        raise ConfigError(f"expected integer, got {value!r}", f"{path}{key}")
    if not isinstance(value, kind):
        raise ConfigError(f"expected {kind.__name__}, got {value!r}", f"{path}{key}")
    return value


def parse_config(data: dict | None, base_dir: Path | None = None) -> TrackerConfig:
    """Build TrackerConfig from an already-parsed mapping.

    Relative store paths are resolved against base_dir when given.
    """
    config = TrackerConfig()
    if not data:
        return config
    if not isinstance(data, dict):
        raise ConfigError("top level must be a mapping")

    if "store_path" in data:
        store_path = Path(_expect(data, "store_path", str, ""))
        if base_dir is not None and not store_path.is_absolute():
            store_path = base_dir / store_path
        config.store_path = store_path
    if "timezone" in data:
        tz_name = _expect(data, "timezone", str, "")
        try:
            pytz.timezone(tz_name)
        except pytz.UnknownTimeZoneError:
            raise ConfigError(f"unknown timezone {tz_name!r}", "timezone") from None
        config.timezone = tz_name
    if "title_max_length" in data:
        config.title_max_length = _expect(data, "title_max_length", int, "")
        if config.title_max_length < 1:
            raise ConfigError("must be positive", "title_max_length")
    if "lock_timeout" in data:
        config.lock_timeout = _expect(data, "lock_timeout", int, "")

    notifications = data.get("notifications")
    if notifications is not None:
        if not isinstance(notifications, dict):
            raise ConfigError("expected mapping", "notifications")
        if "enabled" in notifications:
            config.notifications.enabled = _expect(notifications, "enabled", bool, "notifications.")
        if "desktop" in notifications:
            config.notifications.desktop = _expect(notifications, "desktop", bool, "notifications.")

    return config


def load_config(path: Optional[Path] = None) -> TrackerConfig:
    """Load worktrack.yaml and return TrackerConfig.

    Lookup order: explicit path, $WORKTRACK_CONFIG, ./worktrack.yaml.
    If no file exists, returns defaults.

    Raises:
        ConfigError: If the file is not valid YAML or has wrong value types.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else Path.cwd() / CONFIG_FILENAME

    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return TrackerConfig()

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from None

    return parse_config(data, base_dir=path.parent)
