"""Settings store for PyVaultSync.

Settings live in a small ``KEY=value`` file in the user's config directory.
Only the source URL and credentials are persisted; the parsed sync target is
derived from the URL at the start of every synchronization attempt.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError
from .utils import parse_bool, parse_int

logger = logging.getLogger(__name__)

# Keys stored in the config file
KEY_URL = "SYNC_URL"
KEY_USERNAME = "SYNC_USERNAME"
KEY_PASSWORD = "SYNC_PASSWORD"
KEY_SYNC_ON_OPEN = "SYNC_ON_OPEN"
KEY_SYNC_ON_SAVE = "SYNC_ON_SAVE"
KEY_TIMER_MINUTES = "TIMER_MINUTES"

# Placeholder values for a freshly created store. The URL is deliberately
# not a valid target until the user edits it.
DEFAULT_SETTINGS: dict[str, str] = {
    KEY_URL: "sftp://host:port/path/to/directory/",
    KEY_USERNAME: "sshUsername",
    KEY_PASSWORD: "sshPassword",
    KEY_SYNC_ON_OPEN: "False",
    KEY_SYNC_ON_SAVE: "False",
    KEY_TIMER_MINUTES: "0",
}

# Environment variables that take precedence over the file
ENV_OVERRIDES: dict[str, str] = {
    KEY_URL: "PYVAULTSYNC_URL",
    KEY_USERNAME: "PYVAULTSYNC_USERNAME",
    KEY_PASSWORD: "PYVAULTSYNC_PASSWORD",
}


@dataclass
class SyncSettings:
    """Settings for one configured remote location."""

    url: str
    """Source URL string, e.g. sftp://host:22/backups/"""

    username: str
    """SSH username"""

    password: str
    """SSH password"""

    sync_on_open: bool = False
    """Synchronize after the database is opened"""

    sync_on_save: bool = False
    """Synchronize after the database is saved"""

    timer_minutes: int = 0
    """Auto-sync interval in minutes (0 disables the timer)"""

    def __repr__(self) -> str:
        return (
            f"SyncSettings(url={self.url!r}, username={self.username!r}, "
            f"password='***', sync_on_open={self.sync_on_open}, "
            f"sync_on_save={self.sync_on_save}, "
            f"timer_minutes={self.timer_minutes})"
        )


class Config:
    """Key/value settings store backed by a file."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize the settings store.

        Args:
            config_dir: Directory holding the config file. Defaults to
                $PYVAULTSYNC_CONFIG_DIR or ~/.config/pyvaultsync
        """
        if config_dir is None:
            env_dir = os.environ.get("PYVAULTSYNC_CONFIG_DIR")
            config_dir = (
                Path(env_dir) if env_dir else Path.home() / ".config" / "pyvaultsync"
            )
        self.config_dir = config_dir

    def get_config_path(self) -> Path:
        """Get the path of the config file."""
        return self.config_dir / "config"

    def is_configured(self) -> bool:
        """Check whether a config file exists."""
        return self.get_config_path().exists()

    def _read(self) -> dict[str, str]:
        path = self.get_config_path()
        if not path.exists():
            return {}

        values: dict[str, str] = {}
        try:
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    values[key.strip()] = value.strip()
        except OSError as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e
        return values

    def _write(self, values: dict[str, str]) -> None:
        path = self.get_config_path()
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                for key, value in values.items():
                    f.write(f"{key}={value}\n")
            # The file holds the SSH password
            os.chmod(path, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to write config file {path}: {e}") from e
        logger.debug("Saved %d setting(s) to %s", len(values), path)

    def get(self, key: str) -> Optional[str]:
        """Get a raw setting, honoring environment overrides.

        Args:
            key: Setting key (e.g. ``SYNC_URL``)

        Returns:
            The stored value, or None if unset
        """
        env_name = ENV_OVERRIDES.get(key)
        if env_name and os.environ.get(env_name):
            return os.environ[env_name]
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        """Store a raw setting."""
        values = self._read()
        values[key] = value
        self._write(values)

    def ensure_defaults(self) -> bool:
        """Create the config file with placeholder settings if missing.

        Missing keys in an existing file are filled in as well.

        Returns:
            True if anything was written
        """
        values = self._read()
        missing = {k: v for k, v in DEFAULT_SETTINGS.items() if k not in values}
        if not missing:
            return False
        values.update(missing)
        self._write(values)
        return True

    def save_settings(self, settings: SyncSettings) -> None:
        """Persist all sync settings."""
        values = self._read()
        values.update(
            {
                KEY_URL: settings.url,
                KEY_USERNAME: settings.username,
                KEY_PASSWORD: settings.password,
                KEY_SYNC_ON_OPEN: str(settings.sync_on_open),
                KEY_SYNC_ON_SAVE: str(settings.sync_on_save),
                KEY_TIMER_MINUTES: str(settings.timer_minutes),
            }
        )
        self._write(values)

    def load_settings(self) -> SyncSettings:
        """Load sync settings, falling back to placeholders for missing keys."""
        values = {**DEFAULT_SETTINGS, **self._read()}
        for key, env_name in ENV_OVERRIDES.items():
            if os.environ.get(env_name):
                values[key] = os.environ[env_name]

        timer_minutes = parse_int(values[KEY_TIMER_MINUTES], default=0)
        return SyncSettings(
            url=values[KEY_URL],
            username=values[KEY_USERNAME],
            password=values[KEY_PASSWORD],
            sync_on_open=parse_bool(values[KEY_SYNC_ON_OPEN]),
            sync_on_save=parse_bool(values[KEY_SYNC_ON_SAVE]),
            timer_minutes=max(timer_minutes, 0),
        )


config = Config()
