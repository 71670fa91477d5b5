"""Configuration management for chanrelay.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a Config object. Property getters provide safe access with
sensible defaults for the listener, credentials, rate limiter and
logging. The settings file is re-read when it changes on disk so that
credentials and the moderator list can be updated without a restart.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import List, Optional

import structlog
import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = structlog.get_logger("chanrelay.server")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6060
DEFAULT_MAX_FRAME_BYTES = 65536
DEFAULT_HALFLIFE_SECONDS = 30.0
DEFAULT_THRESHOLD = 15.0


class Config:
    """Central configuration manager for chanrelay.

    Loads settings.yaml and .env from the config directory. The
    credentials (salt, admin, password) may come from the environment,
    which takes precedence over the YAML file.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)

        # Load environment variables
        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self._settings_mtime: Optional[float] = None
        self.settings = self._load_yaml("settings.yaml")

    @property
    def settings_path(self) -> Path:
        return self.config_dir / "settings.yaml"

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
                or does not hold a mapping.
        """
        filepath = self.config_dir / filename
        if not filepath.exists():
            return {}
        try:
            with open(filepath, "r") as f:
                data = yaml.safe_load(f) or {}
            self._settings_mtime = filepath.stat().st_mtime
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read {filename}: {e}", setting_name=filename
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"{filename} must contain a mapping", setting_name=filename
            )
        return data

    def reload_if_changed(self) -> bool:
        """Re-read settings.yaml if its modification time changed.

        A broken file keeps the previous settings in place.

        Returns:
            True if new settings were loaded.
        """
        try:
            mtime = self.settings_path.stat().st_mtime
        except OSError:
            return False
        if mtime == self._settings_mtime:
            return False

        previous, previous_mtime = self.settings, self._settings_mtime
        try:
            self.settings = self._load_yaml("settings.yaml")
            self.validate()
        except ConfigurationError as e:
            self.settings = previous
            # Don't retry the same broken file on every poll
            self._settings_mtime = mtime
            logger.error("config_reload_failed", error=str(e))
            return False

        logger.info(
            "config_reloaded",
            path=str(self.settings_path),
            previous_mtime=previous_mtime,
        )
        return True

    def validate(self):
        """Validate settings.

        Missing credentials only produce warnings (the server still
        runs, it just has no admin). Wrongly typed values raise.

        Raises:
            ConfigurationError: On a setting of the wrong type.
        """
        port = self.settings.get("port")
        if port is not None and (
            isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536
        ):
            raise ConfigurationError(
                "port must be an integer between 1 and 65535", setting_name="port"
            )

        mods = self.settings.get("mods")
        if mods is not None and not isinstance(mods, list):
            raise ConfigurationError(
                "mods must be a list of trip hashes", setting_name="mods"
            )

        police = self.settings.get("police") or {}
        if not isinstance(police, dict):
            raise ConfigurationError(
                "police must be a mapping", setting_name="police"
            )
        for key in ("halflife_seconds", "threshold"):
            value = police.get(key)
            if value is not None and (
                not isinstance(value, (int, float)) or value <= 0
            ):
                raise ConfigurationError(
                    f"police.{key} must be a positive number",
                    setting_name=f"police.{key}",
                )

        if not self.salt:
            logger.warning("no_salt_configured", msg="Trip hashes will be guessable")
        if not self.admin:
            logger.warning("no_admin_configured")
        elif not self.password:
            logger.warning("no_admin_password", msg="Admin nick cannot be claimed")

    # --- Listener ---

    @property
    def host(self) -> str:
        """Bind address. Env var CHANRELAY_HOST takes precedence."""
        return os.environ.get("CHANRELAY_HOST") or self.settings.get("host", DEFAULT_HOST)

    @property
    def port(self) -> int:
        """Listen port. Env var CHANRELAY_PORT takes precedence."""
        env_port = os.environ.get("CHANRELAY_PORT")
        if env_port:
            try:
                return int(env_port)
            except ValueError:
                logger.error("invalid_port_env", value=env_port)
        return self.settings.get("port", DEFAULT_PORT)

    @property
    def x_forwarded_for(self) -> bool:
        """Take the client address from X-Forwarded-For (behind a proxy)."""
        return bool(self.settings.get("x_forwarded_for", False))

    @property
    def max_frame_bytes(self) -> int:
        """Frames larger than this are ignored (default 64 KiB)."""
        return self.settings.get("max_frame_bytes", DEFAULT_MAX_FRAME_BYTES)

    @property
    def heartbeat_seconds(self) -> float:
        """WebSocket ping interval (default 30)."""
        return self.settings.get("heartbeat_seconds", 30)

    @property
    def config_reload_seconds(self) -> float:
        """How often settings.yaml is checked for changes (default 2)."""
        return self.settings.get("config_reload_seconds", 2)

    # --- Credentials ---

    @property
    def salt(self) -> str:
        """Secret mixed into trip hashes. Env var CHANRELAY_SALT takes precedence."""
        return os.environ.get("CHANRELAY_SALT") or str(self.settings.get("salt", "") or "")

    @property
    def admin(self) -> str:
        """Reserved admin nickname. Env var CHANRELAY_ADMIN takes precedence."""
        return os.environ.get("CHANRELAY_ADMIN") or str(self.settings.get("admin", "") or "")

    @property
    def password(self) -> str:
        """Admin password. Env var CHANRELAY_PASSWORD takes precedence."""
        return os.environ.get("CHANRELAY_PASSWORD") or str(
            self.settings.get("password", "") or ""
        )

    @property
    def mods(self) -> List[str]:
        """Trip hashes that carry moderator rights."""
        mods = self.settings.get("mods", [])
        if not isinstance(mods, list):
            logger.error("mods_invalid_type", type=type(mods).__name__)
            return []
        return [str(m) for m in mods]

    # --- Rate limiter ---

    @property
    def police_halflife(self) -> float:
        """Seconds for an abuse score to halve (default 30)."""
        return float(
            (self.settings.get("police") or {}).get("halflife_seconds", DEFAULT_HALFLIFE_SECONDS)
        )

    @property
    def police_threshold(self) -> float:
        """Score at which an identity is rate-limited (default 15)."""
        return float((self.settings.get("police") or {}).get("threshold", DEFAULT_THRESHOLD))

    @property
    def jail_file(self) -> Path:
        """Startup ban list (default ``<repo_root>/jail.txt``)."""
        configured = self.settings.get("jail_file")
        if configured:
            path = Path(configured).expanduser()
            if not path.is_absolute():
                path = self.config_dir.parent / path
            return path
        return self.config_dir.parent / "jail.txt"

    # --- Logging ---

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        log_config = self.settings.get("logging", {})
        return log_config.get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"police": "DEBUG"}."""
        log_config = self.settings.get("logging", {})
        return log_config.get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
