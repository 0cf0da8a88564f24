"""
Configuration management for dockman.

Settings are optional and read from a YAML file; dockman never writes the
file back, so a fresh host runs entirely on the defaults below.

Lookup order for the file:
  1. $DOCKMAN_CONFIG
  2. $XDG_CONFIG_HOME/dockman/config.yaml
  3. ~/.config/dockman/config.yaml

Architecture:
- ConfigManager: loads and exposes settings
- Merges user config over dataclass defaults, unknown keys are ignored
- Handles missing/invalid config gracefully

The listening port is never read from the file: it comes from the
-port flag, then DOCKER_MANAGER_PORT, then 8080 (see main.py).
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, fields, is_dataclass, asdict
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
PORT_ENV_VAR = "DOCKER_MANAGER_PORT"


@dataclass
class ServerConfig:
    """Gateway-related configuration."""
    host: str = "0.0.0.0"
    docker_base_url: Optional[str] = None  # None means docker.from_env()
    default_log_tail: int = 100


@dataclass
class DashboardConfig:
    """Refresh policy shared by the browser UI and the console."""
    refresh_cooldown: float = 5.0
    reconnect_delay: float = 5.0
    fallback_refresh_interval: float = 120.0
    host_refresh_interval: float = 30.0
    max_events: int = 100


@dataclass
class ServicesConfig:
    """systemd-related configuration."""
    detail_log_lines: int = 50
    default_log_lines: int = 100
    systemctl: str = "systemctl"
    journalctl: str = "journalctl"


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    services: ServicesConfig = field(default_factory=ServicesConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def default_config_path() -> Path:
    explicit = os.environ.get("DOCKMAN_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    return base / "dockman" / "config.yaml"


class ConfigManager:
    """Configuration manager with read-only YAML file support."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else default_config_path()
        self._config: AppConfig = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file, if there is one."""
        if not self.config_file.exists():
            logger.debug(f"No configuration at {self.config_file}, using defaults")
            self._config = AppConfig()
            return
        try:
            with open(self.config_file, 'r') as f:
                user_config = yaml.safe_load(f) or {}
            if not isinstance(user_config, dict):
                raise ValueError("top level must be a mapping")
            self._config = self._merge_configs(AppConfig(), user_config)
            logger.debug(f"Loaded configuration from {self.config_file}")
        except Exception as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        for section in ('server', 'dashboard', 'services', 'logging'):
            if isinstance(user.get(section), dict):
                self._merge_dataclass(getattr(default, section), user[section])
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        known = {f.name for f in fields(obj)}
        for key, value in updates.items():
            if key in known and not is_dataclass(getattr(obj, key)):
                setattr(obj, key, value)
            elif key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")


def resolve_port(flag_value: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> int:
    """Port precedence: command-line flag, then environment, then 8080."""
    environ = os.environ if environ is None else environ
    for candidate in (flag_value, environ.get(PORT_ENV_VAR)):
        if candidate:
            return int(candidate)
    return DEFAULT_PORT


# Global config instance
config_manager = ConfigManager()
