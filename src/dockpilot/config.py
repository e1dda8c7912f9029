"""
Persistent settings for dockpilot.

Settings live in one YAML file and are merged over built-in defaults.

Features:
- YAML configuration file at $XDG_CONFIG_HOME/dockpilot/config.yaml
- Default values with user overrides (unknown keys are ignored)
- Display preference (dark/light) persisted across sessions
- Refresh interval and provisioning pacing delay
- Engine endpoint override and registry search limit
- Log location, level and rotation

Architecture:
- ConfigManager loads, merges and rewrites the file
- Sections map onto the dataclasses below
- A missing file is created; an unreadable one is ignored
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from . import get_config_dir

logger = logging.getLogger(__name__)


@dataclass
class UIConfig:
    """Display preferences."""
    dark_mode: bool = False
    show_all: bool = False
    log_tail: str = "100"


@dataclass
class SyncConfig:
    """Polling cadence (seconds)."""
    refresh_interval: float = 5.0
    pacing_delay: float = 1.0


@dataclass
class DockerConfig:
    """Engine connection settings."""
    base_url: Optional[str] = None  # None means DOCKER_HOST / default socket
    search_limit: int = 25


@dataclass
class LogConfig:
    """Log file location and rotation."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None: XDG data dir
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """All sections together."""
    ui: UIConfig = field(default_factory=UIConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    docker: DockerConfig = field(default_factory=DockerConfig)
    logging: LogConfig = field(default_factory=LogConfig)


class ConfigManager:
    """Owns config.yaml: defaults, user overrides and writes."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else get_config_dir()
        self.config_file = self.config_dir / "config.yaml"
        self._config: AppConfig = AppConfig()

        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.load_config()

    def load_config(self) -> None:
        """Read config.yaml, or write the defaults when it does not exist yet."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}
                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self.save_config()
                logger.info(f"Wrote default settings to {self.config_file}")
        except (OSError, yaml.YAMLError, TypeError, AttributeError) as e:
            logger.error(f"Ignoring unreadable {self.config_file}: {e}")
            self._config = AppConfig()

    def save_config(self) -> None:
        try:
            with open(self.config_file, 'w') as f:
                yaml.dump(asdict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Could not write {self.config_file}: {e}")

    def get_config(self) -> AppConfig:
        return self._config

    def set_dark_mode(self, enabled: bool) -> None:
        self._config.ui.dark_mode = enabled
        self.save_config()

    def toggle_dark_mode(self) -> bool:
        self.set_dark_mode(not self._config.ui.dark_mode)
        return self._config.ui.dark_mode

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Apply known sections of the user file onto default."""
        for section in ('ui', 'sync', 'docker', 'logging'):
            if isinstance(user.get(section), dict):
                self._merge_dataclass(getattr(default, section), user[section])
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Copy known keys, coerced to the default's type; anything else is ignored."""
        for key, value in updates.items():
            if not hasattr(obj, key):
                continue
            try:
                setattr(obj, key, _coerce(getattr(obj, key), value))
            except ValueError:
                logger.warning(f"Ignoring {key}={value!r} in {self.config_file}, keeping {getattr(obj, key)!r}")


def _coerce(default: Any, value: Any) -> Any:
    """Convert value to the type of default, or raise ValueError."""
    if default is None:
        if value is None or isinstance(value, str):
            return value
        raise ValueError(value)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ValueError(value)
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(value)
        number = type(default)(value)
        if number < 0:
            raise ValueError(value)
        return number
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    raise ValueError(value)


_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Process-wide ConfigManager, created on first use."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
