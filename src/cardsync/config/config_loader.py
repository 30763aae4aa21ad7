"""
Configuration loader for cardsync.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv

from .. import __version__
from ..core.exceptions import ConfigError
from ..sync.engine import EngineConfig
from ..sync.scheduler import SchedulerConfig


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.cardsync/config.yaml").expanduser()

DEFAULTS: Dict[str, Any] = {
    "remote": {
        "backend": "dropbox",
        "access_token": None,
        "path": "/smartcards.json",
        "attachments_folder": "/attachments",
        "timeout": 30.0,
        "max_retries": 2,
    },
    "state": {
        "backend": "sqlite",
        "db_path": str(Path("~/.cardsync/state.db").expanduser()),
    },
    "engine": {
        "typing_guard_seconds": 15.0,
        "fetch_conflict_diff": True,
        "allow_empty_upload": False,
        "app_version": __version__,
    },
    "scheduler": {
        "debounce_seconds": 3.0,
        "poll_interval_seconds": 30.0,
    },
    "logging": {
        "level": "INFO",
        "structured": False,
    },
}

# Environment variable -> (dotted key, type)
ENV_OVERRIDES = {
    "DROPBOX_ACCESS_TOKEN": ("remote.access_token", str),
    "CARDSYNC_REMOTE_BACKEND": ("remote.backend", str),
    "CARDSYNC_REMOTE_PATH": ("remote.path", str),
    "CARDSYNC_TIMEOUT": ("remote.timeout", float),
    "CARDSYNC_STATE_BACKEND": ("state.backend", str),
    "CARDSYNC_STATE_DB": ("state.db_path", str),
    "CARDSYNC_TYPING_GUARD": ("engine.typing_guard_seconds", float),
    "CARDSYNC_DEBOUNCE": ("scheduler.debounce_seconds", float),
    "CARDSYNC_POLL_INTERVAL": ("scheduler.poll_interval_seconds", float),
    "CARDSYNC_LOG_LEVEL": ("logging.level", str),
}


class AppConfig:
    """
    Configuration for cardsync.

    Built from defaults, then an optional YAML file, then environment
    variables (a .env file in the working directory is loaded first).
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None, load_env_file: bool = True):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
            load_env_file: Whether to load a .env file into the environment
        """
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True))

        self.config_path = Path(config_path) if config_path else None
        self.config = copy.deepcopy(DEFAULTS)
        if self.config_path:
            _deep_merge(self.config, self._load_config())
        self._apply_env_overrides()
        self._validate()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise ConfigError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(f"Config file must contain a mapping: {self.config_path}")
        return config

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        for env_name, (key, cast) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                value = cast(raw)
            except ValueError as e:
                raise ConfigError(f"{env_name} must be a {cast.__name__}, got {raw!r}") from e
            self.set(key, value)

    def _validate(self) -> None:
        for key in (
            "remote.timeout",
            "engine.typing_guard_seconds",
            "scheduler.debounce_seconds",
            "scheduler.poll_interval_seconds",
        ):
            value = self.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"{key} must be a non-negative number, got {value!r}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dotted key."""
        *parents, last = key.split(".")
        node = self.config
        for k in parents:
            node = node.setdefault(k, {})
        node[last] = value

    def get_remote_config(self) -> Dict[str, Any]:
        """Get remote store configuration."""
        return self.config.get("remote", {})

    def get_state_config(self) -> Dict[str, Any]:
        """Get local state store configuration."""
        return self.config.get("state", {})

    def get_logging_config(self) -> Dict[str, Any]:
        return self.config.get("logging", {})

    def get_engine_config(self) -> EngineConfig:
        engine = self.config.get("engine", {})
        return EngineConfig(
            typing_guard_seconds=float(engine.get("typing_guard_seconds", 15.0)),
            fetch_conflict_diff=bool(engine.get("fetch_conflict_diff", True)),
            allow_empty_upload=bool(engine.get("allow_empty_upload", False)),
            app_version=engine.get("app_version"),
        )

    def get_scheduler_config(self) -> SchedulerConfig:
        scheduler = self.config.get("scheduler", {})
        return SchedulerConfig(
            debounce_seconds=float(scheduler.get("debounce_seconds", 3.0)),
            poll_interval_seconds=float(scheduler.get("poll_interval_seconds", 30.0)),
        )


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
