"""
Configuration Manager for emonhub

Loads HubConfig from a YAML file. A missing file yields the defaults so the
CLI can run against an in-memory or default SQLite store without any setup.
"""

import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from emonhub.config import HubConfig
from emonhub.errors import ConfigError

log = logging.getLogger(__name__)


class ConfigurationManager:
    """Loads and caches the hub configuration."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config_cache: Optional[HubConfig] = None

    @property
    def config(self) -> HubConfig:
        if self._config_cache is None:
            return self.load_config()
        return self._config_cache

    def load_config(self) -> HubConfig:
        """Load configuration from config.yaml, falling back to defaults when the file is absent."""
        if not self.config_path.exists():
            log.warning(f"Configuration file not found: {self.config_path}, using defaults")
            self._config_cache = HubConfig()
            return self._config_cache

        log.info(f"Loading configuration from {self.config_path}")
        self._config_cache = self._build(self._load_from_file())
        return self._config_cache

    def reload(self) -> HubConfig:
        self._config_cache = None
        return self.load_config()

    def _load_from_file(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, "r") as f:
                config_dict = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {self.config_path}: {e}") from e

        if config_dict is None:
            return {}
        if not isinstance(config_dict, dict):
            raise ConfigError(f"{self.config_path} must contain a mapping, got {type(config_dict).__name__}")

        # A bare "mqtt:" section means no broker
        if "mqtt" in config_dict and not config_dict["mqtt"]:
            config_dict["mqtt"] = None
        return config_dict

    def _build(self, config_dict: Dict[str, Any]) -> HubConfig:
        try:
            config = HubConfig(**config_dict)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {self.config_path}: {e}") from e
        log.info(
            f"Configuration loaded - store: {config.store.backend}, timezone: {config.timezone}, "
            f"users: {len(config.users)}"
        )
        return config

    def save_config(self, config: HubConfig, path: Optional[str] = None) -> Path:
        """Write a configuration back to YAML."""
        target = Path(path) if path else self.config_path
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            yaml.safe_dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
        log.info(f"Configuration saved to {target}")
        self._config_cache = config
        return target
