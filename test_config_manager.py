"""
Unit tests for ConfigurationManager
Tests configuration loading and persistence
"""

import pytest
import yaml

from emonhub.config import HubConfig
from emonhub.config_manager import ConfigurationManager
from emonhub.errors import ConfigError


class TestConfigurationManager:
    """Test ConfigurationManager functionality"""

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "timezone": "Asia/Manila",
            "users": ["household-1"],
            "store": {"backend": "memory"},
            "mqtt": {"host": "broker.local", "port": 1884},
            "aggregation": {"backfill_lookback_days": 7},
            "logging": {"level": "DEBUG"},
        }))
        return path

    def test_load_from_file(self, config_file):
        config = ConfigurationManager(str(config_file)).load_config()

        assert config.timezone == "Asia/Manila"
        assert config.users == ["household-1"]
        assert config.store.backend == "memory"
        assert config.mqtt.port == 1884
        assert config.aggregation.backfill_lookback_days == 7
        assert config.logging.level == "DEBUG"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigurationManager(str(tmp_path / "absent.yaml")).load_config()
        assert config == HubConfig()

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert ConfigurationManager(str(path)).load_config().store.backend == "sqlite"

    def test_bare_mqtt_section_disables_broker(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("mqtt:\nusers: [u1]\n")
        assert ConfigurationManager(str(path)).load_config().mqtt is None

    def test_invalid_yaml_raises_config_error(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("users: [unterminated\n")
        with pytest.raises(ConfigError):
            ConfigurationManager(str(path)).load_config()

    def test_invalid_values_raise_config_error(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"store": {"backend": "firestore"}}))
        with pytest.raises(ConfigError):
            ConfigurationManager(str(path)).load_config()

    def test_non_mapping_raises_config_error(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            ConfigurationManager(str(path)).load_config()

    def test_config_property_caches(self, config_file):
        manager = ConfigurationManager(str(config_file))
        first = manager.config
        config_file.write_text(yaml.safe_dump({"timezone": "UTC"}))
        assert manager.config is first
        assert manager.reload().timezone == "UTC"

    def test_save_and_reload_round_trip(self, config_file, tmp_path):
        manager = ConfigurationManager(str(config_file))
        config = manager.load_config()
        target = manager.save_config(config, str(tmp_path / "out" / "saved.yaml"))

        reloaded = ConfigurationManager(str(target)).load_config()
        assert reloaded == config
