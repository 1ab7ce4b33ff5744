"""Tests for configuration loading and validation."""

import json

import pytest
from pydantic import ValidationError

from outage_monitor.config import AppConfig, ConfigManager, SourceConfig


class TestAppConfig:
    def test_defaults(self):
        config = AppConfig(bot_token="123:abc")
        assert config.default_interval_hours == 6
        assert config.only_upcoming is True
        assert config.source.my_place == "Ленинаван"
        assert config.source.lookback_days == 30

    @pytest.mark.parametrize("hours", [0, 25])
    def test_interval_out_of_range(self, hours):
        with pytest.raises(ValidationError):
            AppConfig(bot_token="123:abc", default_interval_hours=hours)

    def test_empty_token(self):
        with pytest.raises(ValidationError):
            AppConfig(bot_token="  ")

    def test_admins_deduplicated(self):
        config = AppConfig(bot_token="123:abc", admin_chat_ids=[3, 1, 3, 2, 1])
        assert config.admin_chat_ids == [3, 1, 2]
        assert config.is_admin(2)
        assert not config.is_admin(4)


class TestConfigManager:
    def test_missing(self, tmp_path):
        manager = ConfigManager(tmp_path)
        assert not manager.exists()
        assert manager.load() is None

    def test_save_and_load(self, tmp_path):
        manager = ConfigManager(tmp_path / "conf")
        config = AppConfig(
            bot_token="123:abc",
            admin_chat_ids=[1],
            source=SourceConfig(district="Аксайский", places="г.Аксай", my_place="Аксай"),
        )
        manager.save(config)

        data = json.loads(manager.config_path.read_text(encoding="utf-8"))
        assert data["source"]["district"] == "Аксайский"
        assert manager.load() == config

    def test_paths(self, tmp_path):
        manager = ConfigManager(tmp_path)
        assert manager.get_db_path() == tmp_path / "data.db"
        assert manager.reports_dir == tmp_path / "reports"
        assert manager.backups_dir == tmp_path / "backups"
        assert manager.log_dir == tmp_path / "logs"
