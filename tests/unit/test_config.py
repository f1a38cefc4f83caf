"""Unit tests for file and environment configuration."""

import json
import os

import pytest

from suitecal.config_loader import Config, load_config
from suitecal.core.config_manager import ConfigManager, parse_env_file

pytestmark = pytest.mark.unit


class TestConfigFromDict:
    """Tests for Config.from_dict coercion."""

    def test_defaults(self):
        cfg = Config.from_dict(None)
        assert cfg.default_timezone == "UTC"
        assert cfg.reminder_lookahead_minutes == 5
        assert cfg.dispatch_interval_seconds == 60
        assert cfg.all_day_reminder_hour == 9
        assert cfg.server_port == 8080

    def test_values_are_clamped(self):
        cfg = Config.from_dict(
            {"dispatch_interval_seconds": 1, "reminder_lookahead_minutes": 99999, "all_day_reminder_hour": 30}
        )
        assert cfg.dispatch_interval_seconds == 10
        assert cfg.reminder_lookahead_minutes == 1440
        assert cfg.all_day_reminder_hour == 23

    def test_bad_int_falls_back_to_default(self):
        assert Config.from_dict({"server_port": "eighty"}).server_port == 8080

    def test_string_ints_are_coerced(self):
        assert Config.from_dict({"default_reminder_minutes": "15"}).default_reminder_minutes == 15

    def test_unknown_timezone_falls_back_to_utc(self):
        assert Config.from_dict({"default_timezone": "Moon/Base"}).default_timezone == "UTC"

    def test_timezone_alias_is_canonicalized(self):
        assert Config.from_dict({"default_timezone": "US/Pacific"}).default_timezone == "America/Los_Angeles"

    def test_log_level_is_uppercased(self):
        assert Config.from_dict({"log_level": "debug"}).log_level == "DEBUG"


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(str(tmp_path / "absent.yaml")) == Config()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "suitecal.yaml"
        path.write_text("default_timezone: Europe/Berlin\nserver_port: 9000\n", encoding="utf-8")
        cfg = load_config(str(path))
        assert cfg.default_timezone == "Europe/Berlin"
        assert cfg.server_port == 9000

    def test_json_file(self, tmp_path):
        path = tmp_path / "suitecal.json"
        path.write_text(json.dumps({"reminder_lookahead_minutes": 15}), encoding="utf-8")
        assert load_config(str(path)).reminder_lookahead_minutes == 15

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "suitecal.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(str(path)) == Config()

    def test_non_mapping_is_rejected(self, tmp_path):
        path = tmp_path / "suitecal.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_default_path_is_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "suitecal.yaml").write_text("server_port: 9100\n", encoding="utf-8")
        assert load_config().server_port == 9100


class TestConfigManager:
    """Tests for .env and SUITECAL_* environment handling."""

    def test_parse_env_file(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text(
            '# comment\nSUITECAL_SERVER_PORT="9200"\nexport SUITECAL_LOG_LEVEL=debug\n\nnot a pair\n',
            encoding="utf-8",
        )
        assert parse_env_file(path) == {"SUITECAL_SERVER_PORT": "9200", "SUITECAL_LOG_LEVEL": "debug"}

    def test_env_file_does_not_override_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SUITECAL_SERVER_PORT", "7000")
        monkeypatch.delenv("SUITECAL_DEFAULT_TIMEZONE", raising=False)
        path = tmp_path / ".env"
        path.write_text("SUITECAL_SERVER_PORT=9200\nSUITECAL_DEFAULT_TIMEZONE=Asia/Tokyo\n", encoding="utf-8")

        manager = ConfigManager(path)
        try:
            assert manager.load_env_file() == ["SUITECAL_DEFAULT_TIMEZONE"]
            cfg = manager.build_config_from_env()
        finally:
            os.environ.pop("SUITECAL_DEFAULT_TIMEZONE", None)

        assert cfg["server_port"] == 7000
        assert cfg["default_timezone"] == "Asia/Tokyo"

    def test_invalid_int_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SUITECAL_DISPATCH_INTERVAL", "often")
        cfg = ConfigManager(tmp_path / ".env").build_config_from_env()
        assert "dispatch_interval_seconds" not in cfg

    def test_full_config_overlays_base(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SUITECAL_REMINDER_LOOKAHEAD_MINUTES", "30")
        merged = ConfigManager(tmp_path / ".env").load_full_config({"reminder_lookahead_minutes": 5, "server_port": 1})
        assert merged == {"reminder_lookahead_minutes": 30, "server_port": 1}
