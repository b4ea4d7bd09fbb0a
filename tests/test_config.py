import configparser

import pytest
from pydantic import ValidationError

from aniplay_cli.exceptions import ConfigurationError
from aniplay_cli.models.config import DEFAULT_BASE_URL, AppConfig
from aniplay_cli.storage.config_manager import ConfigManager


class TestAppConfig:
    def test_defaults(self):
        config = AppConfig()
        assert config.base_url == DEFAULT_BASE_URL
        assert config.chunk_count == 4
        assert config.player_command == ["vlc"]
        assert not config.stop_player_on_quit

    def test_base_url_gets_trailing_slash(self):
        assert AppConfig(base_url="https://example.com").base_url == "https://example.com/"

    @pytest.mark.parametrize(
        "field, value",
        [
            ("base_url", "ftp://example.com"),
            ("chunk_count", 0),
            ("chunk_count", 33),
            ("dial_timeout", 0),
            ("player", "   "),
            ("download_root", ""),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            AppConfig(**{field: value})

    def test_player_command_includes_arguments(self):
        config = AppConfig(player="mpv", player_args=["--fs", "--no-terminal"])
        assert config.player_command == ["mpv", "--fs", "--no-terminal"]

    def test_download_root_expands_user(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert AppConfig(download_root="~/anime").download_root_path == tmp_path / "anime"


class TestConfigManager:
    def test_missing_file_yields_defaults(self, tmp_path):
        config = ConfigManager(tmp_path / "config.ini").load_config()
        assert config.chunk_count == 4
        assert not (tmp_path / "config.ini").exists()

    def test_saved_config_loads_back(self, tmp_path):
        path = tmp_path / "nested" / "config.ini"
        manager = ConfigManager(path)
        manager.save_new_config(
            {"player": "mpv", "player_args": ["--fs"], "chunk_count": 8, "json_logs": True}
        )

        config = ConfigManager(path).load_config()
        assert config.player_command == ["mpv", "--fs"]
        assert config.chunk_count == 8
        assert config.json_logs

    def test_saved_file_holds_exactly_the_model_fields(self, tmp_path):
        path = tmp_path / "config.ini"
        ConfigManager(path).save_new_config({})

        parser = configparser.ConfigParser(interpolation=None)
        parser.read(path, encoding="utf-8")
        assert set(parser["DEFAULT"]) == set(AppConfig.model_fields)
        assert AppConfig.get_ini_keys() == set(AppConfig.model_fields)

    def test_invalid_settings_are_not_saved(self, tmp_path):

        path = tmp_path / "config.ini"
        with pytest.raises(ConfigurationError):
            ConfigManager(path).save_new_config({"chunk_count": 100})
        assert not path.exists()

    def test_cli_options_override_file(self, tmp_path):
        path = tmp_path / "config.ini"
        ConfigManager(path).save_new_config({"chunk_count": 8})
        config = ConfigManager(path).load_config({"chunk_count": 2})
        assert config.chunk_count == 2

    def test_missing_keys_are_migrated(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\nplayer = mpv\n", encoding="utf-8")

        config = ConfigManager(path).load_config()
        assert config.player == "mpv"

        parser = configparser.ConfigParser(interpolation=None)
        parser.read(path, encoding="utf-8")
        assert parser["DEFAULT"]["chunk_count"] == "4"
        assert parser["DEFAULT"]["stop_player_on_quit"] == "false"

    @pytest.mark.parametrize(
        "line", ["chunk_count = many", "chunk_count = 0", "json_logs = maybe"]
    )
    def test_invalid_file_values(self, tmp_path, line):
        path = tmp_path / "config.ini"
        path.write_text(f"[DEFAULT]\n{line}\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("player = mpv without a section\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_player_args_keep_percent_signs(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\nplayer_args = --title=%f\n", encoding="utf-8")
        assert ConfigManager(path).load_config().player_args == ["--title=%f"]
