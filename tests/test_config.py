"""Tests for settings validation and persistence"""

import json

import pytest
from pydantic import ValidationError

from ytdl_orchestrator.config import ConfigManager, Settings, apply_env_overrides


class TestSettings:
    """Test settings defaults and validation"""

    def test_defaults(self):
        settings = Settings()
        assert settings.yt_dlp_path == 'yt-dlp'
        assert settings.ffmpeg_path == 'ffmpeg'
        assert settings.filename_template == '%(title)s-%(id)s.%(ext)s'
        assert settings.max_concurrent_downloads == 3
        assert settings.log_enabled is True
        assert settings.download_timeout == 3600
        assert (settings.audio_format, settings.audio_quality) == ('mp3', '192')

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(max_concurrent_downloads=0)

    def test_template_needs_placeholder(self):
        with pytest.raises(ValidationError):
            Settings(filename_template='video.mp4')

    def test_template_cannot_escape_output_dir(self):
        with pytest.raises(ValidationError):
            Settings(filename_template='../%(title)s.%(ext)s')

    def test_log_level_normalised(self):
        assert Settings(log_level='debug').log_level == 'DEBUG'
        with pytest.raises(ValidationError):
            Settings(log_level='chatty')


class TestEnvOverrides:
    """Test environment variable overrides"""

    def test_known_variables_applied(self):
        env = {'YTDLP_BIN': '/opt/yt-dlp', 'MAX_DOWNLOADS': '5', 'LOG_ENABLED': 'false', 'UNRELATED': 'x'}
        merged = apply_env_overrides({'audio_format': 'opus'}, env)
        settings = Settings.model_validate(merged)
        assert settings.yt_dlp_path == '/opt/yt-dlp'
        assert settings.max_concurrent_downloads == 5
        assert settings.log_enabled is False
        assert settings.audio_format == 'opus'

    def test_empty_values_ignored(self):
        assert apply_env_overrides({}, {'YTDLP_BIN': ''}) == {}


class TestConfigManager:
    """Test loading and saving the config file"""

    def test_creates_default_file(self, tmp_path):
        path = tmp_path / 'cfg' / 'config.json'
        settings = ConfigManager(path, environ={}).load()
        assert path.exists()
        assert settings == Settings()

    def test_round_trip(self, tmp_path):
        path = tmp_path / 'config.json'
        manager = ConfigManager(path, environ={})
        manager.save(Settings(max_concurrent_downloads=7, output_dir=tmp_path / 'out'))
        loaded = manager.load()
        assert loaded.max_concurrent_downloads == 7
        assert loaded.output_dir == tmp_path / 'out'

    def test_corrupt_file_backed_up(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{not json', encoding='utf-8')
        settings = ConfigManager(path, environ={}).load()
        assert settings == Settings()
        assert not path.exists()
        assert len(list(tmp_path.glob('config.*.bak'))) == 1

    def test_invalid_env_override_ignored(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'max_concurrent_downloads': 2}), encoding='utf-8')
        settings = ConfigManager(path, environ={'MAX_DOWNLOADS': 'lots'}).load()
        assert settings.max_concurrent_downloads == 2
