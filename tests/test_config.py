#!/usr/bin/env python3
"""
Tests for configuration validation.

Tests the AppConfig dataclass and validation logic to ensure proper configuration
validation at startup.
"""

import os
from dataclasses import replace
from importlib import reload
from unittest.mock import patch

import pytest
import pytz

import config as config_module
from config import AppConfig


@pytest.fixture
def reload_config():
    """Reload the config module under patched environment variables."""
    def load(env):
        with patch.dict(os.environ, env):
            return reload(config_module)
    yield load
    reload(config_module)


class TestAppConfigValidation:
    """Test configuration validation logic."""

    def test_valid_config(self, app_config):
        # Should not raise any exceptions
        app_config.validate()

    def test_valid_config_from_env(self, reload_config, tmp_path):
        module = reload_config({"MEDIA_ROOT": str(tmp_path / "media")})

        config = module.validate_config()

        assert isinstance(config, module.AppConfig)
        assert config.media_root == str(tmp_path / "media")
        assert config.relay_mode == "none"
        assert config.legacy_app_prefixes == ("live",)
        assert config.timezone == pytz.UTC

    def test_media_root_created_if_not_exists(self, reload_config, tmp_path):
        """Test that MEDIA_ROOT is created if it doesn't exist."""
        new_dir = tmp_path / "new_media"
        assert not new_dir.exists()

        module = reload_config({"MEDIA_ROOT": str(new_dir)})
        module.validate_config()

        assert new_dir.is_dir()
        assert not (new_dir / ".write_test").exists()

    @pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores permissions")
    def test_media_root_must_be_writable(self, reload_config, tmp_path):
        """Test that MEDIA_ROOT must be writable."""
        readonly_dir = tmp_path / "readonly"
        readonly_dir.mkdir()
        readonly_dir.chmod(0o555)

        try:
            module = reload_config({"MEDIA_ROOT": str(readonly_dir)})
            with pytest.raises(ValueError, match="not writable"):
                module.validate_config()
        finally:
            # Restore write permissions for cleanup
            readonly_dir.chmod(0o755)

    def test_env_overrides(self, reload_config, tmp_path):
        module = reload_config({
            "MEDIA_ROOT": str(tmp_path / "media"),
            "RELAY_MODE": "HLS",
            "WEB_OPTIMIZED": "false",
            "STOP_TIMEOUT": "7.5",
            "LEGACY_APP_PREFIXES": "live, /studio/ ,",
            "RECORDING_TIMEZONE": "America/Edmonton",
        })

        config = module.validate_config()

        assert config.relay_mode == "hls"
        assert config.web_optimized is False
        assert config.stop_timeout == 7.5
        assert config.legacy_app_prefixes == ("live", "studio")
        assert config.timezone.zone == "America/Edmonton"

    def test_empty_media_root(self, app_config):
        with pytest.raises(ValueError, match="MEDIA_ROOT must not be empty"):
            replace(app_config, media_root="").validate()

    def test_empty_ffmpeg_command(self, app_config):
        with pytest.raises(ValueError, match="FFMPEG_COMMAND must not be empty"):
            replace(app_config, ffmpeg_command="").validate()

    @pytest.mark.parametrize("field_name,env_name", [
        ("stop_timeout", "STOP_TIMEOUT"),
        ("relay_stop_timeout", "RELAY_STOP_TIMEOUT"),
        ("frag_duration_us", "FRAG_DURATION_US"),
    ])
    def test_values_must_be_positive(self, app_config, field_name, env_name):
        config = replace(app_config, **{field_name: 0})
        with pytest.raises(ValueError, match=f"{env_name} must be positive"):
            config.validate()

    def test_min_fragment_not_greater_than_fragment(self, app_config):
        config = replace(app_config, frag_duration_us=1000000, min_frag_duration_us=2000000)
        with pytest.raises(ValueError, match="MIN_FRAG_DURATION_US"):
            config.validate()

    def test_analyze_settings_must_be_positive(self, app_config):
        with pytest.raises(ValueError, match="ANALYZE_DURATION and PROBE_SIZE"):
            replace(app_config, probe_size=0).validate()

    def test_relay_mode_must_be_valid(self, app_config):
        with pytest.raises(ValueError, match="RELAY_MODE must be one of"):
            replace(app_config, relay_mode="smooth").validate()

    def test_valid_relay_modes(self, app_config):
        for mode in ["none", "hls", "dash"]:
            replace(app_config, relay_mode=mode).validate()

    def test_hls_settings_checked_only_in_hls_mode(self, app_config):
        replace(app_config, relay_mode="dash", hls_time=0).validate()
        with pytest.raises(ValueError, match="HLS_TIME and HLS_LIST_SIZE"):
            replace(app_config, relay_mode="hls", hls_time=0).validate()

    def test_dash_settings_checked_in_dash_mode(self, app_config):
        with pytest.raises(ValueError, match="DASH_SEG_DURATION and DASH_WINDOW_SIZE"):
            replace(app_config, relay_mode="dash", dash_window_size=0).validate()

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_web_port_must_be_valid(self, app_config, port):
        with pytest.raises(ValueError, match="WEB_PORT must be between"):
            replace(app_config, web_port=port).validate()

    def test_rtmp_port_must_be_valid(self, app_config):
        with pytest.raises(ValueError, match="RTMP_PORT must be between"):
            replace(app_config, rtmp_port=70000).validate()

    def test_log_level_must_be_valid(self, app_config):
        replace(app_config, log_level="debug").validate()
        with pytest.raises(ValueError, match="LOG_LEVEL is not a valid level"):
            replace(app_config, log_level="chatty").validate()

    def test_multiple_validation_errors_reported(self, app_config):
        """Test that multiple validation errors are reported together."""
        config = replace(app_config, stop_timeout=-1, web_port=0, relay_mode="smooth")

        with pytest.raises(ValueError) as exc_info:
            config.validate()

        error_message = str(exc_info.value)
        assert "STOP_TIMEOUT" in error_message
        assert "WEB_PORT" in error_message
        assert "RELAY_MODE" in error_message

    def test_config_dataclass_attributes(self, app_config):
        assert isinstance(app_config, AppConfig)
        for name in ("media_root", "ffmpeg_command", "ffprobe_command", "legacy_app_prefixes",
                     "web_optimized", "stop_timeout", "relay_mode", "timezone"):
            assert hasattr(app_config, name)
