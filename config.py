#!/usr/bin/env python3
"""
Configuration module for the relay recorder.
Centralizes all configuration values for easier testing and maintenance.
"""

import os
import logging
import pytz
from dataclasses import dataclass, field
from typing import Optional, Tuple
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# Timezone used for recording file names and timestamps
RECORDING_TZ = pytz.timezone(os.getenv("RECORDING_TIMEZONE", "UTC"))

# Directory paths
MEDIA_ROOT = os.getenv("MEDIA_ROOT", "./media")
LOG_DIR = os.getenv("LOG_DIR", "./logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# External command settings
FFMPEG_COMMAND = os.getenv("FFMPEG_COMMAND", "ffmpeg")
FFPROBE_COMMAND = os.getenv("FFPROBE_COMMAND", "ffprobe")

# Ingestion settings
RTMP_PORT = int(os.getenv("RTMP_PORT", "1935"))
# Application prefixes accepted when resolving loosely written stream paths
LEGACY_APP_PREFIXES: Tuple[str, ...] = tuple(
    p.strip().strip("/") for p in os.getenv("LEGACY_APP_PREFIXES", "live").split(",") if p.strip()
)

# Web server settings
WEB_HOST = os.getenv("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.getenv("WEB_PORT", "8000"))

# Recording settings
WEB_OPTIMIZED = _env_bool("WEB_OPTIMIZED", "true")
STOP_TIMEOUT = float(os.getenv("STOP_TIMEOUT", "15"))  # Seconds before an encoder is force-killed
RELAY_STOP_TIMEOUT = float(os.getenv("RELAY_STOP_TIMEOUT", "5"))
FRAG_DURATION_US = int(os.getenv("FRAG_DURATION_US", "2000000"))  # 2 second fragments
MIN_FRAG_DURATION_US = int(os.getenv("MIN_FRAG_DURATION_US", "1000000"))
ANALYZE_DURATION = int(os.getenv("ANALYZE_DURATION", "1000000"))
PROBE_SIZE = int(os.getenv("PROBE_SIZE", "1000000"))
ENCODER_TAG = os.getenv("ENCODER_TAG", "RelayRecorder")
FILE_NAME_FORMAT = "%Y-%m-%d-%H-%M-%S"
VALIDATE_RECOVERED_OUTPUT = _env_bool("VALIDATE_RECOVERED_OUTPUT", "true")

# Primary relay settings (none, hls or dash)
RELAY_MODE = os.getenv("RELAY_MODE", "none").lower()
HLS_TIME = int(os.getenv("HLS_TIME", "10"))
HLS_LIST_SIZE = int(os.getenv("HLS_LIST_SIZE", "6"))
DASH_SEG_DURATION = int(os.getenv("DASH_SEG_DURATION", "10"))
DASH_WINDOW_SIZE = int(os.getenv("DASH_WINDOW_SIZE", "6"))

VALID_RELAY_MODES = ["none", "hls", "dash"]


@dataclass
class AppConfig:
    """
    Type-safe configuration with validation.

    This dataclass provides a validated, type-safe interface to the application
    configuration. It ensures all required settings are present and valid before
    the application starts.
    """

    # Directory paths
    media_root: str
    log_dir: str
    log_level: str

    # External command settings
    ffmpeg_command: str
    ffprobe_command: str

    # Ingestion settings
    rtmp_port: int
    legacy_app_prefixes: Tuple[str, ...]

    # Web server settings
    web_host: str
    web_port: int

    # Recording settings
    web_optimized: bool
    stop_timeout: float
    relay_stop_timeout: float
    frag_duration_us: int
    min_frag_duration_us: int
    analyze_duration: int
    probe_size: int
    encoder_tag: str
    validate_recovered_output: bool

    # Primary relay settings
    relay_mode: str
    hls_time: int
    hls_list_size: int
    dash_seg_duration: int
    dash_window_size: int

    # Timezone
    timezone: pytz.tzinfo.BaseTzInfo = field(default_factory=lambda: RECORDING_TZ)

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """
        Create an AppConfig instance from environment variables.

        Returns:
            AppConfig: Validated configuration instance

        Raises:
            ValueError: If any configuration validation fails
        """
        config = cls(
            media_root=MEDIA_ROOT,
            log_dir=LOG_DIR,
            log_level=LOG_LEVEL,
            ffmpeg_command=FFMPEG_COMMAND,
            ffprobe_command=FFPROBE_COMMAND,
            rtmp_port=RTMP_PORT,
            legacy_app_prefixes=LEGACY_APP_PREFIXES,
            web_host=WEB_HOST,
            web_port=WEB_PORT,
            web_optimized=WEB_OPTIMIZED,
            stop_timeout=STOP_TIMEOUT,
            relay_stop_timeout=RELAY_STOP_TIMEOUT,
            frag_duration_us=FRAG_DURATION_US,
            min_frag_duration_us=MIN_FRAG_DURATION_US,
            analyze_duration=ANALYZE_DURATION,
            probe_size=PROBE_SIZE,
            encoder_tag=ENCODER_TAG,
            validate_recovered_output=VALIDATE_RECOVERED_OUTPUT,
            relay_mode=RELAY_MODE,
            hls_time=HLS_TIME,
            hls_list_size=HLS_LIST_SIZE,
            dash_seg_duration=DASH_SEG_DURATION,
            dash_window_size=DASH_WINDOW_SIZE,
            timezone=RECORDING_TZ,
        )

        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate the configuration.

        Raises:
            ValueError: If any validation check fails with a descriptive message
        """
        errors = []

        # Validate media root
        if not self.media_root:
            errors.append("MEDIA_ROOT must not be empty")
        else:
            media_path = Path(self.media_root)
            try:
                media_path.mkdir(parents=True, exist_ok=True)
                test_file = media_path / ".write_test"
                try:
                    test_file.touch()
                    test_file.unlink()
                except (OSError, PermissionError) as e:
                    errors.append(f"MEDIA_ROOT '{self.media_root}' is not writable: {e}")
            except (OSError, PermissionError) as e:
                errors.append(f"Cannot create MEDIA_ROOT '{self.media_root}': {e}")

        if not self.ffmpeg_command:
            errors.append("FFMPEG_COMMAND must not be empty")

        # Validate timeouts
        if self.stop_timeout <= 0:
            errors.append(f"STOP_TIMEOUT must be positive (got {self.stop_timeout})")

        if self.relay_stop_timeout <= 0:
            errors.append(
                f"RELAY_STOP_TIMEOUT must be positive (got {self.relay_stop_timeout})"
            )

        # Validate fragment settings
        if self.frag_duration_us <= 0:
            errors.append(
                f"FRAG_DURATION_US must be positive (got {self.frag_duration_us})"
            )

        if self.min_frag_duration_us <= 0 or self.min_frag_duration_us > self.frag_duration_us:
            errors.append(
                f"MIN_FRAG_DURATION_US ({self.min_frag_duration_us}) must be positive and "
                f"not greater than FRAG_DURATION_US ({self.frag_duration_us})"
            )

        if self.analyze_duration <= 0 or self.probe_size <= 0:
            errors.append(
                f"ANALYZE_DURATION and PROBE_SIZE must be positive "
                f"(got {self.analyze_duration}, {self.probe_size})"
            )

        # Validate relay settings
        if self.relay_mode not in VALID_RELAY_MODES:
            errors.append(
                f"RELAY_MODE must be one of {VALID_RELAY_MODES} "
                f"(got '{self.relay_mode}')"
            )

        if self.relay_mode == "hls" and (self.hls_time <= 0 or self.hls_list_size <= 0):
            errors.append(
                f"HLS_TIME and HLS_LIST_SIZE must be positive "
                f"(got {self.hls_time}, {self.hls_list_size})"
            )

        if self.relay_mode == "dash" and (self.dash_seg_duration <= 0 or self.dash_window_size <= 0):
            errors.append(
                f"DASH_SEG_DURATION and DASH_WINDOW_SIZE must be positive "
                f"(got {self.dash_seg_duration}, {self.dash_window_size})"
            )

        # Validate ports
        if self.web_port < 1 or self.web_port > 65535:
            errors.append(
                f"WEB_PORT must be between 1 and 65535 (got {self.web_port})"
            )

        if self.rtmp_port < 1 or self.rtmp_port > 65535:
            errors.append(
                f"RTMP_PORT must be between 1 and 65535 (got {self.rtmp_port})"
            )

        if self.log_level.upper() not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            errors.append(f"LOG_LEVEL is not a valid level (got '{self.log_level}')")

        if errors:
            error_message = "Configuration validation failed:\n" + "\n".join(
                f"  - {error}" for error in errors
            )
            logger.error(error_message)
            raise ValueError(error_message)

        logger.info("Configuration validation passed")


def validate_config() -> AppConfig:
    """
    Convenience function to validate configuration from environment.

    Returns:
        AppConfig: Validated configuration instance

    Raises:
        ValueError: If any configuration validation fails
    """
    return AppConfig.from_env()
