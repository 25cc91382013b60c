#!/usr/bin/env python3
"""
Immutable per-session recording configuration.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from config import (
    ANALYZE_DURATION,
    ENCODER_TAG,
    FILE_NAME_FORMAT,
    FRAG_DURATION_US,
    MEDIA_ROOT,
    MIN_FRAG_DURATION_US,
    PROBE_SIZE,
    RECORDING_TZ,
    RTMP_PORT,
    WEB_OPTIMIZED,
)


def build_input_url(app: str, stream: str, rtmp_port: int = RTMP_PORT, host: str = '127.0.0.1') -> str:
    """Build the local RTMP locator for a published {app, stream} pair."""
    return f"rtmp://{host}:{rtmp_port}/{app.strip('/')}/{stream.strip('/')}"


@dataclass(frozen=True)
class RecordingConfig:
    """Settings for one stream's recording, fixed when the session is created."""
    input_url: str
    app: str
    stream: str
    output_dir: str = MEDIA_ROOT
    web_optimized: bool = WEB_OPTIMIZED
    frag_duration_us: int = FRAG_DURATION_US
    min_frag_duration_us: int = MIN_FRAG_DURATION_US
    analyze_duration: int = ANALYZE_DURATION
    probe_size: int = PROBE_SIZE
    title: Optional[str] = None
    encoder_tag: str = ENCODER_TAG
    file_name_format: str = FILE_NAME_FORMAT
    timezone: Any = field(default=RECORDING_TZ, compare=False)

    def __post_init__(self):
        if not self.input_url:
            raise ValueError("input_url cannot be empty")
        if not self.title:
            # Frozen dataclass: bypass __setattr__ once for the derived default
            object.__setattr__(self, 'title', self.stream or 'Live Stream')

    @property
    def stream_path(self) -> str:
        return f"/{self.app.strip('/')}/{self.stream.strip('/')}"

    @classmethod
    def for_stream(
        cls,
        app: str,
        stream: str,
        app_config=None,
        input_url: Optional[str] = None,
        **overrides: Any
    ) -> 'RecordingConfig':
        """Create a config for a published stream.

        Args:
            app: Ingestion application name (e.g. 'live')
            stream: Stream name within the application
            app_config: Optional AppConfig supplying defaults
            input_url: Explicit source locator; derived from app/stream when omitted
            **overrides: Field overrides (web_optimized, title, ...)

        Returns:
            RecordingConfig
        """
        values: dict = {}
        if app_config is not None:
            values.update(
                output_dir=app_config.media_root,
                web_optimized=app_config.web_optimized,
                frag_duration_us=app_config.frag_duration_us,
                min_frag_duration_us=app_config.min_frag_duration_us,
                analyze_duration=app_config.analyze_duration,
                probe_size=app_config.probe_size,
                encoder_tag=app_config.encoder_tag,
                timezone=app_config.timezone,
            )
            rtmp_port = app_config.rtmp_port
        else:
            rtmp_port = RTMP_PORT

        values.update(overrides)
        return cls(
            input_url=input_url or build_input_url(app, stream, rtmp_port),
            app=app.strip('/'),
            stream=stream.strip('/'),
            **values
        )
