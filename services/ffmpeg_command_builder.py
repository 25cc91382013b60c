#!/usr/bin/env python3
"""
FFmpeg command builder for constructing capture, optimization, recovery,
validation and relay commands.

Every method is pure: it only assembles argument lists.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from config import FFMPEG_COMMAND, FFPROBE_COMMAND


@dataclass(frozen=True)
class RecoveryStrategy:
    """One way of rebuilding a damaged capture."""
    name: str
    description: str
    codec_args: Tuple[str, ...]


# Order matters: cheapest and quality-preserving first, audio dropped last.
RECOVERY_STRATEGIES: Tuple[RecoveryStrategy, ...] = (
    RecoveryStrategy(
        name='regenerate_timestamps',
        description='Stream copy with regenerated timestamps',
        codec_args=('-c', 'copy', '-avoid_negative_ts', 'make_zero', '-fflags', '+genpts'),
    ),
    RecoveryStrategy(
        name='reencode',
        description='Full re-encode with timestamp correction',
        codec_args=('-c:v', 'libx264', '-c:a', 'aac', '-preset', 'fast', '-avoid_negative_ts', 'make_zero'),
    ),
    RecoveryStrategy(
        name='video_only',
        description='Stream copy of video only, audio dropped',
        codec_args=('-c:v', 'copy', '-an', '-avoid_negative_ts', 'make_zero'),
    ),
)

CAPTURE_MOVFLAGS = 'frag_keyframe+empty_moov+default_base_moof+faststart'
OPTIMIZE_MOVFLAGS = 'faststart+frag_keyframe+empty_moov'


class FFmpegCommandBuilder:
    """Builds ffmpeg and ffprobe argument lists for a recording session."""

    def __init__(self, ffmpeg_command: str = FFMPEG_COMMAND, ffprobe_command: str = FFPROBE_COMMAND):
        self.ffmpeg_command = ffmpeg_command
        self.ffprobe_command = ffprobe_command

    def build_capture_command(self, config, temp_path: str) -> list[str]:
        """Build the initial capture command writing fragmented MP4 to temp_path.

        Args:
            config: RecordingConfig of the session
            temp_path: In-progress output file

        Returns:
            Argument list without the executable
        """
        if not config.input_url:
            raise ValueError("input_url cannot be empty")
        if not temp_path:
            raise ValueError("temp_path cannot be empty")

        args = [
            '-i', config.input_url,
            '-analyzeduration', str(config.analyze_duration),
            '-probesize', str(config.probe_size),
            # Copy streams without re-encoding
            '-c:v', 'copy',
            '-c:a', 'copy',
            '-f', 'mp4',
            # Fragmented MP4 survives interruptions and streams in browsers
            '-movflags', CAPTURE_MOVFLAGS,
            '-frag_duration', str(config.frag_duration_us),
            '-min_frag_duration', str(config.min_frag_duration_us),
            '-reset_timestamps', '1',
            '-avoid_negative_ts', 'make_zero',
            '-brand', 'isom',
            '-compatible_brands', 'isom,mp41,mp42',
            '-metadata', f'title={config.title}',
            '-metadata', f'encoder={config.encoder_tag}',
        ]

        if config.web_optimized:
            args.extend([
                '-strict', 'experimental',
                '-max_muxing_queue_size', '1024',
            ])

        args.append(temp_path)
        return args

    def build_optimize_command(self, temp_path: str, output_path: str, frag_duration_us: int) -> list[str]:
        """Build the web optimization re-mux pass (same codecs, new container flags)."""
        return [
            '-i', temp_path,
            '-c', 'copy',
            '-movflags', OPTIMIZE_MOVFLAGS,
            '-frag_duration', str(frag_duration_us),
            '-brand', 'isom',
            '-compatible_brands', 'isom,mp41,mp42,avc1',
            output_path,
        ]

    def build_recovery_command(self, strategy: RecoveryStrategy, temp_path: str, output_path: str) -> list[str]:
        return ['-i', temp_path, *strategy.codec_args, output_path]

    def build_validation_command(self, file_path: str) -> list[str]:
        """Build the ffprobe validation pass, including the executable."""
        return [
            self.ffprobe_command,
            '-v', 'error',
            '-select_streams', 'v:0',
            '-show_entries', 'stream=codec_name,duration',
            '-of', 'csv=p=0',
            file_path,
        ]

    def build_relay_command(
        self,
        input_url: str,
        output_path: str,
        mode: str,
        analyze_duration: int = 1000000,
        probe_size: int = 1000000,
        segment_time: int = 10,
        list_size: int = 6,
        options: Optional[dict] = None
    ) -> list[str]:
        """Build the primary HLS or DASH copy relay.

        Args:
            input_url: Live source locator
            output_path: Playlist or manifest path
            mode: 'hls' or 'dash'
            analyze_duration: Input analysis window in microseconds
            probe_size: Input probe size in bytes
            segment_time: Segment length in seconds
            list_size: Number of segments kept in the playlist or window
            options: Extra ffmpeg output options appended before the output

        Returns:
            Argument list without the executable
        """
        if not input_url:
            raise ValueError("input_url cannot be empty")

        args = [
            '-i', input_url,
            '-analyzeduration', str(analyze_duration),
            '-probesize', str(probe_size),
            '-c', 'copy',
        ]

        if mode == 'hls':
            args.extend([
                '-f', 'hls',
                '-hls_time', str(segment_time),
                '-hls_list_size', str(list_size),
                '-hls_flags', 'delete_segments',
            ])
        elif mode == 'dash':
            args.extend([
                '-f', 'dash',
                '-seg_duration', str(segment_time),
                '-window_size', str(list_size),
            ])
        else:
            raise ValueError(f"Unsupported relay mode: {mode}")

        for key, value in (options or {}).items():
            args.extend([f'-{key}', str(value)])

        args.append(output_path)
        return args
