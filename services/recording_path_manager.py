#!/usr/bin/env python3
"""
Recording path manager for deriving capture, side-artifact and final paths.

All paths of one recording share the timestamped file name and differ only by
a fixed prefix or suffix, so leftovers can be enumerated by pattern.
"""

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from config import MEDIA_ROOT, FILE_NAME_FORMAT

TEMP_PREFIX = '.recording_'
OPTIMIZED_PREFIX = '.optimized_'
RECOVERED_PREFIX = '.recovered_'
ATTEMPT_PREFIX = '.attempt{index}_'
CORRUPTED_SUFFIX = '_corrupted'
RECORDING_EXT = '.mp4'


@dataclass(frozen=True)
class RecordingPaths:
    """Deterministic file layout for one recording."""
    directory: str
    file_name: str
    attempt_count: int = 3

    @property
    def final_path(self) -> str:
        return os.path.join(self.directory, self.file_name)

    @property
    def temp_path(self) -> str:
        return os.path.join(self.directory, f"{TEMP_PREFIX}{self.file_name}")

    @property
    def optimized_path(self) -> str:
        return os.path.join(self.directory, f"{OPTIMIZED_PREFIX}{self.file_name}")

    @property
    def recovered_path(self) -> str:
        return os.path.join(self.directory, f"{RECOVERED_PREFIX}{self.file_name}")

    @property
    def corrupted_path(self) -> str:
        stem, ext = os.path.splitext(self.file_name)
        return os.path.join(self.directory, f"{stem}{CORRUPTED_SUFFIX}{ext}")

    def attempt_path(self, index: int) -> str:
        """Output path for recovery attempt `index` (zero based)."""
        prefix = ATTEMPT_PREFIX.format(index=index)
        return os.path.join(self.directory, f"{prefix}{self.file_name}")

    def side_artifacts(self) -> list[str]:
        """All intermediate paths of this recording; never includes final or corrupted paths."""
        paths = [self.temp_path, self.optimized_path, self.recovered_path]
        paths.extend(self.attempt_path(i) for i in range(self.attempt_count))
        return paths


class RecordingPathManager:
    """Manages output file paths for recordings."""

    def __init__(self, output_dir: str = MEDIA_ROOT, file_name_format: str = FILE_NAME_FORMAT):
        self.output_dir = output_dir
        self.file_name_format = file_name_format

    def stream_directory(self, app: str, stream: str) -> str:
        return os.path.join(self.output_dir, app.strip('/'), stream.strip('/'))

    def determine_output_paths(
        self,
        app: str,
        stream: str,
        start_time: datetime,
        attempt_count: int = 3
    ) -> RecordingPaths:
        """Determine output file paths for a recording.

        Args:
            app: Application name of the stream
            stream: Stream name
            start_time: Recording start time used for the file name
            attempt_count: Number of recovery strategies, for cleanup enumeration

        Returns:
            RecordingPaths for the recording
        """
        directory = self.stream_directory(app, stream)
        base_name = start_time.strftime(self.file_name_format)
        paths = RecordingPaths(directory, base_name + RECORDING_EXT, attempt_count)

        # Another recording of the stream started within the same second,
        # possibly still capturing or finalizing
        counter = 1
        while self.in_use(paths):
            paths = RecordingPaths(directory, f"{base_name}-{counter}{RECORDING_EXT}", attempt_count)
            counter += 1

        return paths

    @staticmethod
    def in_use(paths: RecordingPaths) -> bool:
        """True if any file of the recording (final, quarantined or intermediate) exists."""
        candidates = [paths.final_path, paths.corrupted_path, *paths.side_artifacts()]
        return any(os.path.exists(p) for p in candidates)

    def ensure_output_directory(self, recording_path: Optional[str] = None) -> None:
        """Ensure the output directory exists.

        Args:
            recording_path: Optional specific recording path to ensure directory for
        """
        if recording_path:
            os.makedirs(os.path.dirname(recording_path), exist_ok=True)
        else:
            os.makedirs(self.output_dir, exist_ok=True)
