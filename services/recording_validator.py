#!/usr/bin/env python3
"""
Recording validator for checking that a produced file is present and readable.
"""

import os
import logging
import subprocess
from typing import Any, Dict, Optional

from .ffmpeg_command_builder import FFmpegCommandBuilder

VALIDATION_TIMEOUT = 30


class RecordingValidator:
    """Validates recording output files with presence, size and ffprobe checks."""

    def __init__(self, command_builder: Optional[FFmpegCommandBuilder] = None, timeout: int = VALIDATION_TIMEOUT):
        self.command_builder = command_builder or FFmpegCommandBuilder()
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def file_size(file_path: str) -> int:
        """Size in bytes, or 0 if the file is missing."""
        try:
            return os.path.getsize(file_path)
        except OSError:
            return 0

    def has_content(self, file_path: str) -> bool:
        """Check the file exists and is non-empty."""
        return os.path.isfile(file_path) and self.file_size(file_path) > 0

    def validate_file(self, file_path: str) -> Dict[str, Any]:
        """Probe the first video stream of a file with ffprobe.

        Args:
            file_path: Path to the file to check

        Returns:
            Dict with 'valid', 'output', 'has_errors' and optionally 'reason'
        """
        if not os.path.exists(file_path):
            return {'valid': False, 'output': '', 'has_errors': False, 'reason': 'File not found'}

        cmd = self.command_builder.build_validation_command(file_path)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            self.logger.warning(f"[VALIDATE] ffprobe timed out on {os.path.basename(file_path)}")
            return {'valid': False, 'output': '', 'has_errors': True, 'reason': 'Timed out'}
        except OSError as e:
            self.logger.error(f"[VALIDATE] Could not run ffprobe: {e}")
            return {'valid': False, 'output': '', 'has_errors': True, 'reason': str(e)}

        output = result.stdout.strip()
        has_errors = 'Invalid' in result.stderr or 'error' in result.stderr.lower()
        valid = result.returncode == 0 and not has_errors and len(output) > 0

        if not valid:
            self.logger.warning(
                f"[VALIDATE] {os.path.basename(file_path)} failed validation "
                f"(code={result.returncode}): {result.stderr.strip()[:200]}"
            )

        return {'valid': valid, 'output': output, 'has_errors': has_errors}

    def is_usable(self, file_path: str, probe: bool = True) -> bool:
        """Check a pass output is non-empty and, when `probe` is set, readable by ffprobe."""
        if not self.has_content(file_path):
            return False
        if not probe:
            return True
        return bool(self.validate_file(file_path)['valid'])
