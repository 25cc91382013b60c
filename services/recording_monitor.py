#!/usr/bin/env python3
"""
Recording monitor for tracking encoder progress from its diagnostic output.
"""

import logging
import re
from typing import Callable, Iterable, Optional, Tuple

# ffmpeg progress lines look like "frame=  100 ... time=00:01:02.50 bitrate=..."
TIME_PATTERN = re.compile(r'time=(\d{2,}):(\d{2}):(\d{2}(?:\.\d+)?)')
TIME_MARKER = 'time='
ERROR_MARKERS = ('Error', 'Cannot')
MARKER_CHARS = frozenset('0123456789:.')
MAX_PENDING = 32


def parse_duration(text: str) -> Optional[float]:
    """Return the last elapsed duration (seconds) found in `text`, if any."""
    matches = TIME_PATTERN.findall(text)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def split_pending(text: str) -> Tuple[str, str]:
    """Split `text` into a complete part and a trailing marker that may continue in the next chunk."""
    start = text.rfind(TIME_MARKER)
    if start != -1:
        rest = text[start + len(TIME_MARKER):]
        if len(rest) < MAX_PENDING and all(c in MARKER_CHARS for c in rest):
            return text[:start], text[start:]

    for size in range(len(TIME_MARKER) - 1, 0, -1):
        if text.endswith(TIME_MARKER[:size]):
            return text[:-size], text[-size:]
    return text, ''


class RecordingMonitor:
    """Scans encoder output for elapsed-duration markers and error lines.

    Output arrives in arbitrary chunks, so a progress marker cut at a chunk
    boundary is held back and completed by the following chunk.
    """

    def __init__(self, label: str = 'encoder'):
        self.label = label
        self.last_known_duration = 0.0
        self.logger = logging.getLogger(__name__)
        self._pending = ''

    def feed(self, chunk: str) -> Optional[float]:
        """Process one output chunk.

        Args:
            chunk: Raw text from the encoder's stderr

        Returns:
            The new duration if a progress marker was completed, else None
        """
        if any(marker in chunk for marker in ERROR_MARKERS):
            self.logger.error(f"[{self.label}] FFmpeg error: {chunk.strip()}")

        complete, self._pending = split_pending(self._pending + chunk)
        return self._update(complete)

    def flush(self) -> Optional[float]:
        """Parse whatever is held back; called once the output has ended."""
        pending, self._pending = self._pending, ''
        return self._update(pending)

    def _update(self, text: str) -> Optional[float]:
        duration = parse_duration(text)
        if duration is not None:
            self.last_known_duration = duration
        return duration

    def monitor_output(
        self,
        chunks: Iterable[str],
        on_progress: Optional[Callable[[float], None]] = None
    ) -> float:
        """Consume an output sequence until it ends.

        Args:
            chunks: Lazy sequence of output chunks (ends at process exit)
            on_progress: Called with each new duration

        Returns:
            The last known duration in seconds
        """
        for chunk in chunks:
            duration = self.feed(chunk)
            if duration is not None and on_progress is not None:
                on_progress(duration)

        duration = self.flush()
        if duration is not None and on_progress is not None:
            on_progress(duration)
        return self.last_known_duration
