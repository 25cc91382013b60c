#!/usr/bin/env python3
"""
Primary stream relay: republishes a live input as HLS or DASH next to its recordings.

When the relay process exits the live source is considered gone, and the
registered end callbacks run (the relay server forwards this to the
recording session as the end-of-source signal).
"""

import os
import threading
from typing import Callable, List, Optional

from config import (
    DASH_SEG_DURATION,
    DASH_WINDOW_SIZE,
    HLS_LIST_SIZE,
    HLS_TIME,
    RELAY_STOP_TIMEOUT,
)
from exceptions import SpawnError
from logging_config import get_stream_logger
from resource_managers import schedule_forced_termination

from .ffmpeg_command_builder import FFmpegCommandBuilder
from .process_supervisor import ProcessSupervisor
from .recording_config import RecordingConfig
from .recording_monitor import RecordingMonitor

OUTPUT_FILES = {
    'hls': 'index.m3u8',
    'dash': 'index.mpd',
}


class StreamRelay:
    """Runs the HLS/DASH copy relay for one published stream."""

    def __init__(
        self,
        config: RecordingConfig,
        mode: str = 'hls',
        command_builder: Optional[FFmpegCommandBuilder] = None,
        supervisor_factory: Callable[[str], ProcessSupervisor] = ProcessSupervisor,
        stop_timeout: float = RELAY_STOP_TIMEOUT,
        segment_time: Optional[int] = None,
        list_size: Optional[int] = None
    ):
        if mode not in OUTPUT_FILES:
            raise ValueError(f"Unsupported relay mode: {mode}")

        self.config = config
        self.mode = mode
        self.command_builder = command_builder or FFmpegCommandBuilder()
        self.supervisor_factory = supervisor_factory
        self.stop_timeout = stop_timeout
        if mode == 'hls':
            self.segment_time = segment_time or HLS_TIME
            self.list_size = list_size or HLS_LIST_SIZE
        else:
            self.segment_time = segment_time or DASH_SEG_DURATION
            self.list_size = list_size or DASH_WINDOW_SIZE

        self.output_path = os.path.join(
            config.output_dir, config.app, config.stream, OUTPUT_FILES[mode]
        )
        self.exit_code: Optional[int] = None
        self.output_tail = ''
        self._supervisor: Optional[ProcessSupervisor] = None
        self._thread: Optional[threading.Thread] = None
        self._kill_timer: Optional[threading.Timer] = None
        self._on_end: List[Callable[['StreamRelay'], None]] = []
        self._lock = threading.Lock()
        self.logger = get_stream_logger(__name__, config.stream_path)

    def on_end(self, callback: Callable[['StreamRelay'], None]) -> None:
        """Register a callback run once the relay process has exited."""
        self._on_end.append(callback)

    def is_running(self) -> bool:
        with self._lock:
            return self._supervisor is not None and self._supervisor.is_running

    def run(self) -> bool:
        """Spawn the relay process. Returns False if it is running or could not start."""
        with self._lock:
            if self._supervisor is not None:
                self.logger.info("Relay already running")
                return False

            os.makedirs(os.path.dirname(self.output_path), exist_ok=True)
            args = self.command_builder.build_relay_command(
                self.config.input_url,
                self.output_path,
                self.mode,
                analyze_duration=self.config.analyze_duration,
                probe_size=self.config.probe_size,
                segment_time=self.segment_time,
                list_size=self.list_size,
            )
            supervisor = self.supervisor_factory(f"relay {self.config.stream_path}")
            try:
                supervisor.start(self.command_builder.ffmpeg_command, args)
            except SpawnError as e:
                self.logger.error(f"Relay error: {e.message}")
                return False

            self._supervisor = supervisor
            self._thread = threading.Thread(
                target=self._watch,
                args=(supervisor,),
                name=f"relay{self.config.stream_path.replace('/', '-')}",
                daemon=True
            )
            self._thread.start()

        self.logger.info(f"Relay started: {self.output_path}")
        return True

    def _watch(self, supervisor: ProcessSupervisor) -> None:
        monitor = RecordingMonitor(label=supervisor.name)
        for chunk in supervisor.observe_output():
            monitor.feed(chunk)
            # Keep only the tail for diagnostics
            self.output_tail = (self.output_tail + chunk)[-4096:]

        self.exit_code = supervisor.wait()
        with self._lock:
            if self._kill_timer is not None:
                self._kill_timer.cancel()
                self._kill_timer = None

        self.logger.info(f"Relay closed: code={self.exit_code}")
        for callback in list(self._on_end):
            try:
                callback(self)
            except Exception as e:
                self.logger.error(f"Relay end callback failed: {e}", exc_info=True)

    def stop(self) -> bool:
        """Send SIGTERM and schedule SIGKILL after the stop timeout, without blocking."""
        with self._lock:
            supervisor = self._supervisor
            if supervisor is None or not supervisor.is_running:
                return False
            supervisor.request_graceful_stop()
            if self._kill_timer is None:
                self._kill_timer = schedule_forced_termination(supervisor, self.stop_timeout)
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until the relay's watcher thread has finished."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()
