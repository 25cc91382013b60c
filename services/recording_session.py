#!/usr/bin/env python3
"""
Recording session: the state machine for one stream's recording.

A session captures the live input into a hidden temp file, then runs the
finalize pipeline once the encoder exits:

    Idle -> Capturing -> (StoppingGraceful) -> Finalizing
         -> Optimizing | Recovering -> Finalized | Corrupted | Failed

Sessions are single use. Phases never re-enter, and every capture ends in
exactly one terminal state.
"""

import os
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from config import STOP_TIMEOUT, VALIDATE_RECOVERED_OUTPUT
from exceptions import (
    EmptyOutputError,
    OptimizationFailure,
    RecordingError,
    RecordingStorageError,
    RecoveryExhausted,
    SpawnError,
)
from logging_config import get_stream_logger
from resource_managers import cleanup_files, schedule_forced_termination, supervised_process

from .ffmpeg_command_builder import FFmpegCommandBuilder, RECOVERY_STRATEGIES
from .process_supervisor import ProcessSupervisor
from .recording_config import RecordingConfig
from .recording_monitor import RecordingMonitor
from .recording_path_manager import RecordingPathManager, RecordingPaths
from .recording_validator import RecordingValidator


class RecordingState(str, Enum):
    IDLE = 'idle'
    CAPTURING = 'capturing'
    STOPPING_GRACEFUL = 'stopping_graceful'
    FINALIZING = 'finalizing'
    OPTIMIZING = 'optimizing'
    RECOVERING = 'recovering'
    FINALIZED = 'finalized'
    CORRUPTED = 'corrupted'
    FAILED = 'failed'


TERMINAL_STATES = frozenset({RecordingState.FINALIZED, RecordingState.CORRUPTED, RecordingState.FAILED})
RECORDING_STATES = frozenset({RecordingState.CAPTURING, RecordingState.STOPPING_GRACEFUL})

# Lifecycle events delivered to listeners as (event, payload)
EVENT_STARTED = 'recording_started'
EVENT_PROGRESS = 'recording_progress'
EVENT_FINALIZED = 'recording_finalized'
EVENT_RECOVERED = 'recording_recovered'
EVENT_CORRUPTED = 'recording_corrupted'
EVENT_FAILED = 'recording_failed'

TERMINAL_EVENTS = frozenset({EVENT_FINALIZED, EVENT_CORRUPTED, EVENT_FAILED})

SessionListener = Callable[[str, Dict[str, Any]], None]


class RecordingSession:
    """Records one live stream to a web-playable MP4 file."""

    def __init__(
        self,
        config: RecordingConfig,
        command_builder: Optional[FFmpegCommandBuilder] = None,
        validator: Optional[RecordingValidator] = None,
        path_manager: Optional[RecordingPathManager] = None,
        supervisor_factory: Callable[[str], ProcessSupervisor] = ProcessSupervisor,
        stop_timeout: float = STOP_TIMEOUT,
        validate_recovered_output: bool = VALIDATE_RECOVERED_OUTPUT,
        relay=None
    ):
        self.config = config
        self.stream_path = config.stream_path
        self.command_builder = command_builder or FFmpegCommandBuilder()
        self.validator = validator or RecordingValidator(self.command_builder)
        self.path_manager = path_manager or RecordingPathManager(config.output_dir, config.file_name_format)
        self.supervisor_factory = supervisor_factory
        self.stop_timeout = stop_timeout
        self.validate_recovered_output = validate_recovered_output
        self.relay = relay
        self.logger = get_stream_logger(__name__, self.stream_path)

        self.state = RecordingState.IDLE
        self.paths: Optional[RecordingPaths] = None
        self.output_path: Optional[str] = None
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.last_known_duration = 0.0
        self.graceful_stop = False
        self.stop_reason: Optional[str] = None
        self.exit_code: Optional[int] = None
        self.optimized = False
        self.recovery_strategy: Optional[int] = None
        self.recovery_attempts: List[str] = []
        self.error: Optional[str] = None

        self._supervisor: Optional[ProcessSupervisor] = None
        self._stop_timer: Optional[threading.Timer] = None
        self._thread: Optional[threading.Thread] = None
        self._listeners: List[SessionListener] = []
        self._lock = threading.RLock()
        self._done = threading.Event()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_listener(self, listener: SessionListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver an event to every listener; listener failures are only logged."""
        payload = {'stream_path': self.stream_path, **payload}
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, payload)
            except Exception as e:
                self.logger.error(f"Listener failed on '{event}': {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def temp_path(self) -> Optional[str]:
        return self.paths.temp_path if self.paths else None

    @property
    def final_path(self) -> Optional[str]:
        return self.paths.final_path if self.paths else None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_recording(self) -> bool:
        """True while the capture encoder is running."""
        return self.state in RECORDING_STATES

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session reaches a terminal state. Returns False on timeout."""
        return self._done.wait(timeout)

    def status(self) -> Dict[str, Any]:
        """Point-in-time snapshot of the session, available before start too."""
        with self._lock:
            return {
                'stream_path': self.stream_path,
                'state': self.state.value,
                'recording': self.is_recording(),
                'temp_path': self.temp_path,
                'final_path': self.final_path,
                'output_path': self.output_path,
                'duration': self.last_known_duration,
                'start_time': self.start_time.isoformat() if self.start_time else None,
                'end_time': self.end_time.isoformat() if self.end_time else None,
                'graceful_stop': self.graceful_stop,
                'stop_reason': self.stop_reason,
                'web_optimized': self.config.web_optimized,
                'optimized': self.optimized,
                'recovery_strategy': self.recovery_strategy,
                'error': self.error,
            }

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Spawn the capture encoder.

        Returns:
            True if the encoder was spawned; False if the session is not idle
            or the encoder could not be launched (the session is then Failed)
        """
        with self._lock:
            if self.state != RecordingState.IDLE:
                self.logger.info(f"Recording already active or used ({self.state.value})")
                return False

            self.start_time = datetime.now(self.config.timezone)
            self.paths = self.path_manager.determine_output_paths(
                self.config.app,
                self.config.stream,
                self.start_time,
                attempt_count=len(RECOVERY_STRATEGIES)
            )

            failure: Optional[Exception] = None
            try:
                self.path_manager.ensure_output_directory(self.paths.temp_path)
                args = self.command_builder.build_capture_command(self.config, self.paths.temp_path)
                supervisor = self.supervisor_factory(f"capture {self.stream_path}")
                supervisor.start(self.command_builder.ffmpeg_command, args)
            except SpawnError as e:
                failure = e
            except OSError as e:
                failure = RecordingStorageError(self.paths.directory, 'create directory for', str(e))

            if failure is not None:
                # No retry here: the live capture is never re-spawned
                self._fail(failure)
                return False

            self._supervisor = supervisor
            self.state = RecordingState.CAPTURING
            self._thread = threading.Thread(
                target=self._run,
                name=f"recording{self.stream_path.replace('/', '-')}",
                daemon=True
            )

        self.logger.info(f"Recording started: {self.paths.temp_path}")
        self._emit(EVENT_STARTED, {
            'output_path': self.paths.final_path,
            'temp_path': self.paths.temp_path,
            'input_url': self.config.input_url,
            'start_time': self.start_time.isoformat(),
        })
        self._thread.start()
        return True

    def stop(self, reason: str = 'manual') -> bool:
        """Ask the capture encoder to finish, with a forced kill after the stop timeout.

        Returns:
            True if a stop was initiated, False if the session was not capturing
            or the encoder had already exited on its own
        """
        with self._lock:
            if self.state != RecordingState.CAPTURING or self._supervisor is None:
                return False

            supervisor = self._supervisor
            if not supervisor.request_graceful_stop():
                # Exit status decides between commit and recovery in _finalize
                self.logger.info(f"Encoder already exited, ignoring stop ({reason})")
                return False

            self.graceful_stop = True
            self.stop_reason = reason
            self.state = RecordingState.STOPPING_GRACEFUL
            self.logger.info(f"Stopping recording gracefully ({reason})...")
            self._stop_timer = schedule_forced_termination(supervisor, self.stop_timeout)
        return True

    def source_ended(self) -> bool:
        """Handle the ingestion layer's end-of-source signal."""
        return self.stop('stream_ended')

    def end(self) -> None:
        """Tear down everything this session drives, without blocking."""
        self.stop('session_end')
        if self.relay is not None:
            self.relay.stop()

    # ------------------------------------------------------------------
    # Supervising thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            supervisor = self._supervisor
            self._observe(supervisor)
            exit_code = supervisor.wait()
            self._finalize(exit_code)
        except Exception as e:
            self.logger.error(f"Unexpected error while recording: {e}", exc_info=True)
            if not self.is_terminal:
                self._fail(RecordingError("Unexpected recording error", str(e)), keep=self._existing([self.temp_path]))

    def _observe(self, supervisor: ProcessSupervisor) -> None:
        monitor = RecordingMonitor(label=supervisor.name)
        monitor.monitor_output(supervisor.observe_output(), on_progress=self._on_progress)

    def _on_progress(self, duration: float) -> None:
        with self._lock:
            self.last_known_duration = duration
        self._emit(EVENT_PROGRESS, {'duration': duration})

    def _finalize(self, exit_code: Optional[int]) -> None:
        with self._lock:
            if self._stop_timer is not None:
                self._stop_timer.cancel()
                self._stop_timer = None
            self._supervisor = None
            self.exit_code = exit_code
            self.state = RecordingState.FINALIZING
            graceful = self.graceful_stop

        temp_path = self.paths.temp_path
        if not os.path.exists(temp_path):
            self._fail(EmptyOutputError(temp_path, 'Temp file missing'))
            return

        size = self.validator.file_size(temp_path)
        if size == 0:
            self._fail(EmptyOutputError(temp_path, 'Empty file'))
            return

        self.logger.info(
            f"Finalizing recording: {size} bytes, "
            f"exit code: {exit_code}, graceful: {graceful}"
        )

        if graceful or exit_code == 0:
            if self.config.web_optimized:
                self._optimize()
            else:
                self._commit_direct()
        else:
            self._recover()

    def _run_pass(self, name: str, args: List[str]) -> Optional[int]:
        """Run one subordinate ffmpeg pass to completion; None if it could not start."""
        try:
            with supervised_process(
                self.command_builder.ffmpeg_command,
                args,
                name=f"{name} {self.stream_path}",
                timeout=self.stop_timeout,
                factory=self.supervisor_factory
            ) as supervisor:
                self._observe(supervisor)
                return supervisor.wait()
        except SpawnError as e:
            self.logger.error(f"[{name.upper()}] {e.message}")
            return None

    def _optimize(self) -> None:
        with self._lock:
            self.state = RecordingState.OPTIMIZING

        self.logger.info("[OPTIMIZE] Optimizing recording for web playback")
        temp_path = self.paths.temp_path
        optimized_path = self.paths.optimized_path
        args = self.command_builder.build_optimize_command(
            temp_path, optimized_path, self.config.frag_duration_us
        )

        try:
            code = self._run_pass('optimize', args)
            if code != 0 or not self.validator.has_content(optimized_path):
                raise OptimizationFailure(temp_path, f"ffmpeg exit code: {code}")
            os.replace(optimized_path, self.paths.final_path)
        except (OptimizationFailure, OSError) as e:
            self.logger.warning(f"[OPTIMIZE] Optimization failed, using original capture: {e}")
            self._commit_direct()
            return

        cleanup_files([temp_path])
        self.logger.info(f"[OPTIMIZE] Recording optimized successfully: {self.paths.final_path}")
        self._finalized(optimized=True)

    def _commit_direct(self) -> None:
        try:
            os.replace(self.paths.temp_path, self.paths.final_path)
        except OSError as e:
            self._fail(
                RecordingStorageError(self.paths.final_path, 'move', str(e)),
                keep=self._existing([self.paths.temp_path])
            )
            return
        self._finalized(optimized=False)

    def _recover(self) -> None:
        with self._lock:
            self.state = RecordingState.RECOVERING

        temp_path = self.paths.temp_path
        original_size = self.validator.file_size(temp_path)
        total = len(RECOVERY_STRATEGIES)
        self.logger.info(f"[RECOVERY] Attempting recovery ({original_size} bytes)")

        for index, strategy in enumerate(RECOVERY_STRATEGIES):
            attempt_path = self.paths.attempt_path(index)
            self.logger.info(f"[RECOVERY] Attempt {index + 1}/{total}: {strategy.description}")
            self.recovery_attempts.append(strategy.name)

            args = self.command_builder.build_recovery_command(strategy, temp_path, attempt_path)
            code = self._run_pass(f"recovery-{index + 1}", args)
            if code != 0 or not self.validator.is_usable(attempt_path, probe=self.validate_recovered_output):
                self.logger.warning(f"[RECOVERY] Strategy {index + 1} ({strategy.name}) failed (exit code: {code})")
                continue

            try:
                os.replace(attempt_path, self.paths.final_path)
            except OSError as e:
                self.logger.error(f"[RECOVERY] Error moving recovered file: {e}")
                continue

            recovered_size = self.validator.file_size(self.paths.final_path)
            self.recovery_strategy = index + 1
            self.logger.info(f"[RECOVERY] Recovery successful (strategy {index + 1}): {self.paths.final_path}")
            self._emit(EVENT_RECOVERED, {
                'path': self.paths.final_path,
                'strategy_index': index + 1,
                'strategy': strategy.name,
                'original_size': original_size,
                'recovered_size': recovered_size,
            })
            self._finalized(optimized=False)
            return

        self._quarantine(RecoveryExhausted(temp_path, attempts=total))

    def _quarantine(self, error: RecoveryExhausted) -> None:
        temp_path = self.paths.temp_path
        corrupted_path = self.paths.corrupted_path
        keep: List[str] = []
        try:
            os.replace(temp_path, corrupted_path)
            quarantined = corrupted_path
        except OSError as e:
            self.logger.error(f"Error saving corrupted file {corrupted_path}: {e}")
            quarantined = temp_path
            keep.append(temp_path)

        self.error = error.message
        self.logger.error(f"All recovery attempts failed, saved as: {quarantined}")
        self._enter_terminal(RecordingState.CORRUPTED, EVENT_CORRUPTED, {
            'path': quarantined,
            'size': self.validator.file_size(quarantined),
            'error': error.message,
        }, keep=keep)

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _finalized(self, optimized: bool) -> None:
        final_path = self.paths.final_path
        with self._lock:
            self.output_path = final_path
            self.optimized = optimized
        self.logger.info(f"Recording finalized: {final_path}")
        self._enter_terminal(RecordingState.FINALIZED, EVENT_FINALIZED, {
            'path': final_path,
            'size': self.validator.file_size(final_path),
            'duration': self.last_known_duration,
            'optimized': optimized,
            'graceful': self.graceful_stop,
            'recovered': self.recovery_strategy is not None,
        })

    def _fail(self, error: Exception, keep: Iterable[str] = ()) -> None:
        message = getattr(error, 'message', str(error))
        with self._lock:
            self.error = message
        self.logger.error(f"Recording failed: {error}")
        self._enter_terminal(RecordingState.FAILED, EVENT_FAILED, {
            'error': message,
            'error_type': type(error).__name__,
        }, keep=keep)

    def _enter_terminal(
        self,
        state: RecordingState,
        event: str,
        payload: Dict[str, Any],
        keep: Iterable[str] = ()
    ) -> None:
        if self.paths is not None:
            keep = set(keep)
            cleanup_files(p for p in self.paths.side_artifacts() if p not in keep)

        with self._lock:
            if self._stop_timer is not None:
                self._stop_timer.cancel()
                self._stop_timer = None
            self.state = state
            self.end_time = datetime.now(self.config.timezone)
            payload = {
                **payload,
                'start_time': self.start_time.isoformat() if self.start_time else None,
                'end_time': self.end_time.isoformat(),
            }

        self._emit(event, payload)
        self._done.set()

    @staticmethod
    def _existing(paths: Iterable[Optional[str]]) -> List[str]:
        return [p for p in paths if p and os.path.exists(p)]
