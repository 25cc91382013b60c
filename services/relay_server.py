#!/usr/bin/env python3
"""
Relay server: turns ingestion events into recording sessions.

The server owns the session registry it is constructed with and is the only
component that creates sessions and registers them.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import (
    LEGACY_APP_PREFIXES,
    RELAY_MODE,
    RELAY_STOP_TIMEOUT,
    STOP_TIMEOUT,
    VALIDATE_RECOVERED_OUTPUT,
)

from .ffmpeg_command_builder import FFmpegCommandBuilder
from .process_supervisor import ProcessSupervisor
from .recording_config import RecordingConfig
from .recording_session import RecordingSession, RecordingState, TERMINAL_EVENTS
from .recording_validator import RecordingValidator
from .session_registry import SessionRegistry, canonicalize
from .stream_relay import StreamRelay


@dataclass
class PublishedStream:
    """A stream the ingestion layer reported as live."""
    config: RecordingConfig
    relay: Optional[StreamRelay] = None
    record_pending: bool = False


class RelayServer:
    """Creates, registers and tears down per-stream recording sessions."""

    def __init__(
        self,
        app_config=None,
        registry: Optional[SessionRegistry] = None,
        command_builder: Optional[FFmpegCommandBuilder] = None,
        validator: Optional[RecordingValidator] = None,
        supervisor_factory: Callable[[str], ProcessSupervisor] = ProcessSupervisor
    ):
        self.app_config = app_config
        if app_config is not None:
            self.relay_mode = app_config.relay_mode
            self.stop_timeout = app_config.stop_timeout
            self.relay_stop_timeout = app_config.relay_stop_timeout
            self.validate_recovered_output = app_config.validate_recovered_output
            legacy_prefixes = app_config.legacy_app_prefixes
            default_builder = FFmpegCommandBuilder(app_config.ffmpeg_command, app_config.ffprobe_command)
        else:
            self.relay_mode = RELAY_MODE
            self.stop_timeout = STOP_TIMEOUT
            self.relay_stop_timeout = RELAY_STOP_TIMEOUT
            self.validate_recovered_output = VALIDATE_RECOVERED_OUTPUT
            legacy_prefixes = LEGACY_APP_PREFIXES
            default_builder = FFmpegCommandBuilder()

        self.registry = registry if registry is not None else SessionRegistry(legacy_prefixes)
        self.command_builder = command_builder or default_builder
        self.validator = validator or RecordingValidator(self.command_builder)
        self.supervisor_factory = supervisor_factory
        self._published: Dict[str, PublishedStream] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def start_relay(
        self,
        app: str,
        stream: str,
        record: bool = False,
        relay_mode: Optional[str] = None,
        input_url: Optional[str] = None,
        **overrides: Any
    ) -> RecordingSession:
        """Handle a publish event for `app/stream`.

        Returns the live session if one already exists for the stream.
        Otherwise creates a session (and the primary relay on first publish),
        registers it and starts recording when `record` is set. While an
        earlier recording of the stream is still finalizing, that session is
        returned and a requested recording starts once it has finished.

        Args:
            app: Ingestion application name
            stream: Stream name
            record: Start recording immediately
            relay_mode: 'hls', 'dash' or 'none'; defaults to RELAY_MODE
            input_url: Explicit source locator
            **overrides: RecordingConfig overrides (web_optimized, title, ...)

        Returns:
            The stream's RecordingSession
        """
        key = canonicalize(f"{app}/{stream}")
        new_relay = None
        with self._lock:
            published = self._published.get(key)
            if published is None:
                published = self._publish(key, app, stream, relay_mode, input_url, overrides)
                new_relay = published.relay
            elif overrides:
                published.config = RecordingConfig.for_stream(
                    app, stream, self.app_config,
                    input_url=input_url or published.config.input_url, **overrides
                )

            existing = self.registry.lookup(key)
            if existing is not None and not existing.is_terminal:
                self.logger.info(f"Relay session already exists for {key}")
                session = existing
                if record and existing.state not in (RecordingState.IDLE, RecordingState.CAPTURING):
                    self.logger.info(f"Recording of {key} starts once the previous one has finalized")
                    published.record_pending = True
            else:
                self.logger.info(f"Starting relay session: {key}")
                session = self._create_session(key, published.config, published.relay)

        if new_relay is not None:
            new_relay.run()
        if record and session.state == RecordingState.IDLE:
            session.start()
        return session

    def _publish(
        self,
        key: str,
        app: str,
        stream: str,
        relay_mode: Optional[str],
        input_url: Optional[str],
        overrides: Dict[str, Any]
    ) -> PublishedStream:
        config = RecordingConfig.for_stream(app, stream, self.app_config, input_url=input_url, **overrides)
        relay = None
        mode = relay_mode or self.relay_mode
        if mode and mode != 'none':
            relay = StreamRelay(
                config,
                mode,
                command_builder=self.command_builder,
                supervisor_factory=self.supervisor_factory,
                stop_timeout=self.relay_stop_timeout,
                **self._relay_segment_options(mode)
            )
            relay.on_end(lambda ended, path=key: self._relay_ended(path, ended))
        published = PublishedStream(config=config, relay=relay)
        self._published[key] = published
        return published

    def _relay_segment_options(self, mode: str) -> Dict[str, int]:
        if self.app_config is None:
            return {}
        if mode == 'hls':
            return {'segment_time': self.app_config.hls_time, 'list_size': self.app_config.hls_list_size}
        return {'segment_time': self.app_config.dash_seg_duration, 'list_size': self.app_config.dash_window_size}

    def _create_session(self, key: str, config: RecordingConfig, relay: Optional[StreamRelay]) -> RecordingSession:
        session = RecordingSession(
            config,
            command_builder=self.command_builder,
            validator=self.validator,
            supervisor_factory=self.supervisor_factory,
            stop_timeout=self.stop_timeout,
            validate_recovered_output=self.validate_recovered_output,
            relay=relay,
        )
        session.add_listener(self._terminal_listener(key, session))
        self.registry.register(key, session)
        return session

    def _terminal_listener(self, key: str, session: RecordingSession) -> Callable[[str, Dict[str, Any]], None]:
        def listener(event: str, payload: Dict[str, Any]) -> None:
            if event in TERMINAL_EVENTS:
                self.logger.info(f"Recording session ended for {key}: {event}")
                self._replace_finished(key, session)
        return listener

    def _replace_finished(self, key: str, finished: RecordingSession) -> None:
        """Drop a finished session; a stream that is still published gets a fresh idle one."""
        with self._lock:
            self.registry.remove(key, finished)
            published = self._published.get(key)
            if published is None:
                return

            session = self.registry.lookup(key)
            if session is None or session.is_terminal:
                session = self._create_session(key, published.config, published.relay)
                self.logger.info(f"Stream {key} is still published, new session ready")
            record = published.record_pending and session.state == RecordingState.IDLE
            published.record_pending = False

        if record:
            session.start()

    def _relay_ended(self, key: str, relay: StreamRelay) -> None:
        with self._lock:
            published = self._published.get(key)
            if published is None or published.relay is not relay:
                return
        self.stream_ended(key)

    def stream_ended(self, stream_path: str) -> bool:
        """Handle the ingestion layer's end-of-source signal for a stream.

        Returns:
            True if a live session was notified
        """
        session = self.registry.lookup(stream_path)
        key = session.stream_path if session is not None else canonicalize(stream_path)
        with self._lock:
            self._published.pop(key, None)

        if session is None:
            return False

        self.logger.info(f"Source ended for {key}")
        if session.state == RecordingState.IDLE:
            self.registry.remove(key, session)
        else:
            session.source_ended()
        return True

    def stop_relay(self, stream_path: str) -> bool:
        """Tear down a stream's session and relay.

        A running recording keeps finalizing in the background and stays
        registered until it reaches a terminal state.
        """
        session = self.registry.lookup(stream_path)
        key = session.stream_path if session is not None else canonicalize(stream_path)
        with self._lock:
            published = self._published.pop(key, None)

        if session is None:
            if published is not None and published.relay is not None:
                published.relay.stop()
                return True
            self.logger.info(f"Relay session not found: {key}")
            return False

        self._end_session(key, session)
        if published is not None and published.relay is not None and published.relay is not session.relay:
            published.relay.stop()
        self.logger.info(f"Stopped relay session: {key}")
        return True

    def _end_session(self, key: str, session: RecordingSession) -> None:
        session.end()
        # In-flight sessions are removed by their terminal listener
        if session.state == RecordingState.IDLE or session.is_terminal:
            self.registry.remove(key, session)

    def stop_all_sessions(self) -> List[str]:
        """Tear down every registered session. Returns the stream paths stopped."""
        with self._lock:
            relays = [p.relay for p in self._published.values() if p.relay is not None]
            self._published.clear()

        stopped = []
        for key, session in self.registry.sessions():
            try:
                self._end_session(key, session)
                stopped.append(key)
            except Exception as e:
                self.logger.error(f"Error stopping session {key}: {e}", exc_info=True)

        for relay in relays:
            relay.stop()

        self.logger.info(f"Stopped {len(stopped)} relay sessions")
        return stopped

    def shutdown(self, timeout: float = 30) -> bool:
        """Stop everything and wait for in-flight recordings to finalize.

        Returns:
            True if every session reached a terminal state within `timeout`
        """
        in_flight = [s for _, s in self.registry.sessions() if s.state != RecordingState.IDLE]
        self.stop_all_sessions()
        deadline = time.monotonic() + timeout
        finished = True
        for session in in_flight:
            remaining = max(0.0, deadline - time.monotonic())
            if not session.wait(remaining):
                self.logger.warning(f"Session {session.stream_path} did not finish within {timeout}s")
                finished = False
        return finished

    def get_active_sessions(self) -> List[Dict[str, Any]]:
        return [
            {
                'stream_path': key,
                'is_recording': session.is_recording(),
                'output_path': session.final_path,
                'status': session.status(),
            }
            for key, session in self.registry.sessions()
        ]
