#!/usr/bin/env python3
"""
Recording controller: operator-facing start/stop/status operations.

The controller is stateless. It only talks to the session registry and to the
public methods of the sessions it finds there.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from exceptions import (
    AlreadyRecordingError,
    InvalidStateError,
    NotRecordingError,
    RecordingStartError,
    RelayRecorderError,
    UnsupportedOperationError,
)

from .session_registry import SessionRegistry


def _supports(session: Any, *methods: str) -> bool:
    return all(callable(getattr(session, name, None)) for name in methods)


def _is_recording(session: Any) -> bool:
    return bool(session.is_recording()) if _supports(session, 'is_recording') else False


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordingController:
    """Start, stop and inspect recordings by stream path."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self.logger = logging.getLogger(__name__)

    def start_for_stream(self, stream_path: str) -> Dict[str, Any]:
        """Start recording the stream's live session.

        Raises:
            SessionNotFoundError: No live session matches the path
            UnsupportedOperationError: The session has no recording control
            AlreadyRecordingError: A recording is already running
            RecordingStartError: The encoder could not be launched
            InvalidStateError: The session has already been used
        """
        return self._start_session(stream_path, self.registry.get(stream_path))

    def _start_session(self, stream_path: str, session: Any) -> Dict[str, Any]:
        if not _supports(session, 'start', 'is_recording'):
            raise UnsupportedOperationError(stream_path, 'start')

        if session.is_recording():
            raise AlreadyRecordingError(stream_path, self._state_of(session))

        if not session.start():
            state = self._state_of(session)
            if state == 'failed':
                raise RecordingStartError(stream_path, getattr(session, 'error', None))
            raise InvalidStateError(
                stream_path, state,
                f"Recording session for stream {stream_path} cannot be started again"
            )

        status = session.status() if _supports(session, 'status') else {}
        self.logger.info(f"Recording started successfully for stream: {stream_path}")
        return {
            'success': True,
            'stream_path': stream_path,
            'output_path': status.get('final_path'),
            'start_time': status.get('start_time'),
            'message': f"Recording started for stream: {stream_path}",
        }

    def stop_for_stream(self, stream_path: str, reason: str = 'manual') -> Dict[str, Any]:
        """Stop the stream's running recording.

        Raises:
            SessionNotFoundError: No live session matches the path
            UnsupportedOperationError: The session has no recording control
            NotRecordingError: Nothing is being recorded
            InvalidStateError: A stop is already in progress or the encoder already exited
        """
        return self._stop_session(stream_path, self.registry.get(stream_path), reason)

    def _stop_session(self, stream_path: str, session: Any, reason: str) -> Dict[str, Any]:
        if not _supports(session, 'stop', 'is_recording'):
            raise UnsupportedOperationError(stream_path, 'stop')

        if not session.is_recording():
            raise NotRecordingError(stream_path, self._state_of(session))

        output_path = session.status().get('final_path') if _supports(session, 'status') else None
        if not session.stop(reason):
            state = self._state_of(session)
            if state == 'stopping_graceful':
                message = f"Recording stop already in progress for stream: {stream_path}"
            else:
                message = f"Recording already ending for stream: {stream_path}"
            raise InvalidStateError(stream_path, state, message)

        self.logger.info(f"Recording stop requested for stream: {stream_path} ({reason})")
        return {
            'success': True,
            'stream_path': stream_path,
            'output_path': output_path,
            'end_time': _now(),
            'message': f"Recording stopped for stream: {stream_path}",
        }

    def status(self) -> Dict[str, Any]:
        """Status of every registered session."""
        all_sessions = []
        for stream_path, session in self.registry.sessions():
            status = session.status() if _supports(session, 'status') else None
            is_recording = _is_recording(session)
            all_sessions.append({
                'stream_path': stream_path,
                'is_recording': is_recording,
                'output_path': status.get('final_path') if (status and is_recording) else None,
                'status': status,
                'has_recording_control': _supports(session, 'start', 'stop'),
            })

        active = [s for s in all_sessions if s['is_recording']]
        return {
            'active_recordings': active,
            'all_sessions': all_sessions,
            'total_active_sessions': len(all_sessions),
            'total_active_recordings': len(active),
            'timestamp': _now(),
        }

    def list_active(self) -> List[Dict[str, Any]]:
        return [
            {
                'stream_path': stream_path,
                'has_recording_control': _supports(session, 'start', 'stop'),
                'is_recording': _is_recording(session),
            }
            for stream_path, session in self.registry.sessions()
        ]

    def start_all(self) -> Dict[str, Any]:
        """Start recording on every registered session that is not recording."""
        started: List[Dict[str, Any]] = []
        skipped: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for stream_path, session in self.registry.sessions():
            if not _supports(session, 'start', 'is_recording'):
                skipped.append({'stream_path': stream_path, 'reason': 'Session does not support recording control'})
                continue
            try:
                if session.is_recording():
                    skipped.append({'stream_path': stream_path, 'reason': 'Already recording'})
                    continue
                result = self._start_session(stream_path, session)
                started.append({
                    'stream_path': stream_path,
                    'output_path': result['output_path'],
                    'start_time': result['start_time'],
                })
            except RelayRecorderError as e:
                errors.append({'stream_path': stream_path, 'error': e.message})
            except Exception as e:
                self.logger.error(f"Unexpected error starting {stream_path}: {e}", exc_info=True)
                errors.append({'stream_path': stream_path, 'error': str(e)})

        message = (
            f"Started recording for {len(started)} streams, "
            f"{len(errors)} errors, {len(skipped)} skipped"
        )
        self.logger.info(f"Bulk start: {message}")
        return {
            'success': True,
            'started': started,
            'skipped': skipped,
            'errors': errors,
            'message': message,
        }

    def stop_all(self, reason: str = 'manual') -> Dict[str, Any]:
        """Stop every running recording."""
        stopped: List[Dict[str, Any]] = []
        skipped: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for stream_path, session in self.registry.sessions():
            if not _supports(session, 'stop', 'is_recording'):
                skipped.append({'stream_path': stream_path, 'reason': 'Session does not support recording control'})
                continue
            try:
                if not session.is_recording():
                    skipped.append({'stream_path': stream_path, 'reason': 'Not recording'})
                    continue
                result = self._stop_session(stream_path, session, reason)
                stopped.append({
                    'stream_path': stream_path,
                    'output_path': result['output_path'],
                    'end_time': result['end_time'],
                })
            except RelayRecorderError as e:
                errors.append({'stream_path': stream_path, 'error': e.message})
            except Exception as e:
                self.logger.error(f"Unexpected error stopping {stream_path}: {e}", exc_info=True)
                errors.append({'stream_path': stream_path, 'error': str(e)})

        message = (
            f"Stopped recording for {len(stopped)} streams, "
            f"{len(errors)} errors, {len(skipped)} skipped"
        )
        self.logger.info(f"Bulk stop: {message}")
        return {
            'success': True,
            'stopped': stopped,
            'skipped': skipped,
            'errors': errors,
            'message': message,
        }

    @staticmethod
    def _state_of(session: Any) -> str:
        state = getattr(session, 'state', None)
        return getattr(state, 'value', state)
