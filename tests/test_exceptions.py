"""Tests for custom exception types."""

import pytest
from exceptions import (
    RelayRecorderError,
    ConfigurationError,
    ProcessError,
    SpawnError,
    RecordingError,
    EmptyOutputError,
    OptimizationFailure,
    RecoveryExhausted,
    RecordingStorageError,
    RegistryError,
    DuplicateSessionError,
    ControlError,
    SessionNotFoundError,
    RecordingStartError,
    InvalidStateError,
    AlreadyRecordingError,
    NotRecordingError,
    UnsupportedOperationError,
)


class TestBaseException:
    """Test the base RelayRecorderError exception."""

    def test_basic_exception(self):
        exc = RelayRecorderError("Test error")
        assert exc.message == "Test error"
        assert exc.details is None
        assert str(exc) == "Test error"

    def test_exception_with_details(self):
        exc = RelayRecorderError("Test error", "Additional details")
        assert exc.details == "Additional details"
        assert str(exc) == "Test error\nDetails: Additional details"

    def test_exception_inheritance(self):
        """Test that all custom exceptions inherit from base."""
        for cls in (ConfigurationError, ProcessError, RecordingError, RegistryError, ControlError):
            assert issubclass(cls, RelayRecorderError)


class TestProcessErrors:

    def test_spawn_error(self):
        exc = SpawnError("ffmpeg", "[Errno 2] No such file or directory")
        assert exc.executable == "ffmpeg"
        assert exc.message == "Failed to launch process: ffmpeg"
        assert "No such file" in exc.details
        assert isinstance(exc, ProcessError)


class TestRecordingErrors:
    """Test recording-related exception types."""

    def test_empty_output_error(self):
        exc = EmptyOutputError("/media/live/cam1/.recording_x.mp4", "file is empty")
        assert exc.file_path == "/media/live/cam1/.recording_x.mp4"
        assert exc.details == "file is empty"
        assert isinstance(exc, RecordingError)

    def test_optimization_failure(self):
        exc = OptimizationFailure("/tmp/a.mp4", "exit code 1")
        assert exc.message == "Web optimization failed for: /tmp/a.mp4"
        assert isinstance(exc, RecordingError)

    def test_recovery_exhausted(self):
        exc = RecoveryExhausted("/tmp/a.mp4", attempts=3)
        assert exc.attempts == 3
        assert exc.details == "3 strategies attempted"

    def test_recording_storage_error(self):
        exc = RecordingStorageError("/tmp/a.mp4", "rename", "Permission denied")
        assert exc.operation == "rename"
        assert exc.message == "Failed to rename recording file: /tmp/a.mp4"
        assert exc.details == "Permission denied"


class TestControlErrors:
    """Errors surfaced through the recording control API."""

    def test_duplicate_session(self):
        exc = DuplicateSessionError("/live/cam1")
        assert exc.stream_path == "/live/cam1"
        assert isinstance(exc, RegistryError)

    def test_session_not_found_lists_available(self):
        exc = SessionNotFoundError("live/cam9", ["/live/cam1", "/live/cam2"])
        assert exc.stream_path == "live/cam9"
        assert exc.available == ["/live/cam1", "/live/cam2"]
        assert exc.details == "Available streams: /live/cam1, /live/cam2"

    def test_session_not_found_without_available(self):
        exc = SessionNotFoundError("live/cam9")
        assert exc.available == []
        assert exc.details is None

    def test_recording_start_error(self):
        exc = RecordingStartError("/live/cam1", "Failed to launch process: ffmpeg")
        assert exc.stream_path == "/live/cam1"
        assert isinstance(exc, ControlError)

    def test_invalid_state_error(self):
        exc = InvalidStateError("/live/cam1", "finalizing")
        assert exc.state == "finalizing"
        assert exc.message == "Operation not allowed for stream: /live/cam1"
        assert exc.details == "Session state: finalizing"

    def test_state_conflicts_are_invalid_state(self):
        assert AlreadyRecordingError("/live/cam1", "capturing").state == "capturing"
        assert "No active recording" in NotRecordingError("/live/cam1").message
        for cls in (AlreadyRecordingError, NotRecordingError, UnsupportedOperationError):
            assert issubclass(cls, InvalidStateError)

    def test_unsupported_operation(self):
        exc = UnsupportedOperationError("/live/view", "start")
        assert exc.operation == "start"
        assert exc.message == "Session does not support 'start' for stream: /live/view"
        assert exc.state is None


class TestExceptionRaising:
    """Test raising and catching exceptions."""

    def test_catch_specific_exception(self):
        with pytest.raises(NotRecordingError):
            raise NotRecordingError("/live/cam1")

    def test_catch_as_base_class(self):
        with pytest.raises(RelayRecorderError) as exc_info:
            raise RecoveryExhausted("/tmp/a.mp4", 3)
        assert isinstance(exc_info.value, RecordingError)
