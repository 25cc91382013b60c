"""Custom exception types for the relay recorder.

This module defines a hierarchy of domain-specific exceptions that provide
clear error handling and improved debugging capabilities.

Exception Hierarchy:
    RelayRecorderError (base)
    ├── ConfigurationError
    ├── ProcessError
    │   └── SpawnError
    ├── RecordingError
    │   ├── EmptyOutputError
    │   ├── OptimizationFailure
    │   ├── RecoveryExhausted
    │   └── RecordingStorageError
    ├── RegistryError
    │   └── DuplicateSessionError
    └── ControlError
        ├── SessionNotFoundError
        ├── RecordingStartError
        └── InvalidStateError
            ├── AlreadyRecordingError
            ├── NotRecordingError
            └── UnsupportedOperationError
"""

from typing import Iterable, Optional


class RelayRecorderError(Exception):
    """Base exception for all relay recorder errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception with a message and optional details.

        Args:
            message: Human-readable error message
            details: Additional technical details about the error
        """
        self.message = message
        self.details = details
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the complete error message."""
        if self.details:
            return f"{self.message}\nDetails: {self.details}"
        return self.message


# Configuration Errors
class ConfigurationError(RelayRecorderError):
    """Raised when there's an issue with application configuration."""
    pass


# Process Errors
class ProcessError(RelayRecorderError):
    """Base class for external process errors."""
    pass


class SpawnError(ProcessError):
    """Raised when an external executable cannot be launched."""

    def __init__(self, executable: str, error: str = None):
        """Initialize with the executable and optional error details.

        Args:
            executable: The program that could not be started
            error: Error details from the operating system
        """
        self.executable = executable
        message = f"Failed to launch process: {executable}"
        super().__init__(message, error)


# Recording Errors
class RecordingError(RelayRecorderError):
    """Base class for recording-related errors."""
    pass


class EmptyOutputError(RecordingError):
    """Raised when a capture produced no usable output file."""

    def __init__(self, file_path: str, reason: str = None):
        """Initialize with the capture file path and optional reason.

        Args:
            file_path: Path of the in-progress capture file
            reason: Why the output is unusable (missing, empty)
        """
        self.file_path = file_path
        message = f"Capture produced no output: {file_path}"
        super().__init__(message, reason)


class OptimizationFailure(RecordingError):
    """Raised when the web optimization pass fails."""

    def __init__(self, file_path: str, error: str = None):
        self.file_path = file_path
        message = f"Web optimization failed for: {file_path}"
        super().__init__(message, error)


class RecoveryExhausted(RecordingError):
    """Raised when every recovery strategy failed for a capture."""

    def __init__(self, file_path: str, attempts: int = 0):
        """Initialize with the damaged file and the number of attempts made.

        Args:
            file_path: Path of the damaged capture
            attempts: Number of recovery strategies that were tried
        """
        self.file_path = file_path
        self.attempts = attempts
        message = f"All recovery attempts failed for: {file_path}"
        super().__init__(message, f"{attempts} strategies attempted")


class RecordingStorageError(RecordingError):
    """Raised when unable to store or access recording files."""

    def __init__(self, file_path: str, operation: str, error: str = None):
        """Initialize with file path, operation, and optional error.

        Args:
            file_path: Path to the recording file
            operation: The operation that failed (e.g., 'move', 'rename', 'delete')
            error: Optional error details
        """
        self.file_path = file_path
        self.operation = operation
        message = f"Failed to {operation} recording file: {file_path}"
        super().__init__(message, error)


# Registry Errors
class RegistryError(RelayRecorderError):
    """Base class for session registry errors."""
    pass


class DuplicateSessionError(RegistryError):
    """Raised when a live session is already registered for a stream."""

    def __init__(self, stream_path: str):
        self.stream_path = stream_path
        message = f"An active session is already registered for stream: {stream_path}"
        super().__init__(message)


# Control Errors
class ControlError(RelayRecorderError):
    """Base class for errors surfaced to operators by control operations."""
    pass


class SessionNotFoundError(ControlError):
    """Raised when no live session matches a stream path."""

    def __init__(self, stream_path: str, available: Optional[Iterable[str]] = None):
        """Initialize with the requested stream path.

        Args:
            stream_path: The stream path as supplied by the caller
            available: Stream paths that are currently registered
        """
        self.stream_path = stream_path
        self.available = list(available) if available is not None else []
        message = f"No active session found for stream: {stream_path}"
        details = None
        if self.available:
            details = f"Available streams: {', '.join(self.available)}"
        super().__init__(message, details)


class RecordingStartError(ControlError):
    """Raised when a recording could not be started for a stream."""

    def __init__(self, stream_path: str, error: str = None):
        self.stream_path = stream_path
        message = f"Failed to start recording for stream: {stream_path}"
        super().__init__(message, error)


class InvalidStateError(ControlError):
    """Raised when a control operation does not fit the session's state."""

    def __init__(self, stream_path: str, state: str = None, message: str = None):
        self.stream_path = stream_path
        self.state = state
        if message is None:
            message = f"Operation not allowed for stream: {stream_path}"
        details = f"Session state: {state}" if state else None
        super().__init__(message, details)


class AlreadyRecordingError(InvalidStateError):
    """Raised when starting a recording that is already active."""

    def __init__(self, stream_path: str, state: str = None):
        super().__init__(
            stream_path, state,
            f"Recording already active for stream: {stream_path}"
        )


class NotRecordingError(InvalidStateError):
    """Raised when stopping a recording that is not active."""

    def __init__(self, stream_path: str, state: str = None):
        super().__init__(
            stream_path, state,
            f"No active recording found for stream: {stream_path}"
        )


class UnsupportedOperationError(InvalidStateError):
    """Raised when a session does not support recording control."""

    def __init__(self, stream_path: str, operation: str = None):
        self.operation = operation
        message = f"Session does not support recording control for stream: {stream_path}"
        if operation:
            message = f"Session does not support '{operation}' for stream: {stream_path}"
        super().__init__(stream_path, None, message)
