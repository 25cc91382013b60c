#!/usr/bin/env python3
"""
Services module for the relay recorder.
Provides the process supervisor, recording session state machine, session
registry, control surface and relay orchestration.
"""

from .process_supervisor import ProcessSupervisor
from .ffmpeg_command_builder import FFmpegCommandBuilder, RECOVERY_STRATEGIES
from .recording_config import RecordingConfig
from .recording_path_manager import RecordingPathManager, RecordingPaths
from .recording_monitor import RecordingMonitor
from .recording_validator import RecordingValidator
from .recording_session import RecordingSession, RecordingState
from .stream_relay import StreamRelay
from .session_registry import SessionRegistry, canonicalize
from .recording_controller import RecordingController
from .relay_server import RelayServer

__all__ = [
    'ProcessSupervisor',
    'FFmpegCommandBuilder',
    'RECOVERY_STRATEGIES',
    'RecordingConfig',
    'RecordingPathManager',
    'RecordingPaths',
    'RecordingMonitor',
    'RecordingValidator',
    'RecordingSession',
    'RecordingState',
    'StreamRelay',
    'SessionRegistry',
    'canonicalize',
    'RecordingController',
    'RelayServer',
]
