"""Pytest configuration and shared fixtures."""

import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

import pytest
import pytz

from config import AppConfig
from exceptions import SpawnError
from services.ffmpeg_command_builder import FFmpegCommandBuilder
from services.recording_config import RecordingConfig
from services.recording_validator import RecordingValidator
from services.session_registry import SessionRegistry


@dataclass
class ScriptedRun:
    """How a fake encoder process behaves.

    exit_on:
        'immediate' - exits with exit_code as soon as it starts
        'terminate' - runs until SIGTERM, then exits with exit_code
        'kill'      - ignores SIGTERM, exits with -9 on SIGKILL

    output_gate, when given, keeps the output stream open until it is set,
    holding the session back from finalizing after the process has exited.
    """
    exit_code: int = 0
    output: Optional[bytes] = b'\x00\x00\x00\x18ftypisom' + b'\x00' * 1024
    stderr: Tuple[str, ...] = ()
    exit_on: str = 'immediate'
    spawn_error: bool = False
    output_gate: Optional[threading.Event] = None


class FakeSupervisor:
    """Scripted stand-in for ProcessSupervisor; no real process is spawned.

    The last argument is treated as the output file and receives `output`.
    """

    def __init__(self, name: str, run: ScriptedRun):
        self.name = name
        self.run = run
        self.command: List[str] = []
        self.process = None
        self.returncode: Optional[int] = None
        self.terminate_requested = False
        self.kill_requested = False
        self.output_path: Optional[str] = None
        self._exited = threading.Event()

    @property
    def is_running(self) -> bool:
        return self.process is not None and not self._exited.is_set()

    def start(self, executable, args):
        if self.run.spawn_error:
            raise SpawnError(executable, "[Errno 2] No such file or directory")
        self.command = [executable, *args]
        self.process = object()
        self.output_path = args[-1]
        if self.run.output is not None:
            with open(self.output_path, 'wb') as f:
                f.write(self.run.output)
        if self.run.exit_on == 'immediate':
            self._exit(self.run.exit_code)
        return self

    def _exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    def observe_output(self, chunk_size: int = 4096):
        def chunks():
            for chunk in self.run.stderr:
                yield chunk
            self._exited.wait()
            if self.run.output_gate is not None:
                self.run.output_gate.wait(5)
        return chunks()

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            return None
        return self.returncode

    def request_graceful_stop(self) -> bool:
        if not self.is_running:
            return False
        self.terminate_requested = True
        if self.run.exit_on == 'terminate':
            self._exit(self.run.exit_code)
        return True

    def force_stop(self) -> bool:
        if not self.is_running:
            return False
        self.kill_requested = True
        self._exit(-9)
        return True


class FakeSupervisorFactory:
    """Creates FakeSupervisors by process kind ('capture', 'optimize', 'recovery-1', 'relay', ...)."""

    def __init__(self, runs=None, default: Optional[ScriptedRun] = None):
        self.runs = dict(runs or {})
        self.default = default or ScriptedRun()
        self.created: List[FakeSupervisor] = []

    def __call__(self, name: str) -> FakeSupervisor:
        kind = name.split(' ', 1)[0]
        supervisor = FakeSupervisor(name, self.runs.get(kind, self.default))
        self.created.append(supervisor)
        return supervisor

    def named(self, kind: str) -> List[FakeSupervisor]:
        return [s for s in self.created if s.name.split(' ', 1)[0] == kind]

    def kinds(self) -> List[str]:
        return [s.name.split(' ', 1)[0] for s in self.created]


class EventRecorder:
    """Session listener collecting (event, payload) pairs."""

    def __init__(self):
        self.events = []

    def __call__(self, event, payload):
        self.events.append((event, payload))

    @property
    def names(self) -> List[str]:
        return [event for event, _ in self.events]

    def payload(self, name: str):
        for event, payload in self.events:
            if event == name:
                return payload
        return None


@pytest.fixture
def media_root(tmp_path):
    """Provide a temporary media directory for recordings."""
    root = tmp_path / "media"
    root.mkdir()
    return str(root)


@pytest.fixture
def recording_config(media_root):
    """Recording config for /live/cam1 writing into the temp media root."""
    return RecordingConfig(
        input_url='rtmp://127.0.0.1:1935/live/cam1',
        app='live',
        stream='cam1',
        output_dir=media_root,
    )


@pytest.fixture
def command_builder():
    return FFmpegCommandBuilder('ffmpeg', 'ffprobe')


@pytest.fixture
def validator(command_builder):
    return RecordingValidator(command_builder)


@pytest.fixture
def registry():
    return SessionRegistry(legacy_prefixes=('live',))


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def make_factory():
    """Build a FakeSupervisorFactory from per-kind scripted runs."""
    def factory(**runs):
        default = runs.pop('default', None)
        return FakeSupervisorFactory({k.replace('_', '-'): v for k, v in runs.items()}, default)
    return factory


@pytest.fixture
def app_config(media_root, tmp_path):
    """Valid application config pointing at temporary directories."""
    return AppConfig(
        media_root=media_root,
        log_dir=str(tmp_path / "logs"),
        log_level="INFO",
        ffmpeg_command="ffmpeg",
        ffprobe_command="ffprobe",
        rtmp_port=1935,
        legacy_app_prefixes=("live",),
        web_host="127.0.0.1",
        web_port=8000,
        web_optimized=True,
        stop_timeout=2.0,
        relay_stop_timeout=2.0,
        frag_duration_us=2000000,
        min_frag_duration_us=1000000,
        analyze_duration=1000000,
        probe_size=1000000,
        encoder_tag="RelayRecorder",
        validate_recovered_output=False,
        relay_mode="none",
        hls_time=10,
        hls_list_size=6,
        dash_seg_duration=10,
        dash_window_size=6,
        timezone=pytz.UTC,
    )
