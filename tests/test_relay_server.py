#!/usr/bin/env python3
"""
Tests for the relay server: publish/done handling and registry lifecycle.
"""

import os
import threading
import time

import pytest

from conftest import FakeSupervisorFactory, ScriptedRun
from exceptions import DuplicateSessionError, SessionNotFoundError
from services.ffmpeg_command_builder import FFmpegCommandBuilder
from services.recording_controller import RecordingController
from services.recording_session import RecordingState
from services.relay_server import RelayServer


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def factory():
    return FakeSupervisorFactory({
        'capture': ScriptedRun(exit_on='terminate'),
        'relay': ScriptedRun(exit_on='terminate', output=b'#EXTM3U\n'),
    })


@pytest.fixture
def server(registry, validator, factory):
    relay_server = RelayServer(
        registry=registry,
        command_builder=FFmpegCommandBuilder('ffmpeg', 'ffprobe'),
        validator=validator,
        supervisor_factory=factory,
    )
    relay_server.relay_mode = 'none'
    relay_server.stop_timeout = 2
    relay_server.validate_recovered_output = False
    yield relay_server
    relay_server.shutdown(timeout=5)


def publish(server, media_root, stream='cam1', **kwargs):
    return server.start_relay('live', stream, output_dir=media_root, **kwargs)


@pytest.mark.unit
class TestStartRelay:

    def test_publish_registers_idle_session(self, server, registry, media_root):
        session = publish(server, media_root)

        assert session.state == RecordingState.IDLE
        assert registry.lookup('live/cam1') is session
        assert session.config.input_url == 'rtmp://127.0.0.1:1935/live/cam1'

    def test_publish_with_record_starts_capture(self, server, media_root, factory):
        session = publish(server, media_root, record=True)

        assert session.is_recording() is True
        assert factory.kinds() == ['capture']

    def test_republish_returns_existing_session(self, server, media_root):
        first = publish(server, media_root)
        second = publish(server, media_root)
        assert first is second

    def test_republish_with_record_starts_idle_session(self, server, media_root):
        first = publish(server, media_root)
        second = publish(server, media_root, record=True)
        assert second is first
        assert first.is_recording() is True

    def test_web_optimized_override(self, server, media_root):
        session = publish(server, media_root, web_optimized=False)
        assert session.config.web_optimized is False

    def test_invalid_relay_mode(self, server, media_root):
        with pytest.raises(ValueError):
            publish(server, media_root, relay_mode='smooth')


@pytest.mark.unit
class TestSessionLifecycle:

    def test_finalized_session_is_replaced_while_published(self, server, registry, media_root):
        session = publish(server, media_root, record=True)

        server.registry.get('/live/cam1').stop()
        assert session.wait(5)

        assert session.state == RecordingState.FINALIZED
        assert os.path.getsize(session.final_path) > 0
        assert not os.path.exists(session.temp_path)
        replacement = registry.lookup('live/cam1')
        assert replacement is not session
        assert replacement.state == RecordingState.IDLE
        assert replacement.config == session.config

    def test_failed_session_is_replaced_while_published(self, registry, validator, media_root):
        factory = FakeSupervisorFactory({'capture': ScriptedRun(spawn_error=True)})
        relay_server = RelayServer(registry=registry, validator=validator, supervisor_factory=factory)
        relay_server.relay_mode = 'none'

        session = publish(relay_server, media_root, record=True)

        assert session.state == RecordingState.FAILED
        replacement = registry.lookup('live/cam1')
        assert replacement is not session
        assert replacement.state == RecordingState.IDLE

    def test_finished_session_leaves_registry_once_unpublished(self, server, registry, media_root):
        session = publish(server, media_root, record=True)

        server.stream_ended('/live/cam1')
        assert session.wait(5)

        assert registry.lookup('/live/cam1') is None
        assert len(registry) == 0

    def test_new_session_after_terminal(self, server, registry, media_root):
        first = publish(server, media_root, record=True)
        first.stop()
        first.wait(5)

        second = publish(server, media_root)
        assert second is registry.lookup('/live/cam1')
        assert second is not first
        assert second.state == RecordingState.IDLE
        assert second.start() is True

    def test_stream_ended_stops_recording(self, server, registry, media_root):
        session = publish(server, media_root, record=True)

        assert server.stream_ended('live/cam1') is True
        assert session.wait(5)
        assert session.stop_reason == 'stream_ended'
        assert session.state == RecordingState.FINALIZED
        assert registry.lookup('/live/cam1') is None

    def test_stream_ended_removes_idle_session(self, server, registry, media_root):
        publish(server, media_root)
        assert server.stream_ended('/live/cam1') is True
        assert registry.lookup('/live/cam1') is None

    def test_stream_ended_unknown(self, server):
        assert server.stream_ended('/live/nothing') is False

    def test_stop_relay_removes_session(self, server, registry, media_root):
        session = publish(server, media_root, record=True)

        assert server.stop_relay('cam1') is True
        assert session.wait(5)
        assert session.stop_reason == 'session_end'
        assert session.state == RecordingState.FINALIZED
        assert registry.lookup('/live/cam1') is None

    def test_stop_relay_removes_idle_session_at_once(self, server, registry, media_root):
        publish(server, media_root)
        assert server.stop_relay('/live/cam1') is True
        assert registry.lookup('/live/cam1') is None

    def test_stop_relay_keeps_finalizing_session_registered(self, server, factory, registry, media_root):
        gate = threading.Event()
        factory.runs['capture'] = ScriptedRun(exit_on='terminate', output_gate=gate)
        session = publish(server, media_root, record=True)

        server.stop_relay('/live/cam1')

        assert session.state == RecordingState.STOPPING_GRACEFUL
        assert registry.lookup('/live/cam1') is session
        with pytest.raises(DuplicateSessionError):
            registry.register('/live/cam1', object())

        gate.set()
        assert session.wait(5)
        assert registry.lookup('/live/cam1') is None

    def test_republish_while_finalizing_records_after_previous(self, server, factory, registry, media_root):
        gate = threading.Event()
        factory.runs['capture'] = ScriptedRun(exit_on='terminate', output_gate=gate)
        first = publish(server, media_root, record=True)
        server.stop_relay('/live/cam1')

        second = publish(server, media_root, record=True)

        # No second capture while the first one is still finalizing
        assert second is first
        assert len(factory.named('capture')) == 1

        gate.set()
        assert first.wait(5)
        assert first.state == RecordingState.FINALIZED

        replacement = registry.lookup('/live/cam1')
        assert replacement is not first
        assert wait_until(replacement.is_recording)
        assert len(factory.named('capture')) == 2
        assert replacement.temp_path != first.temp_path
        assert replacement.final_path != first.final_path
        assert os.path.exists(first.final_path)

    def test_controller_records_again_after_stop(self, server, registry, media_root):
        controller = RecordingController(registry)
        first = publish(server, media_root)

        controller.start_for_stream('/live/cam1')
        controller.stop_for_stream('/live/cam1')
        assert first.wait(5)

        second = registry.get('/live/cam1')
        assert second is not first
        assert second.state == RecordingState.IDLE

        result = controller.start_for_stream('/live/cam1')

        assert result['success'] is True
        assert second.is_recording() is True
        assert result['output_path'] != first.final_path

    def test_stop_relay_unknown(self, server):
        assert server.stop_relay('/live/nothing') is False

    def test_stop_all_sessions(self, server, registry, media_root):
        recording = publish(server, media_root, 'cam1', record=True)
        publish(server, media_root, 'cam2')

        stopped = server.stop_all_sessions()

        assert sorted(stopped) == ['/live/cam1', '/live/cam2']
        assert recording.wait(5)
        # Unpublished streams are not given a fresh session
        assert len(registry) == 0

    def test_get_active_sessions(self, server, media_root):
        recording = publish(server, media_root, 'cam1', record=True)
        publish(server, media_root, 'cam2')

        active = {s['stream_path']: s for s in server.get_active_sessions()}

        assert active['/live/cam1']['is_recording'] is True
        assert active['/live/cam1']['output_path'] == recording.final_path
        assert active['/live/cam2']['is_recording'] is False
        assert active['/live/cam2']['status']['state'] == 'idle'

    def test_shutdown_waits_for_finalization(self, server, media_root):
        session = publish(server, media_root, record=True)

        assert server.shutdown(timeout=5) is True
        assert session.state == RecordingState.FINALIZED


@pytest.mark.unit
class TestPrimaryRelay:

    def test_hls_relay_runs_next_to_recordings(self, server, factory, media_root):
        session = publish(server, media_root, relay_mode='hls')

        assert session.relay is not None
        relay = factory.named('relay')[0]
        assert relay.command[-1] == os.path.join(media_root, 'live', 'cam1', 'index.m3u8')
        assert '-hls_time' in relay.command

    def test_relay_exit_ends_recording(self, server, factory, registry, media_root):
        session = publish(server, media_root, relay_mode='hls', record=True)
        relay = factory.named('relay')[0]

        # The relay process going away means the source is gone
        relay.request_graceful_stop()

        assert session.wait(5)
        assert session.stop_reason == 'stream_ended'
        assert wait_until(lambda: registry.lookup('/live/cam1') is None)

    def test_stop_relay_stops_relay_process(self, server, factory, media_root):
        session = publish(server, media_root, relay_mode='dash', record=True)
        relay = factory.named('relay')[0]

        server.stop_relay('/live/cam1')

        assert relay.terminate_requested is True
        assert session.relay.wait(5)
        assert session.wait(5)

    def test_republish_reuses_running_relay(self, server, factory, media_root):
        first = publish(server, media_root, relay_mode='hls', record=True)
        first.stop()
        first.wait(5)

        second = publish(server, media_root, relay_mode='hls')

        assert second.relay is first.relay
        assert len(factory.named('relay')) == 1

    def test_missing_session_error_lists_streams(self, server, media_root):
        publish(server, media_root)
        with pytest.raises(SessionNotFoundError) as exc_info:
            server.registry.get('/live/cam2')
        assert exc_info.value.available == ['/live/cam1']
