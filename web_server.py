#!/usr/bin/env python3
"""
Web server module for the relay recorder.
Provides the operator HTTP API: ingestion callbacks (publish/done) and
per-stream recording control.
"""

import logging
from typing import Any, Dict, Optional, Tuple, Union

from flask import Flask, jsonify, request, Response

from config import WEB_HOST, WEB_PORT
from exceptions import (
    DuplicateSessionError,
    InvalidStateError,
    RelayRecorderError,
    SessionNotFoundError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)
app = Flask(__name__)

# Global references to services (set by main.py)
controller = None
relay_server = None


def set_controller(service: Any) -> None:
    """Set the recording controller instance for the web server to use."""
    global controller
    controller = service


def set_relay_server(service: Any) -> None:
    """Set the relay server instance for the web server to use."""
    global relay_server
    relay_server = service


def _unavailable(name: str) -> Tuple[Response, int]:
    return jsonify({
        'success': False,
        'error': f'{name} not available'
    }), 500


def _bad_request(message: str) -> Tuple[Response, int]:
    return jsonify({
        'success': False,
        'error': message,
        'type': 'bad_request'
    }), 400


def _stream_path_from(data: Dict[str, Any]) -> Optional[str]:
    """Accept either {stream_path} or {app, stream}."""
    stream_path = data.get('stream_path')
    if stream_path:
        return stream_path
    app_name = data.get('app')
    stream = data.get('stream')
    if app_name and stream:
        return f"{app_name}/{stream}"
    return None


# ----------------------------------------------------------------------
# Ingestion callbacks
# ----------------------------------------------------------------------

@app.route('/api/streams/publish', methods=['POST'])
def api_stream_publish() -> Union[Response, Tuple[Response, int]]:
    """A stream went live: create (or return) its relay session."""
    if relay_server is None:
        return _unavailable('Relay server')

    data = request.get_json(silent=True) or {}
    app_name = data.get('app')
    stream = data.get('stream')
    if not app_name or not stream:
        return _bad_request('Both app and stream are required')

    options = {}
    if 'web_optimized' in data:
        options['web_optimized'] = bool(data['web_optimized'])
    if data.get('relay_mode'):
        options['relay_mode'] = data['relay_mode']

    session = relay_server.start_relay(
        app_name,
        stream,
        record=bool(data.get('record', False)),
        **options
    )
    return jsonify({
        'success': True,
        'stream_path': session.stream_path,
        'status': session.status()
    }), 201


@app.route('/api/streams/done', methods=['POST'])
def api_stream_done() -> Union[Response, Tuple[Response, int]]:
    """A stream's source ended."""
    if relay_server is None:
        return _unavailable('Relay server')

    stream_path = _stream_path_from(request.get_json(silent=True) or {})
    if not stream_path:
        return _bad_request('stream_path or app and stream are required')

    if not relay_server.stream_ended(stream_path):
        raise SessionNotFoundError(stream_path, relay_server.registry.keys())

    return jsonify({
        'success': True,
        'stream_path': stream_path,
        'message': f'Source end signalled for stream: {stream_path}'
    })


@app.route('/api/streams/<path:stream_path>', methods=['DELETE'])
def api_stream_delete(stream_path: str) -> Union[Response, Tuple[Response, int]]:
    """End a stream's relay session."""
    if relay_server is None:
        return _unavailable('Relay server')

    if not relay_server.stop_relay(stream_path):
        raise SessionNotFoundError(stream_path, relay_server.registry.keys())

    return jsonify({
        'success': True,
        'stream_path': stream_path,
        'message': f'Relay session stopped for stream: {stream_path}'
    })


@app.route('/api/streams', methods=['GET'])
def api_streams() -> Union[Response, Tuple[Response, int]]:
    """List registered sessions."""
    if controller is None:
        return _unavailable('Recording controller')
    return jsonify({'streams': controller.list_active()})


# ----------------------------------------------------------------------
# Recording control
# ----------------------------------------------------------------------

@app.route('/api/recordings/status', methods=['GET'])
def api_recordings_status() -> Union[Response, Tuple[Response, int]]:
    if controller is None:
        return _unavailable('Recording controller')
    return jsonify(controller.status())


@app.route('/api/recordings/start-all', methods=['POST'])
def api_start_all() -> Union[Response, Tuple[Response, int]]:
    if controller is None:
        return _unavailable('Recording controller')
    return jsonify(controller.start_all())


@app.route('/api/recordings/stop-all', methods=['POST'])
def api_stop_all() -> Union[Response, Tuple[Response, int]]:
    if controller is None:
        return _unavailable('Recording controller')
    data = request.get_json(silent=True) or {}
    return jsonify(controller.stop_all(data.get('reason', 'manual')))


@app.route('/api/recordings/<path:stream_path>/start', methods=['POST'])
def api_start_recording(stream_path: str) -> Union[Response, Tuple[Response, int]]:
    """Start recording a registered stream."""
    if controller is None:
        return _unavailable('Recording controller')
    return jsonify(controller.start_for_stream(stream_path))


@app.route('/api/recordings/<path:stream_path>/stop', methods=['POST'])
def api_stop_recording(stream_path: str) -> Union[Response, Tuple[Response, int]]:
    """Stop a running recording; finalization continues in the background."""
    if controller is None:
        return _unavailable('Recording controller')
    data = request.get_json(silent=True) or {}
    return jsonify(controller.stop_for_stream(stream_path, data.get('reason', 'manual')))


# Error handlers for custom exceptions
@app.errorhandler(SessionNotFoundError)
def handle_session_not_found(error: SessionNotFoundError) -> Tuple[Response, int]:
    logger.info(f"Session not found: {error.stream_path}")
    return jsonify({
        'success': False,
        'error': error.message,
        'available_streams': error.available,
        'type': 'session_not_found'
    }), 404


@app.errorhandler(UnsupportedOperationError)
def handle_unsupported_operation(error: UnsupportedOperationError) -> Tuple[Response, int]:
    logger.warning(f"Unsupported operation: {error.message}")
    return jsonify({
        'success': False,
        'error': error.message,
        'type': 'unsupported_operation'
    }), 400


@app.errorhandler(InvalidStateError)
def handle_invalid_state(error: InvalidStateError) -> Tuple[Response, int]:
    """Handle already-recording, not-recording and other state conflicts."""
    logger.info(f"Invalid state: {error.message}")
    return jsonify({
        'success': False,
        'error': error.message,
        'state': error.state,
        'type': 'invalid_state'
    }), 409


@app.errorhandler(DuplicateSessionError)
def handle_duplicate_session(error: DuplicateSessionError) -> Tuple[Response, int]:
    logger.warning(f"Duplicate session: {error.stream_path}")
    return jsonify({
        'success': False,
        'error': error.message,
        'type': 'duplicate_session'
    }), 409


@app.errorhandler(ValueError)
def handle_value_error(error: ValueError) -> Tuple[Response, int]:
    """Malformed stream paths and unsupported relay modes."""
    return _bad_request(str(error))


@app.errorhandler(RelayRecorderError)
def handle_relay_recorder_error(error: RelayRecorderError) -> Tuple[Response, int]:
    """Handle all other relay recorder errors."""
    logger.error(f"Relay recorder error: {error.message}", exc_info=True)
    return jsonify({
        'success': False,
        'error': error.message,
        'type': 'application_error'
    }), 500


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the Flask web server."""
    host = host or WEB_HOST
    port = port or WEB_PORT
    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
