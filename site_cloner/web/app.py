"""
Flask web application for the site cloner.

Exposes the clone service over a small REST API and a Socket.IO push channel
carrying session events and the recovery protocol.
"""

import ipaddress
import os
from typing import Optional
from urllib.parse import urlparse

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit, join_room

from ..crawler.crawler import CrawlState
from ..crawler.models import CrawlOptions, SnapshotError
from ..session.events import Event, EventType
from ..session.models import SessionError, SessionNotFoundError
from ..session.recovery import MESSAGE_TYPES, RecoveryHandler
from ..session.runner import state_path
from ..session.service import CloneService
from ..utils.config import ClonerConfig
from ..utils.log import get_logger


logger = get_logger("web")


def _is_private_host(hostname: str) -> bool:
    if hostname in ('localhost', 'localhost.localdomain') or hostname.endswith('.local'):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def create_app(config: Optional[ClonerConfig] = None,
               service: Optional[CloneService] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Runtime configuration; read from the environment if omitted
        service: Clone service to expose; created and started if omitted

    Returns:
        Flask app with ``socketio``, ``clone_service`` and ``recovery``
        attributes
    """
    app = Flask(__name__)

    if service is None:
        service = CloneService(config).start()
    config = service.config

    socketio = SocketIO(app, async_mode='threading', cors_allowed_origins='*')
    recovery = RecoveryHandler(service.store, service.machine, service)

    app.socketio = socketio
    app.clone_service = service
    app.recovery = recovery

    def forward(event: Event):
        socketio.emit(event.type.value, event.to_dict(), room=event.session_id)

    service.bus.subscribe(forward)

    def dispatch(raw):
        reply = recovery.handle(raw)
        if reply.attach:
            join_room(reply.attach)
        for event in reply.events:
            emit(event.type.value, event.to_dict())

    @socketio.on('connect')
    def handle_connect():
        logger.debug(f"Client connected: {request.sid}")
        emit(EventType.CONNECTION_STATUS.value, {
            'type': EventType.CONNECTION_STATUS.value,
            'connected': True,
            'sid': request.sid,
        })

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        logger.debug(f"Client disconnected: {request.sid}")

    @socketio.on('session_message')
    def handle_session_message(data):
        dispatch(data)

    def message_handler(message_type):
        def handler(data):
            if isinstance(data, dict):
                raw = dict(data, type=message_type)
            else:
                raw = {'type': message_type, 'sessionId': data}
            dispatch(raw)
        return handler

    for message_type in MESSAGE_TYPES:
        socketio.on_event(message_type, message_handler(message_type))

    @app.route('/api/clone', methods=['POST'])
    def start_clone():
        """Start a new clone session."""
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'error': 'No JSON data provided'}), 400

        url = str(data.get('url', '')).strip()
        if not url:
            return jsonify({'error': 'URL is required'}), 400

        if not url.startswith(('http://', 'https://')):
            url = 'https://' + url

        parsed = urlparse(url)
        if not parsed.netloc or not parsed.hostname:
            return jsonify({'error': 'Invalid URL format'}), 400

        if config.production and _is_private_host(parsed.hostname.lower()):
            return jsonify({'error': 'Private and loopback hosts cannot be cloned'}), 400

        try:
            options = CrawlOptions.from_dict(
                data.get('options', data),
                max_depth=config.max_depth,
                default_depth=config.default_depth,
            )
            if options.max_pages > config.max_pages:
                raise ValueError(f"maxPages must be between 1 and {config.max_pages}")
            session = service.submit(url, options)
        except (TypeError, ValueError) as e:
            return jsonify({'error': f'Invalid parameter value: {str(e)}'}), 400
        except RuntimeError as e:
            return jsonify({'error': str(e)}), 503

        return jsonify({
            'sessionId': session.id,
            'status': session.status.value,
            'message': 'Clone session started',
        }), 202

    @app.route('/api/session/<session_id>')
    def get_session(session_id):
        """Get the current state of a session."""
        session = service.store.get(session_id)
        if session is None:
            return jsonify({'error': 'Session not found'}), 404

        data = session.to_dict()
        data['running'] = service.is_running(session_id)
        data['canResume'] = service.can_resume(session)
        return jsonify(data)

    @app.route('/api/session/<session_id>/activity')
    def get_activity(session_id):
        """Replay the recent events of a session."""
        if session_id not in service.store:
            return jsonify({'error': 'Session not found'}), 404
        events = [event.to_dict() for event in service.bus.history(session_id)]
        return jsonify({'sessionId': session_id, 'events': events})

    @app.route('/api/session/<session_id>/assets')
    def get_assets(session_id):
        """List the assets recorded in the session's last crawl snapshot."""
        session = service.store.get(session_id)
        if session is None:
            return jsonify({'error': 'Session not found'}), 404

        assets = []
        if session.output_dir and os.path.exists(state_path(session.output_dir)):
            try:
                state = CrawlState.load(state_path(session.output_dir))
            except SnapshotError as e:
                return jsonify({'error': str(e)}), 409
            assets = [asset.to_event() for asset in state.assets.values()]

        return jsonify({'sessionId': session_id, 'assets': assets})

    @app.route('/api/session/<session_id>', methods=['DELETE'])
    def reset_session(session_id):
        """Stop a session if needed and evict it."""
        try:
            if service.is_running(session_id):
                service.cancel(session_id)
            service.reset(session_id)
        except SessionNotFoundError:
            return jsonify({'error': 'Session not found'}), 404
        except SessionError as e:
            return jsonify({'error': str(e)}), 409
        return jsonify({'message': 'Session reset', 'sessionId': session_id})

    @app.route('/api/sessions')
    def list_sessions():
        """List all known sessions, newest first."""
        return jsonify({'sessions': [s.to_dict() for s in service.store.list()]})

    @app.route('/api/health')
    def health():
        return jsonify({
            'status': 'ok' if service.running else 'degraded',
            'sessions': len(service.store.list()),
        })

    return app


def run_app(host: str = '127.0.0.1', port: int = 5000, debug: bool = False,
            config: Optional[ClonerConfig] = None):
    """Run the web application until interrupted."""
    app = create_app(config)
    try:
        app.socketio.run(app, host=host, port=port, debug=debug,
                         use_reloader=False, allow_unsafe_werkzeug=True)
    finally:
        app.clone_service.shutdown()
