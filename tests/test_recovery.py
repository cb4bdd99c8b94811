"""Tests for the recovery protocol."""

import os
import time

import pytest

from site_cloner.session.events import EventBus, EventType
from site_cloner.session.models import ProtocolError, SessionStatus
from site_cloner.session.recovery import (
    PauseSession,
    RecoveryHandler,
    RecoverSession,
    parse_message,
)
from site_cloner.session.runner import state_path
from site_cloner.session.service import CloneService
from site_cloner.session.store import SessionStore

from conftest import ROOT


UNKNOWN_ID = "6f1c2a9e-0d4b-4c55-9a3e-2b7f1d0c8e11"


@pytest.fixture
def service(config):
    # Never started: nothing here needs the loop
    store = SessionStore(retention_seconds=60)
    return CloneService(config, store=store, bus=EventBus())


@pytest.fixture
def handler(service):
    return RecoveryHandler(service.store, service.machine, service)


def interrupted_session(service, with_snapshot=True):
    session = service.machine.create(ROOT, output_root=service.config.output_root)
    service.machine.begin_crawling(session.id)
    service.machine.update_progress(session.id, 42)
    service.machine.interrupt(session.id, "Session interrupted by server restart")
    if with_snapshot:
        os.makedirs(session.output_dir, exist_ok=True)
        with open(state_path(session.output_dir), 'w') as f:
            f.write('{"root_url": "https://example.com/"}')
    return service.store.get(session.id)


def only_event(reply):
    assert len(reply.events) == 1
    return reply.events[0]


class TestParseMessage:
    def test_valid_message(self):
        message = parse_message({'type': 'recover_session', 'sessionId': UNKNOWN_ID.upper()})
        assert message == RecoverSession(UNKNOWN_ID)

    def test_pause_message(self):
        assert parse_message({'type': 'pause_session', 'sessionId': UNKNOWN_ID}) == PauseSession(UNKNOWN_ID)

    @pytest.mark.parametrize("raw", [
        None,
        "recover_session",
        {'type': 'recover_session'},
        {'type': 'recover_session', 'sessionId': 'not-a-uuid'},
        {'type': 'recover_session', 'sessionId': 7},
        {'type': 'explode', 'sessionId': UNKNOWN_ID},
    ])
    def test_malformed_messages(self, raw):
        with pytest.raises(ProtocolError):
            parse_message(raw)


class TestRecover:
    def test_unknown_session(self, handler):
        event = only_event(handler.handle({'type': 'recover_session', 'sessionId': UNKNOWN_ID}))
        assert event.type is EventType.SESSION_NOT_FOUND
        assert event.payload['message'] == "Session not found or expired"

    def test_interrupted_session_offers_resume(self, service, handler):
        session = interrupted_session(service)
        reply = handler.handle({'type': 'recover_session', 'sessionId': session.id})

        event = only_event(reply)
        assert event.type is EventType.SESSION_RECOVERY_AVAILABLE
        assert event.payload['progress'] == 42
        assert event.payload['url'] == ROOT
        assert event.payload['error'] == "Session interrupted by server restart"
        assert reply.attach == session.id

    def test_interrupted_without_snapshot_reports_status(self, service, handler):
        session = interrupted_session(service, with_snapshot=False)
        reply = handler.handle({'type': 'recover_session', 'sessionId': session.id})

        event = only_event(reply)
        assert event.type is EventType.STATUS_UPDATE
        assert event.payload['status'] == "interrupted"

    def test_running_session_attaches(self, service, handler):
        session = service.machine.create(ROOT)
        service.machine.begin_crawling(session.id)
        reply = handler.handle({'type': 'recover_session', 'sessionId': session.id})

        assert only_event(reply).payload['status'] == "crawling"
        assert reply.attach == session.id

    def test_expired_session_is_not_found(self, service, handler):
        """Sessions past retention are evicted before lookup."""
        session = interrupted_session(service)
        with service.store.transaction(session.id) as stored:
            stored.ended_at = time.time() - 120

        event = only_event(handler.handle({'type': 'recover_session', 'sessionId': session.id}))
        assert event.type is EventType.SESSION_NOT_FOUND
        assert session.id not in service.store
        assert service.bus.history(session.id) == []


class TestResume:
    def test_resume_fails_without_running_service(self, service, handler):
        """A refused resume leaves the session interrupted."""
        session = interrupted_session(service)
        reply = handler.handle({'type': 'resume_session', 'sessionId': session.id})

        event = only_event(reply)
        assert event.type is EventType.SESSION_RESUME_FAILED
        assert event.payload['reason'] == "Clone service is not running"
        assert reply.attach is None
        assert service.store.get(session.id).status is SessionStatus.INTERRUPTED

    def test_resume_unknown(self, handler):
        event = only_event(handler.handle({'type': 'resume_session', 'sessionId': UNKNOWN_ID}))
        assert event.type is EventType.SESSION_NOT_FOUND


class TestStop:
    def test_pause_idle_session(self, service, handler):
        session = service.machine.create(ROOT)
        event = only_event(handler.handle({'type': 'pause_session', 'sessionId': session.id}))
        assert event.type is EventType.STATUS_UPDATE
        assert event.payload['status'] == "interrupted"

    def test_cancel_interrupted_session(self, service, handler):
        session = interrupted_session(service)
        event = only_event(handler.handle({'type': 'cancel_session', 'sessionId': session.id}))
        assert event.payload['status'] == "cancelled"

    def test_pause_finished_session_is_an_error(self, service, handler):
        session = service.machine.create(ROOT)
        service.machine.cancel(session.id)
        event = only_event(handler.handle({'type': 'pause_session', 'sessionId': session.id}))
        assert event.type is EventType.ERROR
        assert service.store.get(session.id).status is SessionStatus.CANCELLED

    def test_cancel_unknown(self, handler):
        event = only_event(handler.handle({'type': 'cancel_session', 'sessionId': UNKNOWN_ID}))
        assert event.type is EventType.SESSION_NOT_FOUND


def test_protocol_errors_become_error_events(handler):
    """Malformed input never raises and never touches a session."""
    event = only_event(handler.handle({'type': 'resume_session', 'sessionId': 'bogus'}))
    assert event.type is EventType.ERROR
    assert event.session_id == 'bogus'
    assert "UUID" in event.payload['message']

    event = only_event(handler.handle(["not", "a", "dict"]))
    assert event.type is EventType.ERROR
    assert event.session_id == ''
