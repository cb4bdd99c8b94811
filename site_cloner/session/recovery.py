"""
Recovery protocol handler.

Routes the session messages a client sends over the push channel
(recover, resume, pause, cancel) and answers each with the events to send
back, plus the session whose live stream the client should be attached to.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .events import Event, EventType
from .machine import SessionStateMachine, status_payload
from .models import (
    InvalidTransitionError,
    ProtocolError,
    ResumeError,
    SessionNotFoundError,
    SessionStatus,
)
from .store import SessionStore
from ..utils.log import get_logger


@dataclass(frozen=True)
class RecoverSession:
    session_id: str


@dataclass(frozen=True)
class ResumeSession:
    session_id: str


@dataclass(frozen=True)
class PauseSession:
    session_id: str


@dataclass(frozen=True)
class CancelSession:
    session_id: str


ClientMessage = Union[RecoverSession, ResumeSession, PauseSession, CancelSession]

MESSAGE_TYPES = {
    'recover_session': RecoverSession,
    'resume_session': ResumeSession,
    'pause_session': PauseSession,
    'cancel_session': CancelSession,
}


def parse_message(raw: Any) -> ClientMessage:
    """
    Validate an inbound message of the form ``{"type": ..., "sessionId": ...}``.

    Raises:
        ProtocolError: On anything else, including non-UUID session ids
    """
    if not isinstance(raw, dict):
        raise ProtocolError("Message must be a JSON object")

    message_type = raw.get('type')
    message_class = MESSAGE_TYPES.get(message_type)
    if message_class is None:
        raise ProtocolError(f"Unknown message type: {message_type!r}")

    session_id = raw.get('sessionId')
    if not isinstance(session_id, str):
        raise ProtocolError("sessionId is required")
    try:
        canonical = str(uuid.UUID(session_id))
    except ValueError:
        raise ProtocolError(f"sessionId is not a UUID: {session_id!r}")

    return message_class(canonical)


@dataclass
class Reply:
    """Events to send back and the session to attach the client to, if any."""

    events: List[Event] = field(default_factory=list)
    attach: Optional[str] = None


class RecoveryHandler:
    """
    Single entry point for session messages from clients.

    Never raises for client input: protocol errors become an ``error`` event
    and leave every session untouched.
    """

    def __init__(self, store: SessionStore, machine: SessionStateMachine, service):
        self.store = store
        self.machine = machine
        self.service = service
        self.logger = get_logger("recovery")

    def handle(self, raw: Any) -> Reply:
        try:
            message = parse_message(raw)
        except ProtocolError as e:
            self.logger.warning(f"Rejected session message: {e}")
            session_id = raw.get('sessionId') if isinstance(raw, dict) else None
            return Reply([Event(EventType.ERROR, str(session_id or ''), {'message': str(e)})])

        if isinstance(message, RecoverSession):
            return self.recover(message.session_id)
        if isinstance(message, ResumeSession):
            return self.resume(message.session_id)
        if isinstance(message, PauseSession):
            return self._stop(message.session_id, self.service.pause)
        return self._stop(message.session_id, self.service.cancel)

    def _not_found(self, session_id: str) -> Reply:
        return Reply([Event(
            EventType.SESSION_NOT_FOUND, session_id,
            {'message': 'Session not found or expired'},
        )])

    def recover(self, session_id: str) -> Reply:
        self.service.evict_expired(time.time())
        session = self.store.get(session_id)
        if session is None:
            self.logger.info(f"Recovery requested for unknown session {session_id}")
            return self._not_found(session_id)

        if session.status is SessionStatus.INTERRUPTED and self.service.can_resume(session):
            self.logger.info(f"Offering resume of session {session_id} at {session.progress}%")
            return Reply([Event(EventType.SESSION_RECOVERY_AVAILABLE, session_id, {
                'status': session.status.value,
                'progress': session.progress,
                'url': session.url,
                'totalAssets': session.asset_count,
                'error': session.error,
                'startTime': session.started_at,
                'message': 'Session can be resumed',
            })], attach=session_id)

        return Reply(
            [Event(EventType.STATUS_UPDATE, session_id, status_payload(session))],
            attach=session_id,
        )

    def resume(self, session_id: str) -> Reply:
        try:
            session = self.service.resume(session_id)
        except SessionNotFoundError:
            return self._not_found(session_id)
        except ResumeError as e:
            self.logger.warning(f"Resume of session {session_id} refused: {e}")
            return Reply([Event(EventType.SESSION_RESUME_FAILED, session_id, {'reason': str(e)})])

        return Reply([Event(EventType.SESSION_RESUMED, session_id, {
            'status': session.status.value,
            'progress': session.progress,
            'url': session.url,
            'totalAssets': session.asset_count,
            'resumeCount': session.resume_count,
        })], attach=session_id)

    def _stop(self, session_id: str, action) -> Reply:
        try:
            session = action(session_id)
        except SessionNotFoundError:
            return self._not_found(session_id)
        except InvalidTransitionError as e:
            return Reply([Event(EventType.ERROR, session_id, {'message': str(e)})])

        return Reply([Event(EventType.STATUS_UPDATE, session_id, status_payload(session))])
