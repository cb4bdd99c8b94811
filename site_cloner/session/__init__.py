"""
Session module for the site cloner.

Contains the session lifecycle: records and states, the registry, the state
machine, the runner and service that execute sessions, and the recovery
protocol spoken with reconnecting clients.
"""

from .events import Event, EventBus, EventType
from .machine import SessionStateMachine
from .models import (
    InvalidTransitionError,
    ProtocolError,
    ResumeError,
    Session,
    SessionError,
    SessionNotFoundError,
    SessionStatus,
)
from .recovery import RecoveryHandler, Reply, parse_message
from .runner import SessionRunner
from .service import CloneService
from .store import SessionStore

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "SessionStateMachine",
    "InvalidTransitionError",
    "ProtocolError",
    "ResumeError",
    "Session",
    "SessionError",
    "SessionNotFoundError",
    "SessionStatus",
    "RecoveryHandler",
    "Reply",
    "parse_message",
    "SessionRunner",
    "CloneService",
    "SessionStore",
]
