"""
Session records and their lifecycle states.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from ..crawler.models import ClonerError, CrawlOptions


class SessionStatus(str, Enum):
    STARTING = "starting"
    CRAWLING = "crawling"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    TIMEOUT = "timeout"
    INTERRUPTED = "interrupted"
    RESUMING = "resuming"
    CANCELLED = "cancelled"


ACTIVE_STATES: FrozenSet[SessionStatus] = frozenset({
    SessionStatus.STARTING,
    SessionStatus.CRAWLING,
    SessionStatus.PROCESSING,
    SessionStatus.RESUMING,
})

TERMINAL_STATES: FrozenSet[SessionStatus] = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.ERROR,
    SessionStatus.TIMEOUT,
    SessionStatus.CANCELLED,
})

# Allowed targets per state; terminal states have none
TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.STARTING: frozenset({
        SessionStatus.CRAWLING,
        SessionStatus.ERROR,
        SessionStatus.TIMEOUT,
        SessionStatus.INTERRUPTED,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.CRAWLING: frozenset({
        SessionStatus.PROCESSING,
        SessionStatus.ERROR,
        SessionStatus.TIMEOUT,
        SessionStatus.INTERRUPTED,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.PROCESSING: frozenset({
        SessionStatus.COMPLETED,
        SessionStatus.ERROR,
        SessionStatus.TIMEOUT,
        SessionStatus.INTERRUPTED,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.INTERRUPTED: frozenset({
        SessionStatus.RESUMING,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.RESUMING: frozenset({
        SessionStatus.CRAWLING,
        SessionStatus.ERROR,
        SessionStatus.TIMEOUT,
        SessionStatus.INTERRUPTED,
        SessionStatus.CANCELLED,
    }),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class SessionError(ClonerError):
    """Base class of session lifecycle errors."""


class InvalidTransitionError(SessionError):
    def __init__(self, session_id: str, current: SessionStatus, target: SessionStatus):
        super().__init__(
            f"Session {session_id} cannot move from {current.value} to {target.value}"
        )
        self.session_id = session_id
        self.current = current
        self.target = target


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ResumeError(SessionError):
    """A resume request was refused; the session keeps its state."""


class ProtocolError(ClonerError):
    """Malformed message on the push channel."""


@dataclass
class Session:
    """
    One cloning job.

    Only the state machine mutates sessions, always inside a store
    transaction. ``ended_at`` is set on the first entry into a terminal or
    interrupted state and drives retention.
    """

    url: str
    options: CrawlOptions = field(default_factory=CrawlOptions)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SessionStatus = SessionStatus.STARTING
    progress: float = 0.0
    asset_count: int = 0
    pages_visited: int = 0
    started_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    ended_at: Optional[float] = None
    updated_at: float = field(default_factory=time.time)
    error: Optional[str] = None
    output_dir: Optional[str] = None
    resume_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'url': self.url,
            'status': self.status.value,
            'progress': self.progress,
            'assetCount': self.asset_count,
            'pagesVisited': self.pages_visited,
            'startedAt': self.started_at,
            'completedAt': self.completed_at,
            'endedAt': self.ended_at,
            'updatedAt': self.updated_at,
            'error': self.error,
            'options': self.options.to_dict(),
            'outputDir': self.output_dir,
            'resumeCount': self.resume_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data['id'],
            url=data['url'],
            status=SessionStatus(data['status']),
            progress=float(data.get('progress', 0.0)),
            asset_count=int(data.get('assetCount', 0)),
            pages_visited=int(data.get('pagesVisited', 0)),
            started_at=data.get('startedAt') or time.time(),
            completed_at=data.get('completedAt'),
            ended_at=data.get('endedAt'),
            updated_at=data.get('updatedAt') or time.time(),
            error=data.get('error'),
            options=CrawlOptions.from_dict(data.get('options')),
            output_dir=data.get('outputDir'),
            resume_count=int(data.get('resumeCount', 0)),
        )
