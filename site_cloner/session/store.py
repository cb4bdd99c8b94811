"""
Process-wide session registry.

Constructed explicitly at process start and passed to whoever needs it.
Every read-modify-write of a session goes through ``transaction``, which
holds the store lock for the whole update.
"""

import copy
import os
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .models import ACTIVE_STATES, Session, SessionNotFoundError, SessionStatus
from ..utils.constants import DEFAULT_PERSIST_EVERY, DEFAULT_RETENTION
from ..utils.log import get_logger
from ..utils.paths import read_json, write_json


RESTART_MESSAGE = "Session interrupted by server restart"


class SessionStore:
    """
    Thread-safe registry of sessions keyed by id, persisted as JSON.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        retention_seconds: float = DEFAULT_RETENTION,
        persist_every: int = DEFAULT_PERSIST_EVERY
    ):
        """
        Initialize the store.

        Args:
            path: JSON file the registry is persisted to; None keeps it in memory
            retention_seconds: How long ended sessions stay recoverable
            persist_every: Asset events between two writes of the registry
        """
        self.path = path
        self.retention_seconds = retention_seconds
        self.persist_every = persist_every
        self.logger = get_logger("store")
        self._lock = threading.RLock()
        self._sessions: Dict[str, Session] = {}
        self._closed = False

    def load(self) -> int:
        """
        Read the persisted registry.

        Sessions that were active when the previous process died are marked
        interrupted so their clients can resume them.

        Returns:
            Number of sessions loaded
        """
        if not self.path or not os.path.exists(self.path):
            return 0

        data = read_json(self.path)
        now = time.time()
        interrupted = 0

        with self._lock:
            for item in data.get('sessions', []):
                session = Session.from_dict(item)
                if session.status in ACTIVE_STATES:
                    session.status = SessionStatus.INTERRUPTED
                    session.error = RESTART_MESSAGE
                    session.ended_at = now
                    session.updated_at = now
                    interrupted += 1
                self._sessions[session.id] = session

            count = len(self._sessions)
            self.evict_expired(now)

        self.logger.info(f"Loaded {count} sessions ({interrupted} interrupted by restart)")
        if interrupted:
            self.save()
        return count

    def save(self) -> None:
        if not self.path:
            return
        with self._lock:
            data = {
                'savedAt': time.time(),
                'sessions': [s.to_dict() for s in self._sessions.values()],
            }
            write_json(self.path, data)

    def add(self, session: Session) -> Session:
        with self._lock:
            self._sessions[session.id] = session
            self.save()
            return copy.deepcopy(session)

    def get(self, session_id: str) -> Optional[Session]:
        """Return a copy of the session, or None."""
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def list(self) -> List[Session]:
        with self._lock:
            sessions = [copy.deepcopy(s) for s in self._sessions.values()]
        sessions.sort(key=lambda s: s.started_at, reverse=True)
        return sessions

    @contextmanager
    def transaction(self, session_id: str) -> Iterator[Session]:
        """
        Atomic read-modify-write of one session.

        Yields the stored session itself; changes made inside the block are
        visible to other threads only once the block exits.

        Raises:
            SessionNotFoundError: If no such session exists
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            yield session
            session.updated_at = time.time()

    def remove(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
            if removed:
                self.save()
            return removed

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """
        Drop sessions whose terminal or interrupted state is older than the
        retention window.

        Returns:
            Ids of the evicted sessions
        """
        now = time.time() if now is None else now
        with self._lock:
            expired = [
                session_id for session_id, session in self._sessions.items()
                if session.ended_at is not None
                and session.status not in ACTIVE_STATES
                and now - session.ended_at > self.retention_seconds
            ]
            for session_id in expired:
                del self._sessions[session_id]
            if expired:
                self.logger.info(f"Evicted {len(expired)} expired sessions")
                self.save()
        return expired

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self.save()
                self._closed = True
