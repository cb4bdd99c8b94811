"""
Session state machine.

The only code allowed to mutate sessions. Every operation runs inside one
store transaction and publishes its event before the transaction ends, so
the order of events on the bus equals the order of state changes.
"""

import os
import time
from typing import Optional

from .events import Event, EventBus, EventType
from .models import (
    InvalidTransitionError,
    Session,
    SessionNotFoundError,
    SessionStatus,
    TERMINAL_STATES,
    can_transition,
)
from .store import SessionStore
from ..crawler.models import CloningResult, CrawlOptions, DiscoveredAsset
from ..utils.log import get_logger


# Highest progress value reachable before the session completes
MAX_RUNNING_PROGRESS = 99.0


def status_payload(session: Session) -> dict:
    """Fields of a status_update event for ``session``."""
    return {
        'status': session.status.value,
        'progress': session.progress,
        'url': session.url,
        'assetCount': session.asset_count,
        'pagesVisited': session.pages_visited,
        'error': session.error,
        'startTime': session.started_at,
        'completedAt': session.completed_at,
    }


class SessionStateMachine:
    def __init__(self, store: SessionStore, bus: EventBus):
        self.store = store
        self.bus = bus
        self.logger = get_logger("session")

    def _publish(self, event_type: EventType, session: Session, **payload) -> None:
        self.bus.publish(Event(event_type, session.id, payload))

    def create(self, url: str, options: Optional[CrawlOptions] = None,
               output_root: Optional[str] = None) -> Session:
        """
        Register a new session in ``starting``.

        Args:
            url: Root URL to clone
            options: Crawl options of the request
            output_root: Directory under which the session gets its own folder

        Returns:
            Copy of the created session
        """
        session = Session(url=url, options=options or CrawlOptions())
        if output_root:
            session.output_dir = os.path.join(os.path.abspath(output_root), session.id)

        self.store.add(session)
        with self.store.transaction(session.id) as stored:
            self._publish(EventType.STATUS_UPDATE, stored, **status_payload(stored))
        self.logger.info(f"Created session {session.id} for {url}")
        return self.store.get(session.id)

    def _transition(self, session_id: str, target: SessionStatus,
                    error: Optional[str] = None) -> Session:
        with self.store.transaction(session_id) as session:
            if not can_transition(session.status, target):
                raise InvalidTransitionError(session_id, session.status, target)

            previous = session.status
            session.status = target
            now = time.time()

            if error is not None:
                session.error = error
            if target in TERMINAL_STATES or target is SessionStatus.INTERRUPTED:
                session.ended_at = now
            if target is SessionStatus.COMPLETED:
                session.progress = 100.0
                session.completed_at = now
            if target is SessionStatus.RESUMING:
                session.resume_count += 1
                session.ended_at = None
                session.error = None

            self._publish(EventType.STATUS_UPDATE, session, **status_payload(session))
            self.store.save()

            log = self.logger.warning if target in (
                SessionStatus.ERROR, SessionStatus.TIMEOUT, SessionStatus.INTERRUPTED
            ) else self.logger.info
            message = f"Session {session_id}: {previous.value} -> {target.value}"
            log(f"{message} ({session.error})" if error else message)
            return session

    def begin_crawling(self, session_id: str) -> Session:
        return self._transition(session_id, SessionStatus.CRAWLING)

    def begin_processing(self, session_id: str) -> Session:
        return self._transition(session_id, SessionStatus.PROCESSING)

    def complete(self, session_id: str, result: Optional[CloningResult] = None) -> Session:
        if result is not None:
            with self.store.transaction(session_id) as session:
                session.asset_count = max(session.asset_count, result.assets_downloaded)
                session.pages_visited = max(session.pages_visited, result.pages_visited)
        return self._transition(session_id, SessionStatus.COMPLETED)

    def fail(self, session_id: str, message: str) -> Session:
        return self._transition(session_id, SessionStatus.ERROR, error=message)

    def time_out(self, session_id: str, message: str) -> Session:
        return self._transition(session_id, SessionStatus.TIMEOUT, error=message)

    def interrupt(self, session_id: str, reason: str) -> Session:
        return self._transition(session_id, SessionStatus.INTERRUPTED, error=reason)

    def cancel(self, session_id: str, reason: str = "Cancelled by user") -> Session:
        return self._transition(session_id, SessionStatus.CANCELLED, error=reason)

    def begin_resume(self, session_id: str) -> Session:
        return self._transition(session_id, SessionStatus.RESUMING)

    def record_asset(self, session_id: str, asset: DiscoveredAsset,
                     asset_count: Optional[int] = None) -> None:
        """
        Publish an asset_found event and update the asset count.

        Args:
            session_id: Owning session
            asset: Downloaded asset
            asset_count: Authoritative downloaded count; incremented by one
                when omitted
        """
        with self.store.transaction(session_id) as session:
            if not session.is_active:
                self.logger.debug(
                    f"Ignoring asset event for {session.status.value} session {session_id}"
                )
                return

            count = session.asset_count + 1 if asset_count is None else asset_count
            session.asset_count = max(session.asset_count, count)
            self._publish(
                EventType.ASSET_FOUND, session,
                asset=asset.to_event(),
                assetCount=session.asset_count,
            )
            if self.store.persist_every and session.asset_count % self.store.persist_every == 0:
                self.store.save()

    def record_page(self, session_id: str, pages_visited: int) -> None:
        with self.store.transaction(session_id) as session:
            if session.is_active:
                session.pages_visited = max(session.pages_visited, pages_visited)

    def update_progress(self, session_id: str, progress: float) -> float:
        """
        Raise the session's progress; lower values are ignored.

        Returns:
            Progress in effect after the update
        """
        with self.store.transaction(session_id) as session:
            if not session.is_active:
                self.logger.debug(
                    f"Ignoring progress for {session.status.value} session {session_id}"
                )
                return session.progress

            value = max(session.progress, min(float(progress), MAX_RUNNING_PROGRESS))
            if value > session.progress:
                session.progress = value
                self._publish(EventType.PROGRESS_UPDATE, session, progress=value)
            return session.progress

    def reset(self, session_id: str) -> None:
        """
        Evict a session and its activity history.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        if not self.store.remove(session_id):
            raise SessionNotFoundError(session_id)
        self.bus.clear(session_id)
        self.logger.info(f"Session {session_id} reset")
