"""
Clone service.

Owns the background asyncio loop that every session runs on, the download
semaphore shared by all sessions, and the registry of running executions.
At most one execution exists per session id at any time.
"""

import asyncio
import os
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .events import EventBus
from .machine import SessionStateMachine
from .models import (
    ACTIVE_STATES,
    ResumeError,
    Session,
    SessionNotFoundError,
    SessionStatus,
)
from .runner import STOP_CANCEL, STOP_PAUSE, SessionRunner, state_path
from .store import SessionStore
from ..crawler.crawler import CrawlState
from ..crawler.models import CloningResult, CrawlOptions, SnapshotError
from ..utils.config import ClonerConfig
from ..utils.log import get_logger
from ..utils.paths import ensure_dir, normalize_url


@dataclass
class Execution:
    runner: SessionRunner
    future: Future
    done: threading.Event


class CloneService:
    """
    Starts, resumes, pauses and cancels sessions.

    Public methods are called from any thread (Flask request handlers, the
    CLI); the work itself always happens on the service loop.
    """

    def __init__(
        self,
        config: Optional[ClonerConfig] = None,
        store: Optional[SessionStore] = None,
        bus: Optional[EventBus] = None,
        fetcher_factory: Optional[Callable] = None
    ):
        """
        Initialize the service.

        Args:
            config: Runtime configuration; read from the environment if omitted
            store: Session registry; created from the config if omitted
            bus: Event bus; created from the config if omitted
            fetcher_factory: Zero-argument callable producing a fetcher per
                execution
        """
        self.config = config or ClonerConfig.from_env()
        self.store = store or SessionStore(
            self.config.sessions_file,
            retention_seconds=self.config.retention_seconds,
            persist_every=self.config.persist_every,
        )
        self.bus = bus or EventBus(self.config.history_size)
        self.machine = SessionStateMachine(self.store, self.bus)
        self.fetcher_factory = fetcher_factory
        self.logger = get_logger("service")

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._shared_limit: Optional[asyncio.Semaphore] = None
        self._lock = threading.RLock()
        self._executions: Dict[str, Execution] = {}
        self._results: Dict[str, CloningResult] = {}

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self) -> "CloneService":
        """Load persisted sessions and start the loop thread."""
        if self._thread is not None:
            return self

        ensure_dir(self.config.output_root)
        self.store.load()

        self._loop = asyncio.new_event_loop()
        ready = threading.Event()

        def run_loop():
            asyncio.set_event_loop(self._loop)
            self._loop.call_soon(ready.set)
            self._loop.run_forever()

        self._thread = threading.Thread(target=run_loop, name="clone-service", daemon=True)
        self._thread.start()
        ready.wait()
        self.logger.info(f"Clone service started (output root {self.config.output_root})")
        return self

    def _limit(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the service loop
        if self._shared_limit is None:
            self._shared_limit = asyncio.Semaphore(self.config.global_download_limit)
        return self._shared_limit

    def submit(self, url: str, options: Optional[CrawlOptions] = None) -> Session:
        """
        Create a session and start cloning ``url``.

        Raises:
            ValueError: If the URL is not an absolute http(s) URL
        """
        normalized = normalize_url(url)
        if not normalized or not normalized.startswith(('http://', 'https://')):
            raise ValueError(f"Invalid URL: {url}")
        if not self.running:
            raise RuntimeError("Clone service is not running")

        session = self.machine.create(normalized, options, self.config.output_root)
        self._schedule(session.id, resume=False)
        return session

    def can_resume(self, session: Session) -> bool:
        """An interrupted session is resumable while its crawl snapshot exists."""
        return (
            session.status is SessionStatus.INTERRUPTED
            and bool(session.output_dir)
            and os.path.exists(state_path(session.output_dir))
        )

    def resume(self, session_id: str) -> Session:
        """
        Continue an interrupted session from its snapshot.

        Raises:
            SessionNotFoundError: If the session does not exist
            ResumeError: If it is already running, not interrupted, or its
                snapshot is gone or unreadable
        """
        with self._lock:
            if session_id in self._executions:
                raise ResumeError("Session is already running")

            session = self.store.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if not self.running:
                raise ResumeError("Clone service is not running")
            if session.status is not SessionStatus.INTERRUPTED:
                raise ResumeError(f"Session is {session.status.value}, not interrupted")
            if not self.can_resume(session):
                raise ResumeError("Crawl snapshot is no longer available")
            try:
                CrawlState.load(state_path(session.output_dir))
            except SnapshotError as e:
                raise ResumeError(str(e)) from e

            self.machine.begin_resume(session_id)
            self._schedule_locked(session_id, resume=True)

        self.logger.info(f"Resuming session {session_id}")
        return self.store.get(session_id)

    def _schedule(self, session_id: str, resume: bool) -> None:
        with self._lock:
            self._schedule_locked(session_id, resume)

    def _schedule_locked(self, session_id: str, resume: bool) -> None:
        if not self.running:
            raise RuntimeError("Clone service is not running")

        runner = SessionRunner(
            session_id,
            self.machine,
            self.store,
            self.config,
            fetcher_factory=self.fetcher_factory,
        )
        done = threading.Event()

        async def execute():
            runner.shared_limit = self._limit()
            return await runner.run(resume=resume)

        future = asyncio.run_coroutine_threadsafe(execute(), self._loop)
        self._executions[session_id] = Execution(runner, future, done)
        future.add_done_callback(lambda f: self._finished(session_id, f))

    def _finished(self, session_id: str, future: Future) -> None:
        with self._lock:
            execution = self._executions.pop(session_id, None)
            if not future.cancelled() and future.exception() is None:
                self._results[session_id] = future.result()
            elif not future.cancelled():
                self.logger.error(f"Session {session_id} execution failed: {future.exception()}")
        if execution is not None:
            execution.done.set()

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._executions

    def _stop(self, session_id: str, kind: str, message: str, timeout: Optional[float]) -> Session:
        with self._lock:
            execution = self._executions.get(session_id)

        if execution is not None:
            self._loop.call_soon_threadsafe(execution.runner.request_stop, kind, message)
            execution.done.wait(timeout)
        elif kind == STOP_CANCEL:
            self.machine.cancel(session_id, message)
        else:
            self.machine.interrupt(session_id, message)

        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def pause(self, session_id: str, timeout: Optional[float] = 30.0) -> Session:
        """
        Stop a session so it can be resumed later.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidTransitionError: If it is not active
        """
        return self._stop(session_id, STOP_PAUSE, "Session paused by user", timeout)

    def cancel(self, session_id: str, timeout: Optional[float] = 30.0) -> Session:
        """
        Stop a session for good.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidTransitionError: If it already ended
        """
        return self._stop(session_id, STOP_CANCEL, "Session cancelled by user", timeout)

    def wait(self, session_id: str, timeout: Optional[float] = None) -> Optional[CloningResult]:
        """
        Block until the running execution of a session ends.

        Returns:
            Its CloningResult, or None if nothing ran or it did not finish
        """
        with self._lock:
            execution = self._executions.get(session_id)
        if execution is not None and not execution.done.wait(timeout):
            return None
        with self._lock:
            return self._results.get(session_id)

    def result(self, session_id: str) -> Optional[CloningResult]:
        with self._lock:
            return self._results.get(session_id)

    def reset(self, session_id: str) -> None:
        """
        Forget a session: its record, activity history and last result.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        self.machine.reset(session_id)
        with self._lock:
            self._results.pop(session_id, None)

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """Drop sessions past retention together with everything kept about them."""
        expired = self.store.evict_expired(now)
        with self._lock:
            for session_id in expired:
                self.bus.clear(session_id)
                self._results.pop(session_id, None)
        return expired

    def shutdown(self, timeout: float = 10.0) -> None:
        """Interrupt running sessions, stop the loop and flush the store."""
        with self._lock:
            running: List[str] = list(self._executions)

        for session_id in running:
            session = self.store.get(session_id)
            if session is not None and session.status in ACTIVE_STATES:
                self.logger.info(f"Interrupting session {session_id} for shutdown")
                self._stop(session_id, STOP_PAUSE, "Session interrupted by server shutdown", timeout)

        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread is not None:
                self._thread.join(timeout)
            if not self._loop.is_running():
                self._loop.close()
            self._loop = None
            self._thread = None
            self._shared_limit = None

        self.store.close()
        self.logger.info("Clone service stopped")
