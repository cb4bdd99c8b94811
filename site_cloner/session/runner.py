"""
Session runner.

Drives one execution of a session on the service's event loop: builds the
crawl engine, pumps its events into the state machine, runs
post-processing, and maps every way an execution can end onto a session
state.
"""

import asyncio
import os
import threading
import time
from typing import Callable, Optional, Tuple

from .machine import SessionStateMachine
from .models import SessionError
from .store import SessionStore
from ..crawler.crawler import CrawlEvent, CrawlState, WebsiteCrawler
from ..crawler.downloader import AssetDownloader
from ..crawler.models import (
    CloningResult,
    DownloadStatus,
    PageFetchError,
    ProcessingStopped,
    SnapshotError,
)
from ..crawler.postprocess import PostProcessor
from ..utils.config import ClonerConfig
from ..utils.constants import STATE_FILENAME
from ..utils.log import get_logger


# Progress range covered by post-processing
PROCESSING_START = 90.0
PROCESSING_SPAN = 9.0

STOP_PAUSE = "pause"
STOP_CANCEL = "cancel"


def default_fetcher_factory(config: ClonerConfig) -> Callable[[], AssetDownloader]:
    def factory():
        return AssetDownloader(timeout=config.request_timeout, user_agent=config.user_agent)
    return factory


def state_path(output_dir: str) -> str:
    return os.path.join(output_dir, STATE_FILENAME)


class SessionRunner:
    """
    One execution of one session.

    ``request_stop`` must be called from the event loop thread; the service
    schedules it there with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        session_id: str,
        machine: SessionStateMachine,
        store: SessionStore,
        config: ClonerConfig,
        fetcher_factory: Optional[Callable] = None,
        shared_limit: Optional[asyncio.Semaphore] = None
    ):
        self.session_id = session_id
        self.machine = machine
        self.store = store
        self.config = config
        self.fetcher_factory = fetcher_factory or default_fetcher_factory(config)
        self.shared_limit = shared_limit
        self.logger = get_logger("runner")

        self.crawler: Optional[WebsiteCrawler] = None
        self._events: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[Tuple[str, str]] = None
        self._halt = threading.Event()
        self._processing: Optional[asyncio.Future] = None

    def request_stop(self, kind: str, message: str) -> None:
        """Ask the execution to stop; the first request wins."""
        if self._stop is None:
            self._stop = (kind, message)
        self._halt.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _apply_stop(self) -> None:
        kind, message = self._stop
        if kind == STOP_CANCEL:
            self.machine.cancel(self.session_id, message)
        else:
            self.machine.interrupt(self.session_id, message)

    def _failed(self, error: str) -> CloningResult:
        if self.crawler is None:
            return CloningResult(session_id=self.session_id, success=False, error=error)
        result = self.crawler.result()
        result.success = False
        result.error = error
        return result

    def _build_crawler(self, resume: bool) -> WebsiteCrawler:
        session = self.store.get(self.session_id)
        if session is None:
            raise SessionError(f"Session vanished before it could run: {self.session_id}")

        output_dir = session.output_dir or self.config.session_dir(self.session_id)
        state = None
        if resume:
            state = CrawlState.load(state_path(output_dir))

        return WebsiteCrawler(
            url=session.url,
            output_dir=output_dir,
            options=session.options,
            session_id=self.session_id,
            fetcher=self.fetcher_factory(),
            state=state,
            concurrency=self.config.download_concurrency,
            shared_limit=self.shared_limit,
            events=self._events,
        )

    async def run(self, resume: bool = False) -> CloningResult:
        """
        Execute the session until it completes, fails, times out or stops.

        Args:
            resume: Continue from the saved crawl snapshot

        Returns:
            CloningResult of this execution
        """
        start_time = time.time()

        if self._stop is not None:
            self._apply_stop()
            return self._failed(self._stop[1])

        self._events = asyncio.Queue()
        try:
            self.crawler = self._build_crawler(resume)
        except SnapshotError as e:
            self.logger.warning(f"Session {self.session_id} cannot resume: {e}")
            self.machine.interrupt(self.session_id, str(e))
            return self._failed(str(e))

        pump = asyncio.ensure_future(self._pump())
        self._task = asyncio.ensure_future(self._drive())
        timeout = self.config.session_timeout_seconds

        try:
            result = await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            await self._settle()
            message = f"Session exceeded the {timeout:g}s time limit"
            self.machine.time_out(self.session_id, message)
            result = self._failed(message)
        except PageFetchError as e:
            await self._settle()
            self.machine.fail(self.session_id, str(e))
            result = self._failed(str(e))
        except asyncio.CancelledError:
            if self._stop is None:
                raise
            await self._settle()
            self._apply_stop()
            result = self._failed(self._stop[1])
        except Exception as e:
            self.logger.exception(f"Session {self.session_id} crashed")
            await self._settle()
            message = f"Unexpected error: {e}"
            self.machine.fail(self.session_id, message)
            result = self._failed(message)
        finally:
            pump.cancel()
            self.crawler.save_state()

        result.duration_seconds = time.time() - start_time
        return result

    async def _drive(self) -> CloningResult:
        self.machine.begin_crawling(self.session_id)
        result = await self.crawler.crawl()
        await self._events.join()

        self.machine.begin_processing(self.session_id)
        processor = PostProcessor(
            output_dir=self.crawler.output_dir,
            base_url=self.crawler.start_url,
            options=self.crawler.options,
            pages=self.crawler.state.pages,
            assets=self.crawler.state.assets.values(),
            url_mapping=self.crawler.downloaded_paths(),
            fingerprint=self.crawler.fingerprint,
            cache_name=f"site-cloner-{self.session_id[:8]}",
            halt=self._halt,
        )
        loop = asyncio.get_event_loop()
        self._processing = loop.run_in_executor(None, processor.run, self._processing_progress)
        # The worker thread keeps going if this task is cancelled; _settle waits for it
        await asyncio.shield(self._processing)

        self.machine.complete(self.session_id, result)
        return result

    def _processing_progress(self, fraction: float) -> None:
        self.machine.update_progress(self.session_id, PROCESSING_START + PROCESSING_SPAN * fraction)

    async def _settle(self) -> None:
        """Stop post-processing and deliver queued engine events before the final transition."""
        self._halt.set()
        if self._processing is not None:
            try:
                await self._processing
            except ProcessingStopped:
                self.logger.info(f"Post-processing of session {self.session_id} stopped")
            except Exception as e:
                self.logger.warning(f"Post-processing of session {self.session_id} failed: {e}")
        if self._events is not None:
            await self._events.join()

    async def _pump(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self._apply_event(event)
            except SessionError as e:
                self.logger.debug(f"Dropped {event.kind} event: {e}")
            finally:
                self._events.task_done()

    def _apply_event(self, event: CrawlEvent) -> None:
        if event.kind == 'asset_found':
            downloaded = self.crawler.state.count(DownloadStatus.DOWNLOADED)
            self.machine.record_asset(self.session_id, event.asset, downloaded)
        elif event.kind == 'progress':
            self.machine.update_progress(self.session_id, event.progress)
        elif event.kind == 'page':
            self.machine.record_page(self.session_id, len(self.crawler.state.pages))
        elif event.kind == 'build_tool':
            fingerprint = event.fingerprint
            self.logger.info(
                f"Session {self.session_id} built with {fingerprint.tool} "
                f"(confidence {fingerprint.confidence:.2f})"
            )
