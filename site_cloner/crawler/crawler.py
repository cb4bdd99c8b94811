"""
Main website crawler module.

Crawls a site breadth-first from its root page, detects the build tool from
the root page, and downloads every referenced resource through a bounded pool
of workers. Each asset is classified, mapped to its local path and written to
the session's output tree. Progress is reported as CrawlEvents on an asyncio
queue, and the whole crawl state can be saved and restored to resume later.
"""

import asyncio
import dataclasses
import os
import time
from collections import namedtuple
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .classifier import classify
from .detector import BuildSignals, BuildToolDetector, BuildToolFingerprint
from .downloader import AssetDownloader, FetchResponse
from .extractor import AssetExtractor, is_tracking_url
from .models import (
    AssetType,
    CloningResult,
    CrawlOptions,
    DiscoveredAsset,
    DownloadStatus,
    FetchError,
    PageFetchError,
    SETTLED_STATUSES,
    SnapshotError,
)
from .path_mapper import PathMapper
from .renderer import PageRenderer
from ..utils.constants import DEFAULT_CONCURRENCY, SNIFF_BYTES, STATE_FILENAME
from ..utils.log import get_logger
from ..utils.paths import (
    ensure_dir,
    ensure_parent_dir,
    get_domain,
    is_http_url,
    is_same_domain,
    normalize_url,
    read_json,
    resolve_output_path,
    write_json,
)


# Share of the progress bar covered by crawling and downloading
CRAWL_PROGRESS_WEIGHT = 90.0

PAGE = "page"
ASSET = "asset"

WorkItem = namedtuple("WorkItem", ["kind", "url", "depth"])


@dataclass
class CrawlEvent:
    """Notification from the engine to whoever drives the session."""

    kind: str
    asset: Optional[DiscoveredAsset] = None
    progress: Optional[float] = None
    url: Optional[str] = None
    fingerprint: Optional[BuildToolFingerprint] = None


@dataclass
class CrawlState:
    """Everything needed to continue an interrupted crawl."""

    root_url: str
    fingerprint: Optional[BuildToolFingerprint] = None
    pages: Dict[str, str] = field(default_factory=dict)
    pending_pages: Dict[str, int] = field(default_factory=dict)
    skipped_pages: Dict[str, str] = field(default_factory=dict)
    page_errors: Dict[str, str] = field(default_factory=dict)
    assets: Dict[str, DiscoveredAsset] = field(default_factory=dict)
    paths: Dict[str, str] = field(default_factory=dict)
    saved_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root_url': self.root_url,
            'fingerprint': self.fingerprint.to_dict() if self.fingerprint else None,
            'pages': self.pages,
            'pending_pages': self.pending_pages,
            'skipped_pages': self.skipped_pages,
            'page_errors': self.page_errors,
            'assets': [asset.to_dict() for asset in self.assets.values()],
            'paths': self.paths,
            'saved_at': self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlState":
        fingerprint = data.get('fingerprint')
        assets = [DiscoveredAsset.from_dict(item) for item in data.get('assets', [])]
        return cls(
            root_url=data['root_url'],
            fingerprint=BuildToolFingerprint.from_dict(fingerprint) if fingerprint else None,
            pages=dict(data.get('pages', {})),
            pending_pages={url: int(depth) for url, depth in data.get('pending_pages', {}).items()},
            skipped_pages=dict(data.get('skipped_pages', {})),
            page_errors=dict(data.get('page_errors', {})),
            assets={asset.url: asset for asset in assets},
            paths=dict(data.get('paths', {})),
            saved_at=data.get('saved_at'),
        )

    def save(self, path: str) -> None:
        self.saved_at = time.time()
        write_json(path, self.to_dict())

    @classmethod
    def load(cls, path: str) -> "CrawlState":
        """
        Read a snapshot written by ``save``.

        Raises:
            SnapshotError: If the file is missing, not JSON, or malformed
        """
        try:
            return cls.from_dict(read_json(path))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise SnapshotError(path, str(e)) from e

    def count(self, status: DownloadStatus) -> int:
        return sum(1 for asset in self.assets.values() if asset.status is status)


def _looks_like_html(response: FetchResponse) -> bool:
    content_type = (response.content_type or '').lower()
    if content_type:
        return 'html' in content_type
    head = response.body[:256].lstrip().lower()
    return head.startswith(b'<!doctype html') or head.startswith(b'<html')


class WebsiteCrawler:
    """
    Crawl engine of one session.

    Owns a private work queue drained by ``concurrency`` worker tasks. Network
    calls additionally acquire ``shared_limit``, a semaphore shared by all
    sessions of the process.
    """

    def __init__(
        self,
        url: str,
        output_dir: str,
        options: Optional[CrawlOptions] = None,
        session_id: str = "",
        fetcher=None,
        state: Optional[CrawlState] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        shared_limit: Optional[asyncio.Semaphore] = None,
        renderer: Optional[PageRenderer] = None,
        events: Optional[asyncio.Queue] = None,
        checkpoint_every: int = 25
    ):
        """
        Initialize the crawler.

        Args:
            url: Root URL of the site
            output_dir: Output root owned by this session
            options: Crawl options of the request
            session_id: Owning session, reported in the result
            fetcher: Object with an async ``fetch(url)``, used as an async
                context manager; an AssetDownloader by default
            state: Saved state to continue from instead of starting over
            concurrency: Number of download workers
            shared_limit: Process-wide semaphore capping concurrent requests
            renderer: Playwright renderer for pages; created when the options
                ask for rendering and none is given
            events: Queue receiving CrawlEvents; created when omitted
            checkpoint_every: Completed work items between state snapshots
        """
        self.start_url = normalize_url(url)
        if not self.start_url or not is_http_url(self.start_url):
            raise ValueError(f"Invalid root URL: {url}")

        self.output_dir = os.path.abspath(output_dir)
        self.options = options or CrawlOptions()
        self.session_id = session_id
        self.fetcher = fetcher if fetcher is not None else AssetDownloader()
        self.concurrency = max(1, concurrency)
        self.shared_limit = shared_limit
        self.events: asyncio.Queue = events if events is not None else asyncio.Queue()
        self.checkpoint_every = checkpoint_every
        self.state_path = os.path.join(self.output_dir, STATE_FILENAME)

        if renderer is None and self.options.render_javascript:
            renderer = PageRenderer()
        self.renderer = renderer

        self.logger = get_logger("crawler")
        self.extractor = AssetExtractor(self.start_url)
        self.detector = BuildToolDetector()

        self.state = state or CrawlState(root_url=self.start_url)
        self.mapper = PathMapper.from_dict({
            'fingerprint': self.state.fingerprint.to_dict() if self.state.fingerprint else None,
            'paths': self.state.paths,
        })

        self._queue: Optional[asyncio.Queue] = None
        self._since_checkpoint = 0

    @property
    def fingerprint(self) -> BuildToolFingerprint:
        return self.mapper.fingerprint

    async def crawl(self) -> CloningResult:
        """
        Run the crawl until the work queue drains.

        Returns:
            CloningResult with counts for the whole session so far

        Raises:
            PageFetchError: If the root page cannot be loaded
            asyncio.CancelledError: When paused, cancelled or timed out; the
                in-flight assets are marked abandoned first
        """
        start_time = time.time()
        ensure_dir(self.output_dir)
        self._queue = asyncio.Queue()
        workers: List[asyncio.Task] = []

        self.logger.info(f"Starting crawl of {self.start_url} (depth {self.options.depth})")

        try:
            async with self.fetcher:
                if self.renderer is not None:
                    await self.renderer.start()
                try:
                    if self.mapper.frozen:
                        self._restore_pending()
                    else:
                        await self._crawl_root()

                    workers = [
                        asyncio.ensure_future(self._worker())
                        for _ in range(self.concurrency)
                    ]
                    await self._queue.join()
                finally:
                    if self.renderer is not None:
                        await self.renderer.stop()
        except asyncio.CancelledError:
            self.logger.warning(f"Crawl of {self.start_url} stopped before completion")
            raise
        finally:
            for worker in workers:
                worker.cancel()
            if workers:
                await asyncio.gather(*workers, return_exceptions=True)
            self.snapshot()
            self._write_reports()

        result = self.result(duration=time.time() - start_time)
        self.logger.info(
            f"Crawl finished: {result.pages_visited} pages, "
            f"{result.assets_downloaded} assets downloaded, {result.assets_failed} failed"
        )
        return result

    def result(self, duration: float = 0.0) -> CloningResult:
        return CloningResult(
            session_id=self.session_id,
            success=True,
            assets_found=len(self.state.assets),
            pages_visited=len(self.state.pages),
            assets_downloaded=self.state.count(DownloadStatus.DOWNLOADED),
            assets_failed=self.state.count(DownloadStatus.FAILED),
            duration_seconds=duration,
            build_tool=self.fingerprint.tool,
        )

    def downloaded_paths(self) -> Dict[str, str]:
        """
        URL to path entries whose file was actually written.

        Failed writes keep their reserved name in the mapper so a resumed
        crawl reuses it, but references to them must not be rewritten.
        """
        saved = set(self.state.pages)
        saved.update(
            url for url, asset in self.state.assets.items()
            if asset.status is DownloadStatus.DOWNLOADED
        )
        return {url: path for url, path in self.mapper.table().items() if url in saved}

    async def _fetch(self, url: str) -> FetchResponse:
        if self.shared_limit is None:
            return await self.fetcher.fetch(url)
        async with self.shared_limit:
            return await self.fetcher.fetch(url)

    async def _load_page(self, url: str):
        """
        Load a page through the renderer or the fetcher.

        Returns:
            Tuple of (html, runtime signals or None), or (None, None) when
            the URL turned out not to be an HTML page
        """
        if self.renderer is not None:
            rendered = await self.renderer.render(url)
            return rendered.html, rendered.signals

        response = await self._fetch(url)
        if not _looks_like_html(response):
            return None, None
        return response.text(), None

    async def _crawl_root(self) -> None:
        """Fetch the root page, freeze the build tool, and seed the queue."""
        try:
            html, runtime_signals = await self._load_page(self.start_url)
        except FetchError as e:
            raise PageFetchError(f"Root page unreachable ({e.reason}): {self.start_url}")

        if html is None:
            raise PageFetchError(f"Root page is not an HTML document: {self.start_url}")

        signals: BuildSignals = self.extractor.extract_signals(html, self.start_url)
        if runtime_signals is not None:
            signals = signals.merge(runtime_signals)

        fingerprint = self.mapper.freeze(self.detector.analyze(signals))
        self.state.fingerprint = fingerprint
        write_json(os.path.join(self.output_dir, "build-tool-info.json"), {
            **fingerprint.to_dict(),
            'url': self.start_url,
            'scriptSources': signals.script_sources,
            'flags': signals.active_flags(),
        })
        self._emit(CrawlEvent('build_tool', fingerprint=fingerprint))

        self._store_page(self.start_url, 0, html)
        self._emit_progress()

    def _restore_pending(self) -> None:
        """Re-queue the unfinished work of a saved state."""
        pages = 0
        assets = 0

        for url, depth in sorted(self.state.pending_pages.items()):
            self._queue.put_nowait(WorkItem(PAGE, url, depth))
            pages += 1

        for asset in self.state.assets.values():
            retry = asset.status in (DownloadStatus.PENDING, DownloadStatus.ABANDONED)
            if asset.status is DownloadStatus.DOWNLOADED and not self._file_exists(asset.local_path):
                retry = True
            if retry:
                asset.status = DownloadStatus.PENDING
                self._queue.put_nowait(WorkItem(ASSET, asset.url, 0))
                assets += 1

        self.logger.info(
            f"Resuming crawl of {self.start_url}: {pages} pages and {assets} assets left, "
            f"{len(self.state.pages)} pages already saved"
        )

    def _file_exists(self, relative_path: Optional[str]) -> bool:
        if not relative_path:
            return False
        return os.path.exists(resolve_output_path(self.output_dir, relative_path))

    def _write_file(self, relative_path: str, data: bytes) -> None:
        path = resolve_output_path(self.output_dir, relative_path)
        ensure_parent_dir(path)
        with open(path, 'wb') as f:
            f.write(data)

    async def _worker(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item.kind == PAGE:
                    await self._process_page(item)
                else:
                    await self._process_asset(item)
            except asyncio.CancelledError:
                if item.kind == ASSET:
                    self.state.assets[item.url].status = DownloadStatus.ABANDONED
                raise
            except Exception as e:
                # A bad resource must never take the crawl down with it
                self.logger.error(f"Unexpected error processing {item.url}: {e}")
                if item.kind == ASSET:
                    asset = self.state.assets[item.url]
                    asset.status = DownloadStatus.FAILED
                    asset.failure_reason = f"internal error: {e}"
                else:
                    self.state.pending_pages.pop(item.url, None)
                    self.state.page_errors[item.url] = f"internal error: {e}"
            finally:
                self._queue.task_done()

            self._emit_progress()
            self._checkpoint()

    async def _process_page(self, item: WorkItem) -> None:
        try:
            html, _ = await self._load_page(item.url)
        except FetchError as e:
            self.logger.warning(f"Failed to load page {item.url}: {e.reason}")
            self.state.pending_pages.pop(item.url, None)
            self.state.page_errors[item.url] = e.reason
            return

        if html is None:
            # Linked like a page but served as a file
            self.state.pending_pages.pop(item.url, None)
            self._discover_asset(item.url, source='html', referrer=None)
            return

        self._store_page(item.url, item.depth, html)

    def _store_page(self, url: str, depth: int, html: str) -> None:
        """Save raw page markup and queue everything it references."""
        page_path = self.mapper.page_path(url)
        self._write_file(page_path, html.encode('utf-8'))
        self.state.pages[url] = page_path
        self.state.pending_pages.pop(url, None)

        extracted = self.extractor.extract(html, url)
        for link in sorted(extracted.internal_links):
            self._discover_page(link, depth + 1)
        for asset_url in sorted(extracted.all_assets()):
            self._discover_asset(asset_url, source='html', referrer=url)

        self.logger.debug(f"Saved page {url} -> {page_path}")
        self._emit(CrawlEvent('page', url=url))

    def _discover_page(self, url: str, depth: int) -> None:
        known = (
            url in self.state.pages
            or url in self.state.pending_pages
            or url in self.state.skipped_pages
            or url in self.state.page_errors
        )
        if known:
            return

        if depth > self.options.depth:
            self.state.skipped_pages[url] = "beyond depth"
            return

        if len(self.state.pages) + len(self.state.pending_pages) >= self.options.max_pages:
            self.state.skipped_pages[url] = "page limit reached"
            return

        self.state.pending_pages[url] = depth
        self._queue.put_nowait(WorkItem(PAGE, url, depth))

    def _rejection(self, url: str):
        """Return (status, reason) if policy forbids downloading ``url``."""
        if not is_http_url(url):
            return DownloadStatus.FAILED, "disallowed scheme"
        if self.options.block_tracking and is_tracking_url(url):
            return DownloadStatus.SKIPPED, "tracking host"
        allowed = self.options.allowed_asset_hosts
        if (allowed is not None and not is_same_domain(url, self.start_url)
                and get_domain(url) not in allowed):
            return DownloadStatus.SKIPPED, "host not allowed"
        return None

    def _discover_asset(self, url: str, source: str, referrer: Optional[str]) -> None:
        if url in self.state.assets:
            return

        asset = DiscoveredAsset(url=url, source=source, referrer=referrer)
        asset.asset_type, asset.subtype = classify(url)
        self.state.assets[url] = asset

        rejection = self._rejection(url)
        if rejection is not None:
            asset.status, asset.failure_reason = rejection
            self.logger.debug(f"Not downloading {url}: {asset.failure_reason}")
            return

        # Extension-less URLs are typed only once their response is known
        if asset.asset_type is not AssetType.OTHER and asset.asset_type not in self.options.include_assets:
            asset.status = DownloadStatus.SKIPPED
            asset.failure_reason = "excluded type"
            return

        self._queue.put_nowait(WorkItem(ASSET, url, 0))

    async def _process_asset(self, item: WorkItem) -> None:
        asset = self.state.assets[item.url]

        try:
            response = await self._fetch(item.url)
        except FetchError as e:
            asset.status = DownloadStatus.FAILED
            asset.failure_reason = e.reason
            self.logger.warning(f"Asset failed ({e.reason}): {item.url}")
            return

        asset.asset_type, asset.subtype = classify(
            item.url, response.content_type, response.body[:SNIFF_BYTES]
        )
        asset.content_type = response.content_type
        asset.size = response.size

        if asset.asset_type not in self.options.include_assets:
            asset.status = DownloadStatus.SKIPPED
            asset.failure_reason = "excluded type"
            return

        local_path = self.mapper.local_path(item.url, asset.asset_type, response.content_type)
        try:
            self._write_file(local_path, response.body)
        except OSError as e:
            asset.status = DownloadStatus.FAILED
            asset.failure_reason = f"write failed: {e.strerror or e}"
            self.logger.warning(f"Could not save {item.url} to {local_path}: {e}")
            return

        asset.local_path = local_path
        asset.status = DownloadStatus.DOWNLOADED
        asset.failure_reason = None
        asset.framework_hints = [self.fingerprint.tool]
        self.logger.debug(f"Downloaded {item.url} -> {local_path} ({asset.asset_type.value})")
        self._emit(CrawlEvent('asset_found', asset=dataclasses.replace(asset)))

        if asset.asset_type is AssetType.STYLESHEET:
            for url in sorted(self.extractor.extract_css_assets(response.text(), item.url)):
                self._discover_asset(url, source='css', referrer=item.url)
        elif asset.asset_type is AssetType.JAVASCRIPT:
            for url in sorted(self.extractor.extract_js_assets(response.text(), item.url)):
                self._discover_asset(url, source='js', referrer=item.url)

    def progress(self) -> float:
        """Completed share of all discovered work, scaled to the crawl weight."""
        total = len(self.state.assets) + len(self.state.pages) + len(self.state.pending_pages)
        if total == 0:
            return 0.0
        settled = sum(1 for a in self.state.assets.values() if a.status in SETTLED_STATUSES)
        done = len(self.state.pages) + settled
        return round(CRAWL_PROGRESS_WEIGHT * done / total, 2)

    def _emit(self, event: CrawlEvent) -> None:
        self.events.put_nowait(event)

    def _emit_progress(self) -> None:
        self._emit(CrawlEvent('progress', progress=self.progress()))

    def _checkpoint(self) -> None:
        self._since_checkpoint += 1
        if self._since_checkpoint >= self.checkpoint_every:
            self._since_checkpoint = 0
            self.save_state()

    def snapshot(self) -> CrawlState:
        """Sync the path table into the state object and return it."""
        self.state.paths = self.mapper.table()
        if self.mapper.frozen:
            self.state.fingerprint = self.mapper.fingerprint
        return self.state

    def save_state(self, path: Optional[str] = None) -> str:
        """
        Write the crawl snapshot used for resuming.

        Args:
            path: Target file; the session's state file by default

        Returns:
            Path of the written file
        """
        path = path or self.state_path
        self.snapshot().save(path)
        self.logger.debug(f"Saved crawl state to {path}")
        return path

    def _write_reports(self) -> None:
        """Write sitemap.json and errors.json next to the cloned pages."""
        if not os.path.isdir(self.output_dir):
            return

        write_json(os.path.join(self.output_dir, "sitemap.json"), {
            'root': self.start_url,
            'pages': self.state.pages,
            'skipped': self.state.skipped_pages,
        })

        errors = [
            {'url': url, 'type': 'page', 'reason': reason}
            for url, reason in self.state.page_errors.items()
        ]
        errors.extend(
            {'url': asset.url, 'type': asset.asset_type.value, 'reason': asset.failure_reason}
            for asset in self.state.assets.values()
            if asset.status is DownloadStatus.FAILED
        )
        write_json(os.path.join(self.output_dir, "errors.json"), errors)
