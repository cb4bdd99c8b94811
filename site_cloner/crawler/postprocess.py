"""
Post-processing of a finished crawl.

Rewrites references to the local copies, optionally recompresses images and
generates a service worker, then writes the clone manifest.
"""

import io
import json
import os
import shutil
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from PIL import Image

from .detector import BuildToolFingerprint
from .models import AssetType, CrawlOptions, DiscoveredAsset, DownloadStatus, ProcessingStopped
from .rewrite import LinkRewriter
from ..utils.log import get_logger
from ..utils.paths import (
    ensure_parent_dir,
    get_relative_path,
    resolve_output_path,
    write_json,
)


# Originals are kept here so processing can run again after a resume
ORIGINALS_DIR = ".cloner/original"

SERVICE_WORKER = "sw.js"
MANIFEST = "manifest.json"

OPTIMIZABLE_FORMATS = {'.png': 'PNG', '.jpg': 'JPEG', '.jpeg': 'JPEG'}

SERVICE_WORKER_TEMPLATE = """const CACHE_NAME = '{cache_name}';
const PRECACHE_URLS = {urls};

self.addEventListener('install', (event) => {{
  event.waitUntil(caches.open(CACHE_NAME).then((cache) => cache.addAll(PRECACHE_URLS)));
  self.skipWaiting();
}});

self.addEventListener('activate', (event) => {{
  event.waitUntil(
    caches.keys().then((keys) => Promise.all(
      keys.filter((key) => key !== CACHE_NAME).map((key) => caches.delete(key))
    ))
  );
  self.clients.claim();
}});

self.addEventListener('fetch', (event) => {{
  if (event.request.method !== 'GET') {{
    return;
  }}
  event.respondWith(
    caches.match(event.request).then((cached) => cached || fetch(event.request))
  );
}});
"""

REGISTRATION_TEMPLATE = (
    "if ('serviceWorker' in navigator) {{"
    " window.addEventListener('load', function () {{"
    " navigator.serviceWorker.register('{path}'); }}); }}"
)


class PostProcessor:
    """
    Runs the processing phase of a session on its output tree.

    All paths handled here are output-relative and come from the session's
    URL to path table. Setting ``halt`` stops the run between files with
    ProcessingStopped; nothing is written after that.
    """

    def __init__(
        self,
        output_dir: str,
        base_url: str,
        options: CrawlOptions,
        pages: Dict[str, str],
        assets: Iterable[DiscoveredAsset],
        url_mapping: Dict[str, str],
        fingerprint: BuildToolFingerprint,
        cache_name: str = "site-cloner",
        halt: Optional[threading.Event] = None
    ):
        self.output_dir = output_dir
        self.base_url = base_url
        self.options = options
        self.pages = dict(pages)
        self.assets = list(assets)
        self.url_mapping = dict(url_mapping)
        self.fingerprint = fingerprint
        self.cache_name = cache_name
        self.halt = halt or threading.Event()
        self.rewriter = LinkRewriter(base_url, self.url_mapping)
        self.logger = get_logger("postprocess")

    @property
    def downloaded(self) -> List[DiscoveredAsset]:
        return [a for a in self.assets if a.status is DownloadStatus.DOWNLOADED and a.local_path]

    def run(self, progress: Optional[Callable[[float], None]] = None) -> Dict:
        """
        Execute every enabled step.

        Args:
            progress: Called with the completed fraction (0..1) after each step

        Returns:
            Summary of what was done
        """
        steps = [('rewritten', self.rewrite_references)]
        if self.options.optimize_images:
            steps.append(('images_optimized', self.optimize_images))
        if self.options.generate_service_worker:
            steps.append(('service_worker', self.generate_service_worker))
        steps.append(('manifest', self.write_manifest))

        summary = {}
        for index, (name, step) in enumerate(steps, start=1):
            self._check_halt()
            summary[name] = step()
            if progress is not None:
                progress(index / len(steps))

        self.logger.info(f"Post-processing finished: {summary}")
        return summary

    def _check_halt(self) -> None:
        if self.halt.is_set():
            raise ProcessingStopped(f"Post-processing of {self.output_dir} stopped")

    def _full_path(self, relative_path: str) -> str:
        return resolve_output_path(self.output_dir, relative_path)

    def _read_original(self, relative_path: str) -> str:
        """Read the unmodified copy of a file, saving it on first use."""
        original = self._full_path(f"{ORIGINALS_DIR}/{relative_path}")
        current = self._full_path(relative_path)
        if not os.path.exists(original):
            ensure_parent_dir(original)
            shutil.copyfile(current, original)
        with open(original, 'r', encoding='utf-8', errors='replace') as f:
            return f.read()

    def _write(self, relative_path: str, content: str) -> None:
        path = self._full_path(relative_path)
        ensure_parent_dir(path)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)

    def rewrite_references(self) -> int:
        """Rewrite pages and stylesheets to point at local copies."""
        count = 0

        for page_url, page_path in self.pages.items():
            self._check_halt()
            if not os.path.exists(self._full_path(page_path)):
                continue
            html = self.rewriter.rewrite_html(self._read_original(page_path), page_url, page_path)
            if self.options.generate_service_worker:
                registration = REGISTRATION_TEMPLATE.format(
                    path=get_relative_path(page_path, SERVICE_WORKER)
                )
                html = self.rewriter.inject_script(html, registration)
            self._write(page_path, html)
            count += 1

        for asset in self.downloaded:
            if asset.asset_type is not AssetType.STYLESHEET:
                continue
            self._check_halt()
            css = self._read_original(asset.local_path)
            self._write(asset.local_path, self.rewriter.rewrite_css(css, asset.url, asset.local_path))
            count += 1

        self.logger.info(f"Rewrote references in {count} files")
        return count

    def optimize_images(self) -> int:
        """Recompress PNG and JPEG files in place when that makes them smaller."""
        optimized = 0

        for asset in self.downloaded:
            self._check_halt()
            ext = os.path.splitext(asset.local_path)[1].lower()
            image_format = OPTIMIZABLE_FORMATS.get(ext)
            if image_format is None:
                continue

            path = self._full_path(asset.local_path)
            try:
                original_size = os.path.getsize(path)
                with Image.open(path) as image:
                    image.load()
                    buffer = io.BytesIO()
                    if image_format == 'JPEG':
                        if image.mode not in ('RGB', 'L'):
                            image = image.convert('RGB')
                        image.save(buffer, 'JPEG', quality=85, optimize=True, progressive=True)
                    else:
                        image.save(buffer, 'PNG', optimize=True)
            except (OSError, Image.DecompressionBombError) as e:
                self.logger.warning(f"Skipping image optimization for {asset.url}: {e}")
                continue

            if buffer.tell() < original_size:
                with open(path, 'wb') as f:
                    f.write(buffer.getvalue())
                self.logger.debug(
                    f"Optimized {asset.local_path}: {original_size} -> {buffer.tell()} bytes"
                )
                optimized += 1

        self.logger.info(f"Optimized {optimized} images")
        return optimized

    def generate_service_worker(self) -> str:
        """Write sw.js precaching every page and downloaded asset."""
        urls = ['./' + path for path in sorted(self.pages.values())]
        urls.extend('./' + asset.local_path for asset in sorted(self.downloaded, key=lambda a: a.local_path))

        url_list = json.dumps(urls, indent=2)
        self._write(SERVICE_WORKER, SERVICE_WORKER_TEMPLATE.format(
            cache_name=self.cache_name,
            urls=url_list,
        ))
        self.logger.info(f"Generated service worker precaching {len(urls)} files")
        return SERVICE_WORKER

    def write_manifest(self) -> str:
        """Describe the clone for export and packaging tools."""
        counts: Dict[str, int] = {}
        for asset in self.downloaded:
            counts[asset.asset_type.value] = counts.get(asset.asset_type.value, 0) + 1

        manifest = {
            'source': self.base_url,
            'generatedAt': time.time(),
            'buildTool': self.fingerprint.to_dict(),
            'exportFormats': sorted(f.value for f in self.options.export_formats),
            'serviceWorker': SERVICE_WORKER if self.options.generate_service_worker else None,
            'pages': self.pages,
            'assets': {a.url: a.local_path for a in self.downloaded},
            'counts': counts,
            'failed': [
                {'url': a.url, 'reason': a.failure_reason}
                for a in self.assets if a.status is DownloadStatus.FAILED
            ],
        }
        write_json(self._full_path(MANIFEST), manifest)
        return MANIFEST
