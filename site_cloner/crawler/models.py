"""
Shared data types of the crawl engine.

Asset taxonomy, download records, crawl options, the terminal result and the
exceptions raised by the fetch layer.
"""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional


class AssetType(str, Enum):
    """Closed asset taxonomy."""

    MODEL_3D = "3d-model"
    ENVIRONMENT_MAP = "environment-map"
    TEXTURE = "texture"
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    JAVASCRIPT = "javascript"
    STYLESHEET = "stylesheet"
    HTML = "html"
    FONT = "font"
    OTHER = "other"


ALL_ASSET_TYPES: FrozenSet[AssetType] = frozenset(AssetType)


class DownloadStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADED = "downloaded"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"


# Statuses that will not be retried within the session
SETTLED_STATUSES = frozenset({
    DownloadStatus.DOWNLOADED,
    DownloadStatus.FAILED,
    DownloadStatus.SKIPPED,
})


class ExportFormat(str, Enum):
    ZIP = "zip"
    DOCKER = "docker"
    VSCODE = "vscode"


class ClonerError(Exception):
    """Base class of all errors raised by the site cloner."""


class FetchError(ClonerError):
    """A single request failed (network error, timeout, non-2xx status)."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason}: {url}")
        self.url = url
        self.reason = reason


class PageFetchError(ClonerError):
    """The root page could not be loaded; the whole session fails."""


class SnapshotError(ClonerError):
    """A saved crawl snapshot is missing or unreadable."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Crawl snapshot could not be loaded: {reason}")
        self.path = path
        self.reason = reason


class ProcessingStopped(ClonerError):
    """Post-processing was asked to stop before it finished."""



@dataclass
class DiscoveredAsset:
    """
    One resource referenced by the crawled site.

    Identified by its normalized source URL, which is unique per session.
    """

    url: str
    asset_type: AssetType = AssetType.OTHER
    subtype: str = "unknown"
    content_type: Optional[str] = None
    size: int = 0
    discovered_at: float = field(default_factory=time.time)
    status: DownloadStatus = DownloadStatus.PENDING
    failure_reason: Optional[str] = None
    local_path: Optional[str] = None
    framework_hints: List[str] = field(default_factory=list)
    source: str = "html"
    referrer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['asset_type'] = self.asset_type.value
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscoveredAsset":
        data = dict(data)
        data['asset_type'] = AssetType(data.get('asset_type', AssetType.OTHER.value))
        data['status'] = DownloadStatus(data.get('status', DownloadStatus.PENDING.value))
        return cls(**data)

    def to_event(self) -> Dict[str, Any]:
        """Compact camelCase form pushed to clients."""
        return {
            'url': self.url,
            'type': self.asset_type.value,
            'subtype': self.subtype,
            'contentType': self.content_type,
            'size': self.size,
            'localPath': self.local_path,
            'status': self.status.value,
            'frameworkHints': list(self.framework_hints),
        }


def _parse_asset_types(values: Optional[Iterable[str]]) -> FrozenSet[AssetType]:
    if values is None:
        return ALL_ASSET_TYPES
    return frozenset(AssetType(value) for value in values)


@dataclass
class CrawlOptions:
    """Options of one clone request."""

    depth: int = 3
    include_assets: FrozenSet[AssetType] = ALL_ASSET_TYPES
    optimize_images: bool = False
    generate_service_worker: bool = False
    export_formats: FrozenSet[ExportFormat] = frozenset()
    max_pages: int = 200
    render_javascript: bool = False
    allowed_asset_hosts: Optional[FrozenSet[str]] = None
    block_tracking: bool = True

    def __post_init__(self):
        if self.depth < 1:
            raise ValueError(f"Crawl depth must be at least 1, got {self.depth}")
        if self.max_pages < 1:
            raise ValueError(f"max_pages must be at least 1, got {self.max_pages}")
        self.include_assets = frozenset(AssetType(t) for t in self.include_assets)
        self.export_formats = frozenset(ExportFormat(f) for f in self.export_formats)
        if self.allowed_asset_hosts is not None:
            self.allowed_asset_hosts = frozenset(h.lower() for h in self.allowed_asset_hosts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'depth': self.depth,
            'includeAssets': sorted(t.value for t in self.include_assets),
            'optimizeImages': self.optimize_images,
            'generateServiceWorker': self.generate_service_worker,
            'exportFormat': sorted(f.value for f in self.export_formats),
            'maxPages': self.max_pages,
            'renderJavascript': self.render_javascript,
            'allowedAssetHosts': (
                sorted(self.allowed_asset_hosts)
                if self.allowed_asset_hosts is not None else None
            ),
            'blockTracking': self.block_tracking,
        }

    @classmethod
    def from_dict(
        cls,
        data: Optional[Dict[str, Any]],
        max_depth: Optional[int] = None,
        default_depth: int = 3
    ) -> "CrawlOptions":
        """
        Build options from the camelCase wire form.

        Args:
            data: Request options, may be None
            max_depth: Upper bound for ``depth``
            default_depth: Depth used when the request has none

        Returns:
            CrawlOptions instance

        Raises:
            ValueError: On out-of-range or unknown values
        """
        data = data or {}
        depth = int(data.get('depth', default_depth))
        if max_depth is not None and depth > max_depth:
            raise ValueError(f"Crawl depth must be between 1 and {max_depth}")

        hosts = data.get('allowedAssetHosts')
        formats = data.get('exportFormat', data.get('exportFormats', []))
        if isinstance(formats, str):
            formats = [formats]

        return cls(
            depth=depth,
            include_assets=_parse_asset_types(data.get('includeAssets')),
            optimize_images=bool(data.get('optimizeImages', False)),
            generate_service_worker=bool(data.get('generateServiceWorker', False)),
            export_formats=frozenset(ExportFormat(f) for f in formats),
            max_pages=int(data.get('maxPages', 200)),
            render_javascript=bool(data.get('renderJavascript', False)),
            allowed_asset_hosts=frozenset(hosts) if hosts is not None else None,
            block_tracking=bool(data.get('blockTracking', True)),
        )


@dataclass
class CloningResult:
    """Terminal result of one crawl, handed to export collaborators."""

    session_id: str
    success: bool
    assets_found: int = 0
    pages_visited: int = 0
    error: Optional[str] = None
    assets_downloaded: int = 0
    assets_failed: int = 0
    duration_seconds: float = 0.0
    build_tool: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'success': self.success,
            'assetsFound': self.assets_found,
            'pagesVisited': self.pages_visited,
            'error': self.error,
            'assetsDownloaded': self.assets_downloaded,
            'assetsFailed': self.assets_failed,
            'durationSeconds': round(self.duration_seconds, 3),
            'buildTool': self.build_tool,
        }
