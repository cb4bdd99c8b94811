"""
Crawler module for website cloning.

Contains components for crawling, classifying, detecting build tools, mapping
paths, downloading, rewriting and post-processing.
"""

from .classifier import classify
from .crawler import CrawlEvent, CrawlState, WebsiteCrawler
from .detector import BuildSignals, BuildToolDetector, BuildToolFingerprint
from .downloader import AssetDownloader, FetchResponse
from .extractor import AssetExtractor
from .models import (
    AssetType,
    CloningResult,
    CrawlOptions,
    DiscoveredAsset,
    DownloadStatus,
    FetchError,
    PageFetchError,
)
from .path_mapper import PathMapper
from .postprocess import PostProcessor
from .renderer import PageRenderer
from .rewrite import LinkRewriter

__all__ = [
    "classify",
    "CrawlEvent",
    "CrawlState",
    "WebsiteCrawler",
    "BuildSignals",
    "BuildToolDetector",
    "BuildToolFingerprint",
    "AssetDownloader",
    "FetchResponse",
    "AssetExtractor",
    "AssetType",
    "CloningResult",
    "CrawlOptions",
    "DiscoveredAsset",
    "DownloadStatus",
    "FetchError",
    "PageFetchError",
    "PathMapper",
    "PostProcessor",
    "PageRenderer",
    "LinkRewriter",
]
