"""
Utility modules for site cloning.

Contains logging, path handling, configuration, and constants.
"""

from .log import setup_logger, get_logger
from .paths import normalize_url, ensure_dir, page_relative_path
from .config import ClonerConfig
from .constants import (
    DEFAULT_USER_AGENT,
    DEFAULT_TIMEOUT,
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_DEPTH,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "normalize_url",
    "ensure_dir",
    "page_relative_path",
    "ClonerConfig",
    "DEFAULT_USER_AGENT",
    "DEFAULT_TIMEOUT",
    "DEFAULT_PAGE_TIMEOUT",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_MAX_PAGES",
    "DEFAULT_MAX_DEPTH",
]
