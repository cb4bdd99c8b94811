"""
Path and URL utilities for the site cloner.

Provides URL normalization, output-relative path helpers, and safe file writes.
"""

import json
import os
import re
from typing import Any, Optional
from urllib.parse import urlparse, urlunparse, urljoin, unquote


UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._~-]')


def normalize_url(url: str, base_url: Optional[str] = None) -> str:
    """
    Normalize a URL by resolving relative paths and removing fragments.

    Args:
        url: URL to normalize
        base_url: Base URL for resolving relative URLs

    Returns:
        Normalized URL string, or "" for non-navigable references
    """
    if not url:
        return ""

    url = url.strip()
    if not url or url.startswith(('javascript:', 'data:', 'mailto:', 'tel:', '#', 'blob:')):
        return ""

    # Protocol-relative URLs
    if url.startswith('//'):
        scheme = urlparse(base_url).scheme if base_url else 'https'
        url = f"{scheme}:{url}"

    if base_url and not urlparse(url).scheme:
        url = urljoin(base_url, url)

    parsed = urlparse(url)
    if not parsed.netloc:
        return ""

    cleaned = urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path or '/',
        parsed.params,
        parsed.query,
        ''
    ))

    # Trailing slash only survives on the root path
    if cleaned.endswith('/') and len(parsed.path) > 1:
        cleaned = cleaned.rstrip('/')

    return cleaned


def get_domain(url: str) -> str:
    """Extract the lower-cased host of a URL, e.g. 'example.com'."""
    return (urlparse(url).hostname or '').lower()


def strip_www(host: str) -> str:
    return host[4:] if host.startswith('www.') else host


def is_same_domain(url: str, base_url: str) -> bool:
    """
    Check if a URL belongs to the same site as the base URL.

    The ``www.`` prefix is ignored on both sides.
    """
    return strip_www(get_domain(url)) == strip_www(get_domain(base_url))


def is_http_url(url: str) -> bool:
    return urlparse(url).scheme in ('http', 'https')


def sanitize_segment(segment: str) -> str:
    """Make a single path segment safe for every filesystem."""
    segment = UNSAFE_CHARS.sub('_', unquote(segment))
    segment = segment.strip('.') or '_'
    return segment[:120]


def url_path_segments(url: str):
    """Return the sanitized, non-empty path segments of a URL."""
    path = urlparse(url).path
    return [sanitize_segment(part) for part in path.split('/') if part and part not in ('.', '..')]


def page_relative_path(url: str) -> str:
    """
    Convert a page URL to an output-relative HTML file path.

    ``/`` becomes ``index.html`` and ``/about`` becomes ``about/index.html``
    so that relative links between pages keep working offline.

    Args:
        url: Page URL

    Returns:
        Relative path using forward slashes
    """
    segments = url_path_segments(url)

    if not segments:
        return "index.html"

    last = segments[-1]
    if last.lower().endswith(('.html', '.htm')):
        return '/'.join(segments)

    return '/'.join(segments + ['index.html'])


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def ensure_parent_dir(file_path: str) -> None:
    """
    Ensure the parent directory of a file exists.

    Args:
        file_path: File path whose parent directory should exist
    """
    parent = os.path.dirname(file_path)
    if parent:
        ensure_dir(parent)


def resolve_output_path(output_dir: str, relative_path: str) -> str:
    """
    Join an output-relative path onto the output root.

    Raises:
        ValueError: If the result would escape the output root
    """
    root = os.path.abspath(output_dir)
    full = os.path.abspath(os.path.join(root, *relative_path.split('/')))
    if full != root and not full.startswith(root + os.sep):
        raise ValueError(f"Path escapes output root: {relative_path}")
    return full


def get_relative_path(from_path: str, to_path: str) -> str:
    """
    Calculate the relative path from one file to another.

    Args:
        from_path: Source file path
        to_path: Target file path

    Returns:
        Relative path string with forward slashes
    """
    from_dir = os.path.dirname(from_path) or '.'
    rel_path = os.path.relpath(to_path, from_dir)
    return rel_path.replace('\\', '/')


def write_json(path: str, data: Any) -> None:
    """Write JSON through a temporary file so readers never see a partial file."""
    ensure_parent_dir(path)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


def read_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)
