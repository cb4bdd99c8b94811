"""
Path mapper.

Maps a discovered asset's source URL to an output-relative path that mirrors
the output layout of the detected build tool. The mapping is a bijection per
session: once a URL has a path it keeps it, and no two URLs share a path.
"""

import hashlib
import mimetypes
import os
import threading
from typing import Dict, Optional
from urllib.parse import urlparse, unquote

from .classifier import classify
from .detector import BuildToolFingerprint, UNKNOWN_FINGERPRINT
from .models import AssetType
from ..utils.log import get_logger
from ..utils.paths import page_relative_path, url_path_segments


# Declared fallback used for unknown tools and low-confidence fingerprints
FALLBACK = "assets/{type}/"

# Directory template per tool and asset type; "default" covers unlisted types
CONVENTIONS: Dict[str, Dict[str, str]] = {
    "vue-cli": {
        AssetType.IMAGE.value: "img/",
        AssetType.STYLESHEET.value: "css/",
        AssetType.JAVASCRIPT.value: "js/",
        AssetType.FONT.value: "fonts/",
        AssetType.VIDEO.value: "media/",
        AssetType.AUDIO.value: "media/",
        "default": "assets/{type}/",
    },
    "create-react-app": {
        AssetType.JAVASCRIPT.value: "static/js/",
        AssetType.STYLESHEET.value: "static/css/",
        AssetType.IMAGE.value: "static/media/",
        AssetType.FONT.value: "static/media/",
        AssetType.VIDEO.value: "static/media/",
        AssetType.AUDIO.value: "static/media/",
        "default": "static/{type}/",
    },
    "vite": {
        AssetType.IMAGE.value: "img/",
        AssetType.STYLESHEET.value: "css/",
        AssetType.JAVASCRIPT.value: "js/",
        AssetType.FONT.value: "fonts/",
        "default": "assets/",
    },
    "webpack": {
        AssetType.IMAGE.value: "images/",
        AssetType.STYLESHEET.value: "css/",
        AssetType.JAVASCRIPT.value: "js/",
        AssetType.FONT.value: "fonts/",
        "default": "dist/{type}/",
    },
    "angular-cli": {
        "default": "assets/",
    },
    "next": {
        AssetType.JAVASCRIPT.value: "_next/static/chunks/",
        AssetType.STYLESHEET.value: "_next/static/css/",
        AssetType.IMAGE.value: "_next/static/media/",
        AssetType.FONT.value: "_next/static/media/",
        AssetType.VIDEO.value: "_next/static/media/",
        AssetType.AUDIO.value: "_next/static/media/",
        "default": "public/{type}/",
    },
    "nuxt": {
        "default": "_nuxt/",
    },
}

# Source paths already laid out by the tool are kept as they are
PRESERVED_PREFIXES: Dict[str, str] = {
    "create-react-app": "/static/",
    "angular-cli": "/assets/",
    "next": "/_next/",
    "nuxt": "/_nuxt/",
}

DEFAULT_EXTENSIONS: Dict[AssetType, str] = {
    AssetType.MODEL_3D: ".glb",
    AssetType.ENVIRONMENT_MAP: ".hdr",
    AssetType.TEXTURE: ".ktx2",
    AssetType.VIDEO: ".mp4",
    AssetType.AUDIO: ".mp3",
    AssetType.IMAGE: ".png",
    AssetType.JAVASCRIPT: ".js",
    AssetType.STYLESHEET: ".css",
    AssetType.HTML: ".html",
    AssetType.FONT: ".woff2",
    AssetType.OTHER: ".bin",
}


def _extension_for(asset_type: AssetType, content_type: Optional[str]) -> str:
    if content_type:
        mime = content_type.split(';', 1)[0].strip().lower()
        guessed = mimetypes.guess_extension(mime)
        if guessed:
            return guessed
    return DEFAULT_EXTENSIONS[asset_type]


def synthesize_filename(url: str, asset_type: AssetType,
                        content_type: Optional[str] = None) -> str:
    """Stable name for URLs whose last segment is empty or extension-less."""
    digest = hashlib.sha1(url.encode('utf-8')).hexdigest()[:8]
    return f"{asset_type.value}-{digest}{_extension_for(asset_type, content_type)}"


def filename_for(url: str, asset_type: AssetType,
                 content_type: Optional[str] = None) -> str:
    """
    Pick the on-disk filename of an asset.

    Args:
        url: Source URL
        asset_type: Classified asset type
        content_type: Declared content type, used for synthesized names

    Returns:
        Sanitized filename
    """
    segments = url_path_segments(url)
    name = segments[-1] if segments else ''
    if not name or '.' not in name.strip('.'):
        return synthesize_filename(url, asset_type, content_type)
    return name


def _with_discriminator(path: str, counter: int) -> str:
    stem, ext = os.path.splitext(path)
    return f"{stem}_{counter}{ext}"


class PathMapper:
    """
    Per-session URL to local path table.

    ``target_path`` is a pure function of the URL, the asset type and the
    frozen fingerprint. ``local_path`` assigns a path once and then always
    returns it, adding ``_<n>`` discriminators so two URLs never share a path.
    All table access goes through a lock because download workers and the
    post-processing thread use it concurrently.
    """

    def __init__(self, fingerprint: Optional[BuildToolFingerprint] = None):
        self.logger = get_logger("path_mapper")
        self._lock = threading.Lock()
        self._fingerprint: Optional[BuildToolFingerprint] = fingerprint
        self._paths: Dict[str, str] = {}
        self._owners: Dict[str, str] = {}

    @property
    def fingerprint(self) -> BuildToolFingerprint:
        return self._fingerprint or UNKNOWN_FINGERPRINT

    @property
    def frozen(self) -> bool:
        return self._fingerprint is not None

    def freeze(self, fingerprint: BuildToolFingerprint) -> BuildToolFingerprint:
        """
        Fix the fingerprint used for every subsequent mapping.

        Only the first call has an effect; later pages cannot flip the
        convention of a session.

        Returns:
            The fingerprint in effect
        """
        with self._lock:
            if self._fingerprint is None:
                self._fingerprint = fingerprint
                self.logger.info(
                    f"Path conventions frozen for {fingerprint.tool} "
                    f"(confidence {fingerprint.confidence:.2f})"
                )
            elif fingerprint != self._fingerprint:
                self.logger.debug(
                    f"Ignoring later fingerprint {fingerprint.tool}, "
                    f"keeping {self._fingerprint.tool}"
                )
            return self._fingerprint

    @property
    def convention(self) -> Optional[str]:
        """Tool whose table applies, or None when the fallback applies."""
        fingerprint = self.fingerprint
        if fingerprint.is_confident and fingerprint.tool in CONVENTIONS:
            return fingerprint.tool
        return None

    def target_path(self, source_url: str, asset_type: AssetType,
                    content_type: Optional[str] = None) -> str:
        """
        Compute the canonical relative path of an asset.

        Args:
            source_url: Normalized source URL
            asset_type: Classified asset type
            content_type: Declared content type (for synthesized names)

        Returns:
            Relative path with forward slashes
        """
        tool = self.convention
        filename = filename_for(source_url, asset_type, content_type)

        if tool is None:
            return FALLBACK.format(type=asset_type.value) + filename

        prefix = PRESERVED_PREFIXES.get(tool)
        source_path = unquote(urlparse(source_url).path)
        if prefix and source_path.startswith(prefix):
            segments = url_path_segments(source_url)
            if segments and '.' in segments[-1].strip('.'):
                return '/'.join(segments)

        table = CONVENTIONS[tool]
        directory = table.get(asset_type.value, table["default"])
        return directory.format(type=asset_type.value) + filename

    def _assign(self, url: str, candidate: str) -> str:
        path = candidate
        counter = 1
        while path in self._owners and self._owners[path] != url:
            path = _with_discriminator(candidate, counter)
            counter += 1
        if path != candidate:
            self.logger.debug(f"Path collision for {candidate}, using {path}")
        self._paths[url] = path
        self._owners[path] = url
        return path

    def local_path(self, source_url: str, asset_type: Optional[AssetType] = None,
                   content_type: Optional[str] = None) -> str:
        """
        Return the assigned path of an asset, assigning one on first use.

        Args:
            source_url: Normalized source URL
            asset_type: Asset type; classified from the URL when omitted
            content_type: Declared content type

        Returns:
            Relative path, stable for the lifetime of the session

        Raises:
            RuntimeError: If no fingerprint has been frozen yet
        """
        with self._lock:
            existing = self._paths.get(source_url)
            if existing is not None:
                return existing

            if self._fingerprint is None:
                raise RuntimeError("Build tool must be frozen before assets are mapped")

            if asset_type is None:
                asset_type, _ = classify(source_url, content_type)
            candidate = self.target_path(source_url, asset_type, content_type)
            return self._assign(source_url, candidate)

    def page_path(self, page_url: str) -> str:
        """Reserve the HTML path of a crawled page in the same table."""
        with self._lock:
            existing = self._paths.get(page_url)
            if existing is not None:
                return existing
            return self._assign(page_url, page_relative_path(page_url))

    def lookup(self, source_url: str) -> Optional[str]:
        with self._lock:
            return self._paths.get(source_url)

    def table(self) -> Dict[str, str]:
        """Copy of the URL to path table."""
        with self._lock:
            return dict(self._paths)

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                'fingerprint': self._fingerprint.to_dict() if self._fingerprint else None,
                'paths': dict(self._paths),
            }

    @classmethod
    def from_dict(cls, data: Dict) -> "PathMapper":
        """Restore a table saved by ``to_dict`` so paths survive a resume."""
        fingerprint = data.get('fingerprint')
        mapper = cls(BuildToolFingerprint.from_dict(fingerprint) if fingerprint else None)
        for url, path in data.get('paths', {}).items():
            mapper._paths[url] = path
            mapper._owners[path] = url
        return mapper
