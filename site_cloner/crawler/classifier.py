"""
Asset classifier.

Assigns an asset type and subtype to a fetched resource from its declared
content type, the URL extension and a short prefix of its bytes.
"""

import os
import re
from typing import Optional, Tuple
from urllib.parse import urlparse, unquote

from .models import AssetType


Classification = Tuple[AssetType, str]

# Content types that say nothing about the payload
GENERIC_CONTENT_TYPES = frozenset({
    '',
    'application/octet-stream',
    'binary/octet-stream',
    'application/x-unknown',
    'application/unknown',
    'application/binary',
    'application/json',
    'text/plain',
})

CONTENT_TYPES = {
    'model/gltf-binary': (AssetType.MODEL_3D, 'glb'),
    'model/gltf+json': (AssetType.MODEL_3D, 'gltf'),
    'model/obj': (AssetType.MODEL_3D, 'obj'),
    'model/stl': (AssetType.MODEL_3D, 'stl'),
    'model/vnd.usdz+zip': (AssetType.MODEL_3D, 'usdz'),
    'application/x-fbx': (AssetType.MODEL_3D, 'fbx'),
    'image/vnd.radiance': (AssetType.ENVIRONMENT_MAP, 'hdr'),
    'image/x-hdr': (AssetType.ENVIRONMENT_MAP, 'hdr'),
    'image/x-exr': (AssetType.ENVIRONMENT_MAP, 'exr'),
    'image/aces': (AssetType.ENVIRONMENT_MAP, 'exr'),
    'image/ktx': (AssetType.TEXTURE, 'ktx'),
    'image/ktx2': (AssetType.TEXTURE, 'ktx2'),
    'image/vnd-ms.dds': (AssetType.TEXTURE, 'dds'),
    'image/vnd.ms-dds': (AssetType.TEXTURE, 'dds'),
    'image/x-dds': (AssetType.TEXTURE, 'dds'),
    'image/svg+xml': (AssetType.IMAGE, 'svg'),
    'image/jpeg': (AssetType.IMAGE, 'jpeg'),
    'image/x-icon': (AssetType.IMAGE, 'ico'),
    'image/vnd.microsoft.icon': (AssetType.IMAGE, 'ico'),
    'text/javascript': (AssetType.JAVASCRIPT, 'js'),
    'application/javascript': (AssetType.JAVASCRIPT, 'js'),
    'application/x-javascript': (AssetType.JAVASCRIPT, 'js'),
    'application/ecmascript': (AssetType.JAVASCRIPT, 'js'),
    'text/ecmascript': (AssetType.JAVASCRIPT, 'js'),
    'text/css': (AssetType.STYLESHEET, 'css'),
    'text/html': (AssetType.HTML, 'html'),
    'application/xhtml+xml': (AssetType.HTML, 'xhtml'),
    'application/font-woff': (AssetType.FONT, 'woff'),
    'application/font-woff2': (AssetType.FONT, 'woff2'),
    'application/x-font-woff': (AssetType.FONT, 'woff'),
    'application/x-font-ttf': (AssetType.FONT, 'ttf'),
    'application/x-font-truetype': (AssetType.FONT, 'ttf'),
    'application/x-font-opentype': (AssetType.FONT, 'otf'),
    'application/vnd.ms-fontobject': (AssetType.FONT, 'eot'),
}

# Families decided by the major type alone
MAJOR_TYPES = {
    'image': AssetType.IMAGE,
    'video': AssetType.VIDEO,
    'audio': AssetType.AUDIO,
    'font': AssetType.FONT,
    'model': AssetType.MODEL_3D,
}

EXTENSIONS = {
    'glb': AssetType.MODEL_3D, 'gltf': AssetType.MODEL_3D, 'obj': AssetType.MODEL_3D,
    'fbx': AssetType.MODEL_3D, 'stl': AssetType.MODEL_3D, 'dae': AssetType.MODEL_3D,
    'usdz': AssetType.MODEL_3D, 'ply': AssetType.MODEL_3D, 'drc': AssetType.MODEL_3D,
    'hdr': AssetType.ENVIRONMENT_MAP, 'exr': AssetType.ENVIRONMENT_MAP,
    'ktx': AssetType.TEXTURE, 'ktx2': AssetType.TEXTURE, 'dds': AssetType.TEXTURE,
    'basis': AssetType.TEXTURE, 'pvr': AssetType.TEXTURE,
    'mp4': AssetType.VIDEO, 'webm': AssetType.VIDEO, 'mov': AssetType.VIDEO,
    'm4v': AssetType.VIDEO, 'avi': AssetType.VIDEO, 'ogv': AssetType.VIDEO,
    'mp3': AssetType.AUDIO, 'wav': AssetType.AUDIO, 'ogg': AssetType.AUDIO,
    'm4a': AssetType.AUDIO, 'aac': AssetType.AUDIO, 'flac': AssetType.AUDIO,
    'png': AssetType.IMAGE, 'jpg': AssetType.IMAGE, 'jpeg': AssetType.IMAGE,
    'gif': AssetType.IMAGE, 'svg': AssetType.IMAGE, 'webp': AssetType.IMAGE,
    'avif': AssetType.IMAGE, 'ico': AssetType.IMAGE, 'bmp': AssetType.IMAGE,
    'js': AssetType.JAVASCRIPT, 'mjs': AssetType.JAVASCRIPT, 'cjs': AssetType.JAVASCRIPT,
    'css': AssetType.STYLESHEET,
    'html': AssetType.HTML, 'htm': AssetType.HTML,
    'woff': AssetType.FONT, 'woff2': AssetType.FONT, 'ttf': AssetType.FONT,
    'otf': AssetType.FONT, 'eot': AssetType.FONT,
}

# (magic prefix, classification); checked in order
SIGNATURES = (
    (b'glTF', (AssetType.MODEL_3D, 'glb')),
    (b'\xabKTX 20\xbb\r\n\x1a\n', (AssetType.TEXTURE, 'ktx2')),
    (b'\xabKTX 11\xbb\r\n\x1a\n', (AssetType.TEXTURE, 'ktx')),
    (b'DDS ', (AssetType.TEXTURE, 'dds')),
    (b'PVR\x03', (AssetType.TEXTURE, 'pvr')),
    (b'sB\x00\x00', (AssetType.TEXTURE, 'basis')),
    (b'#?RADIANCE', (AssetType.ENVIRONMENT_MAP, 'hdr')),
    (b'#?RGBE', (AssetType.ENVIRONMENT_MAP, 'hdr')),
    (b'\x76\x2f\x31\x01', (AssetType.ENVIRONMENT_MAP, 'exr')),
    (b'\x89PNG\r\n\x1a\n', (AssetType.IMAGE, 'png')),
    (b'\xff\xd8\xff', (AssetType.IMAGE, 'jpeg')),
    (b'GIF87a', (AssetType.IMAGE, 'gif')),
    (b'GIF89a', (AssetType.IMAGE, 'gif')),
    (b'wOFF', (AssetType.FONT, 'woff')),
    (b'wOF2', (AssetType.FONT, 'woff2')),
)

# Containers only GPU pipelines use
SPECIALIZED_TYPES = frozenset({
    AssetType.MODEL_3D,
    AssetType.TEXTURE,
    AssetType.ENVIRONMENT_MAP,
})

TEXTURE_KEYWORDS = re.compile(
    r'(?:^|[/_.-])(textures?|normal(?:map)?|diffuse|specular|roughness|'
    r'albedo|metalness|metallic|basecolor)(?=[/_.-]|$)'
)
ENVMAP_KEYWORDS = re.compile(r'(?:^|[/_.-])(env(?:ironment)?[_-]?maps?|skybox|cubemap)(?=[/_.-]|$)')


def _split_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


def _url_path(url: str) -> str:
    return unquote(urlparse(url or '').path).lower()


def _extension(url: str) -> str:
    return os.path.splitext(_url_path(url))[1].lstrip('.')


def sniff(sampled_bytes: Optional[bytes]) -> Optional[Classification]:
    """Recognize a payload from its leading bytes, or return None."""
    if not sampled_bytes:
        return None

    data = bytes(sampled_bytes)
    for magic, classification in SIGNATURES:
        if data.startswith(magic):
            return classification

    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return AssetType.IMAGE, 'webp'

    # glTF JSON: an object carrying the mandatory "asset" property
    stripped = data.lstrip()
    if stripped.startswith(b'{') and b'"asset"' in stripped:
        return AssetType.MODEL_3D, 'gltf'

    return None


def _from_content_type(mime: str) -> Optional[Classification]:
    if mime in GENERIC_CONTENT_TYPES:
        return None
    if mime in CONTENT_TYPES:
        return CONTENT_TYPES[mime]

    major, _, minor = mime.partition('/')
    asset_type = MAJOR_TYPES.get(major)
    if asset_type is None:
        return None
    subtype = minor.split('+', 1)[0].replace('x-', '', 1) or 'unknown'
    return asset_type, subtype


def _from_extension(url: str) -> Optional[Classification]:
    ext = _extension(url)
    asset_type = EXTENSIONS.get(ext)
    if asset_type is None:
        return None
    return asset_type, 'jpeg' if ext == 'jpg' else ext


def _refine_image(url: str, classification: Classification,
                  sniffed: Optional[Classification]) -> Classification:
    """Upgrade a plain image to texture or environment map."""
    if sniffed and sniffed[0] in (AssetType.TEXTURE, AssetType.ENVIRONMENT_MAP):
        return sniffed

    path = _url_path(url)
    if ENVMAP_KEYWORDS.search(path):
        return AssetType.ENVIRONMENT_MAP, classification[1]
    if TEXTURE_KEYWORDS.search(path):
        return AssetType.TEXTURE, classification[1]
    return classification


def classify(url: str, content_type: Optional[str] = None,
             sampled_bytes: Optional[bytes] = None) -> Classification:
    """
    Classify a resource.

    An explicit content type wins. The URL extension is used when the content
    type is missing or generic. Byte sniffing only separates textures from
    plain images and catches 3D containers and HDR maps served with a generic
    content type.

    Args:
        url: Source URL of the resource
        content_type: Declared Content-Type header, parameters allowed
        sampled_bytes: Leading bytes of the body, may be empty

    Returns:
        Tuple of (AssetType, subtype); unrecognized input gives (OTHER, ...)
    """
    mime = _split_content_type(content_type)
    sniffed = sniff(sampled_bytes)

    declared = _from_content_type(mime)
    if declared is not None:
        if declared[0] is AssetType.IMAGE:
            return _refine_image(url, declared, sniffed)
        return declared

    if sniffed and sniffed[0] in SPECIALIZED_TYPES:
        return sniffed

    by_extension = _from_extension(url)
    if by_extension is not None:
        if by_extension[0] is AssetType.IMAGE:
            return _refine_image(url, by_extension, sniffed)
        return by_extension

    if sniffed is not None:
        return sniffed

    if mime and '/' in mime:
        return AssetType.OTHER, mime.split('/', 1)[1] or 'unknown'
    return AssetType.OTHER, _extension(url) or 'unknown'
