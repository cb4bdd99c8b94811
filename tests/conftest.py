"""Shared fixtures: an in-memory fetcher and a small fixture site."""

import asyncio
import threading

import pytest

from site_cloner.crawler.downloader import FetchResponse
from site_cloner.crawler.models import FetchError
from site_cloner.utils.config import ClonerConfig


ROOT = "https://example.com/"

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 24
JPEG_BYTES = b'\xff\xd8\xff\xe0' + b'\x00' * 24
GLB_BYTES = b'glTF\x02\x00\x00\x00' + b'\x00' * 24
KTX2_BYTES = b'\xabKTX 20\xbb\r\n\x1a\n' + b'\x00' * 24

INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Fixture</title>
  <link rel="stylesheet" href="/css/main.css">
  <script src="/js/app.js"></script>
</head>
<body>
  <a href="/about">About</a>
  <img src="/images/logo.png" alt="logo">
  <img src="/missing.png" alt="gone">
  <model-viewer src="/models/chair.glb"></model-viewer>
</body>
</html>
"""

ABOUT_HTML = """<!DOCTYPE html>
<html>
<body>
  <a href="/">Home</a>
  <a href="/team">Team</a>
  <img src="/images/logo.png">
</body>
</html>
"""

TEAM_HTML = "<!DOCTYPE html><html><body><p>Team</p></body></html>"

MAIN_CSS = 'body { background: url("../images/bg.jpg") no-repeat; }'

APP_JS = 'const texture = loader.load("/textures/wood.ktx2");'


class FakeFetcher:
    """
    Fetcher serving canned responses.

    ``routes`` maps URLs to ``(content_type, body)``; unknown URLs answer
    404. URLs in ``slow`` block until ``gate`` (a threading.Event) is set,
    which works from both the test loop and the service loop thread.
    """

    def __init__(self, routes, slow=(), gate=None):
        self.routes = dict(routes)
        self.slow = set(slow)
        self.gate = gate
        self.requests = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def fetch(self, url):
        self.requests.append(url)
        if url in self.slow and self.gate is not None:
            while not self.gate.is_set():
                await asyncio.sleep(0.01)

        route = self.routes.get(url)
        if route is None:
            raise FetchError(url, "HTTP 404")

        content_type, body = route
        if isinstance(body, str):
            body = body.encode('utf-8')
        return FetchResponse(url=url, final_url=url, status=200, content_type=content_type, body=body)


def build_site():
    return {
        ROOT: ('text/html; charset=utf-8', INDEX_HTML),
        'https://example.com/about': ('text/html', ABOUT_HTML),
        'https://example.com/team': ('text/html', TEAM_HTML),
        'https://example.com/css/main.css': ('text/css', MAIN_CSS),
        'https://example.com/js/app.js': ('application/javascript', APP_JS),
        'https://example.com/images/logo.png': ('image/png', PNG_BYTES),
        'https://example.com/images/bg.jpg': ('image/jpeg', JPEG_BYTES),
        'https://example.com/models/chair.glb': ('application/octet-stream', GLB_BYTES),
        'https://example.com/textures/wood.ktx2': ('application/octet-stream', KTX2_BYTES),
    }


@pytest.fixture
def site_routes():
    return build_site()


@pytest.fixture
def gate():
    return threading.Event()


@pytest.fixture
def config(tmp_path):
    return ClonerConfig(
        output_root=str(tmp_path / "cloned"),
        download_concurrency=3,
        global_download_limit=4,
        session_timeout_seconds=10,
    )


def drain(queue):
    """Return every item currently waiting in an asyncio queue."""
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items
