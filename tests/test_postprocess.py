"""Tests for post-processing of a finished crawl."""

import io
import json
import os
import threading

import pytest
from PIL import Image

from site_cloner.crawler.detector import UNKNOWN_FINGERPRINT
from site_cloner.crawler.models import (
    AssetType,
    CrawlOptions,
    DiscoveredAsset,
    DownloadStatus,
    ProcessingStopped,
)
from site_cloner.crawler.postprocess import MANIFEST, ORIGINALS_DIR, PostProcessor
from site_cloner.crawler.rewrite import LinkRewriter


BASE = "https://example.com/"

PAGES = {
    BASE: "index.html",
    "https://example.com/about": "about/index.html",
}

MAPPING = {
    BASE: "index.html",
    "https://example.com/about": "about/index.html",
    "https://example.com/css/main.css": "assets/stylesheet/main.css",
    "https://example.com/images/logo.png": "assets/image/logo.png",
    "https://example.com/images/bg.jpg": "assets/image/bg.jpg",
}


def gradient_jpeg():
    image = Image.new('RGB', (64, 64))
    image.putdata([(x * 4, y * 4, (x + y) * 2) for y in range(64) for x in range(64)])
    buffer = io.BytesIO()
    image.save(buffer, 'JPEG', quality=100, subsampling=0)
    return buffer.getvalue()


def asset(url, asset_type, status=DownloadStatus.DOWNLOADED):
    return DiscoveredAsset(
        url=url,
        asset_type=asset_type,
        status=status,
        local_path=MAPPING.get(url) if status is DownloadStatus.DOWNLOADED else None,
        failure_reason="HTTP 404" if status is DownloadStatus.FAILED else None,
    )


@pytest.fixture
def site(tmp_path):
    out = tmp_path / "site"
    files = {
        "index.html": (
            '<html><head><link rel="stylesheet" href="/css/main.css"></head>'
            '<body><a href="/about">About</a><img src="/images/logo.png">'
            '<img src="/gone.png"></body></html>'
        ),
        "about/index.html": '<html><body><a href="/">Home</a><img src="images/logo.png"></body></html>',
        "assets/stylesheet/main.css": 'body { background: url("../images/bg.jpg"); }',
    }
    for relative, content in files.items():
        path = out / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    (out / "assets" / "image").mkdir(parents=True, exist_ok=True)
    (out / "assets" / "image" / "logo.png").write_bytes(b'\x89PNG\r\n\x1a\n')
    (out / "assets" / "image" / "bg.jpg").write_bytes(gradient_jpeg())

    assets = [
        asset("https://example.com/css/main.css", AssetType.STYLESHEET),
        asset("https://example.com/images/logo.png", AssetType.IMAGE),
        asset("https://example.com/images/bg.jpg", AssetType.IMAGE),
        asset("https://example.com/gone.png", AssetType.IMAGE, DownloadStatus.FAILED),
    ]
    return out, assets


def processor(site, halt=None, **options):
    out, assets = site
    return PostProcessor(
        output_dir=str(out),
        base_url=BASE,
        options=CrawlOptions(**options),
        pages=PAGES,
        assets=assets,
        url_mapping=MAPPING,
        fingerprint=UNKNOWN_FINGERPRINT,
        halt=halt,
    )


class TestRewrite:
    def test_pages_and_css_point_at_local_copies(self, site):
        out, _ = site
        processor(site).rewrite_references()

        index = (out / "index.html").read_text()
        assert 'href="assets/stylesheet/main.css"' in index
        assert 'src="assets/image/logo.png"' in index
        assert 'href="about/index.html"' in index
        assert 'src="https://example.com/gone.png"' in index

        about = (out / "about" / "index.html").read_text()
        assert 'src="../assets/image/logo.png"' in about
        assert 'href="../index.html"' in about

        css = (out / "assets" / "stylesheet" / "main.css").read_text()
        assert 'url("../image/bg.jpg")' in css

    def test_rewrite_is_repeatable(self, site):
        """Running again starts from the saved originals."""
        out, _ = site
        processor(site).rewrite_references()
        first = (out / "index.html").read_text()
        processor(site).rewrite_references()

        assert (out / "index.html").read_text() == first
        assert (out / ORIGINALS_DIR / "index.html").exists()


class TestSteps:
    def test_run_reports_progress_and_writes_manifest(self, site):
        out, _ = site
        seen = []
        summary = processor(site).run(seen.append)

        assert seen == [0.5, 1.0]
        assert summary['rewritten'] == 3

        manifest = json.loads((out / "manifest.json").read_text())
        assert manifest['source'] == BASE
        assert manifest['buildTool']['tool'] == "unknown"
        assert manifest['counts'] == {'stylesheet': 1, 'image': 2}
        assert manifest['failed'] == [{'url': "https://example.com/gone.png", 'reason': "HTTP 404"}]

    def test_halted_run_writes_nothing(self, site):
        out, _ = site
        before = (out / "index.html").read_text()
        halt = threading.Event()
        halt.set()

        with pytest.raises(ProcessingStopped):
            processor(site, halt=halt).run()

        assert (out / "index.html").read_text() == before
        assert not (out / MANIFEST).exists()

    def test_halt_between_files(self, site):
        """A stop raised mid-step leaves the remaining files untouched."""
        out, _ = site
        halt = threading.Event()
        proc = processor(site, halt=halt)
        write = proc._write

        def write_then_halt(relative_path, content):
            write(relative_path, content)
            halt.set()

        proc._write = write_then_halt
        with pytest.raises(ProcessingStopped):
            proc.run()

        assert 'href="assets/stylesheet/main.css"' in (out / "index.html").read_text()
        assert 'href="/"' in (out / "about" / "index.html").read_text()
        assert not (out / MANIFEST).exists()

    def test_service_worker(self, site):
        out, _ = site
        processor(site, generate_service_worker=True).run()

        worker = (out / "sw.js").read_text()
        assert "'./assets/image/logo.png'" not in worker
        assert '"./assets/image/logo.png"' in worker
        assert '"./about/index.html"' in worker

        about = (out / "about" / "index.html").read_text()
        assert "register('../sw.js')" in about

    def test_optimize_images(self, site):
        """Oversized JPEGs are recompressed; unreadable files are left alone."""
        out, _ = site
        before = os.path.getsize(out / "assets" / "image" / "bg.jpg")

        assert processor(site).optimize_images() == 1

        assert os.path.getsize(out / "assets" / "image" / "bg.jpg") < before
        assert (out / "assets" / "image" / "logo.png").read_bytes() == b'\x89PNG\r\n\x1a\n'


def test_srcset_and_inline_styles():
    rewriter = LinkRewriter(BASE, MAPPING)
    html = (
        '<img srcset="/images/logo.png 1x, /images/other.png 2x">'
        '<div style="background: url(/images/bg.jpg)"></div>'
    )
    result = rewriter.rewrite_html(html, BASE, "index.html")
    assert 'srcset="assets/image/logo.png 1x, /images/other.png 2x"' in result
    assert 'url("assets/image/bg.jpg")' in result
