"""Tests for reference extraction."""

from site_cloner.crawler.extractor import AssetExtractor, is_tracking_url


BASE = "https://example.com/"


class TestAssetExtractor:
    def setup_method(self):
        self.extractor = AssetExtractor(BASE)

    def test_links_split_internal_and_external(self):
        html = """
        <a href="/about#team">About</a>
        <a href="https://www.example.com/blog/">Blog</a>
        <a href="https://other.org/">Other</a>
        <a href="mailto:hi@example.com">Mail</a>
        <a href="javascript:void(0)">JS</a>
        """
        assets = self.extractor.extract(html, BASE)
        assert assets.internal_links == {
            "https://example.com/about",
            "https://www.example.com/blog",
        }
        assert assets.external_links == {"https://other.org/"}

    def test_resources_are_collected(self):
        html = """
        <head>
          <link rel="stylesheet" href="css/site.css">
          <link rel="modulepreload" href="/assets/vendor.js">
          <link rel="preload" as="font" href="/fonts/inter.woff2">
          <link rel="icon" href="/favicon.ico">
        </head>
        <body style="background-image: url('/img/hero.jpg')">
          <img src="/img/a.png" srcset="/img/a-2x.png 2x, /img/a-3x.png 3x">
          <img data-src="/img/lazy.webp">
          <video src="/media/intro.mp4" poster="/img/poster.jpg"></video>
          <model-viewer src="/models/shoe.glb" environment-image="/env/studio.hdr"></model-viewer>
          <style>@font-face { src: url(/fonts/display.woff); }</style>
        </body>
        """
        assets = self.extractor.extract(html, BASE)
        assert "https://example.com/css/site.css" in assets.stylesheets
        assert "https://example.com/assets/vendor.js" in assets.scripts
        assert "https://example.com/fonts/inter.woff2" in assets.fonts
        assert "https://example.com/fonts/display.woff" in assets.fonts
        assert {
            "https://example.com/favicon.ico",
            "https://example.com/img/hero.jpg",
            "https://example.com/img/a.png",
            "https://example.com/img/a-2x.png",
            "https://example.com/img/a-3x.png",
            "https://example.com/img/lazy.webp",
            "https://example.com/img/poster.jpg",
        } <= assets.images
        assert "https://example.com/media/intro.mp4" in assets.media
        assert "https://example.com/models/shoe.glb" in assets.models
        assert "https://example.com/env/studio.hdr" in assets.other_assets
        assert not any(url.startswith("data:") for url in assets.all_assets())

    def test_css_assets_resolve_against_stylesheet(self):
        css = """
        @import "theme.css";
        .hero { background: url("../img/hero.png"); }
        .icon { background: url(data:image/svg+xml;base64,AAAA); }
        """
        found = self.extractor.extract_css_assets(css, "https://example.com/css/main.css")
        assert found == {
            "https://example.com/css/theme.css",
            "https://example.com/img/hero.png",
        }

    def test_js_assets_are_same_site_only(self):
        js = """
        const model = "/models/robot.glb";
        const env = './env/sky.hdr';
        const cdn = "https://cdn.other.org/lib.js";
        import("./chunks/route-a.js");
        const id = "lodash.js";
        """
        found = self.extractor.extract_js_assets(js, "https://example.com/js/app.js")
        assert found == {
            "https://example.com/models/robot.glb",
            "https://example.com/js/env/sky.hdr",
            "https://example.com/js/chunks/route-a.js",
        }


def test_tracking_hosts():
    """Analytics and social hosts are recognized including subdomains."""
    assert is_tracking_url("https://www.google-analytics.com/analytics.js")
    assert is_tracking_url("https://connect.facebook.com/sdk.js")
    assert not is_tracking_url("https://example.com/analytics.js")
