"""Tests for build-tool detection."""

from site_cloner.crawler.detector import (
    BuildSignals,
    BuildToolDetector,
    BuildToolFingerprint,
    UNKNOWN_FINGERPRINT,
)
from site_cloner.crawler.extractor import AssetExtractor


def analyze(**kwargs):
    return BuildToolDetector().analyze(BuildSignals(**kwargs))


class TestBuildToolDetector:
    def test_no_signals_is_unknown(self):
        """Nothing detected gives unknown with confidence exactly 0."""
        result = analyze()
        assert result == UNKNOWN_FINGERPRINT
        assert result.tool == "unknown"
        assert result.confidence == 0.0
        assert not result.is_confident

    def test_vite_dev_client_beats_vue(self):
        """The dev-server client outranks a framework-level Vue marker."""
        result = analyze(
            has_vue=True,
            script_sources=["https://x.com/@vite/client", "https://x.com/src/main.ts"],
        )
        assert result.tool == "vite"
        assert result.confidence >= 0.9

    def test_vite_flag_beats_webpack(self):
        """With both bundler flags set, the more specific one wins."""
        result = analyze(has_vite=True, has_webpack=True)
        assert result.tool == "vite"
        assert result.confidence == 0.9

    def test_webpack_wins_tie_with_framework(self):
        """Equal confidence goes to the bundler-level detector."""
        result = analyze(has_angular=True, has_webpack=True)
        assert result.tool == "webpack"
        assert result.confidence == 0.8

    def test_create_react_app_chunks(self):
        result = analyze(
            has_react=True,
            has_webpack=True,
            script_sources=["https://x.com/static/js/main.4f1c2a.chunk.js"],
        )
        assert result.tool == "create-react-app"
        assert result.confidence == 0.9
        assert 'has_react' in result.signals

    def test_vue_cli_vendor_chunks(self):
        result = analyze(
            has_vue=True,
            script_sources=["https://x.com/js/chunk-vendors.js", "https://x.com/js/app.js"],
        )
        assert result.tool == "vue-cli"
        assert result.confidence >= 0.8

    def test_create_react_app_runtime(self):
        result = analyze(
            has_react=True,
            script_sources=["https://x.com/static/js/runtime-main.js", "https://x.com/static/js/chunk.js"],
        )
        assert result.tool == "create-react-app"
        assert result.confidence >= 0.8

    def test_vue_alone(self):
        result = analyze(has_vue=True)
        assert result.tool == "vue-cli"
        assert result.is_confident

    def test_vue_cli_hashed_bundle(self):
        result = analyze(has_vue=True, script_sources=["https://x.com/js/app.3fa9c21b.js"])
        assert result.tool == "vue-cli"
        assert result.confidence == 0.9

    def test_next_data(self):
        result = analyze(has_next=True, script_sources=["https://x.com/_next/static/chunks/main.js"])
        assert result.tool == "next"
        assert result.confidence == 0.95

    def test_every_match_reaches_its_threshold(self):
        """Candidate confidences respect the per-tool minimum."""
        signals = BuildSignals(has_vue=True, has_react=True, has_webpack=True, has_nuxt=True)
        detector = BuildToolDetector()
        for fingerprint, _ in detector.candidates(signals):
            minimum = 0.9 if fingerprint.tool == "vite" else 0.8
            assert fingerprint.confidence >= minimum

    def test_fingerprint_round_trip(self):
        fingerprint = BuildToolFingerprint("vite", 0.95, ("dev_client",))
        assert BuildToolFingerprint.from_dict(fingerprint.to_dict()) == fingerprint


class TestSignalsFromMarkup:
    def test_vite_dev_page(self):
        """A page served by the Vite dev server is detected as vite."""
        html = """
        <html><head>
          <script type="module" src="/@vite/client"></script>
          <script type="module" src="/src/main.js"></script>
        </head><body><div id="app"></div></body></html>
        """
        signals = AssetExtractor("https://x.com/").extract_signals(html, "https://x.com/")
        assert signals.dev_client
        assert signals.has_vue
        assert BuildToolDetector().analyze(signals).tool == "vite"

    def test_nuxt_markers(self):
        html = """
        <html><body><div id="__nuxt"></div>
        <script>window.__NUXT__={}</script>
        <script src="/_nuxt/entry.js"></script></body></html>
        """
        signals = AssetExtractor("https://x.com/").extract_signals(html, "https://x.com/")
        assert signals.has_nuxt
        assert BuildToolDetector().analyze(signals).tool == "nuxt"

    def test_static_page_is_unknown(self):
        html = "<html><body><p>Hello</p><script src='/site.js'></script></body></html>"
        signals = AssetExtractor("https://x.com/").extract_signals(html, "https://x.com/")
        assert signals.active_flags() == []
        assert BuildToolDetector().analyze(signals) == UNKNOWN_FINGERPRINT

    def test_merge_keeps_both_observations(self):
        static = BuildSignals(has_react=True, script_sources=["a.js"])
        runtime = BuildSignals(has_webpack=True, script_sources=["a.js", "b.js"])
        merged = static.merge(runtime)
        assert merged.has_react and merged.has_webpack
        assert merged.script_sources == ["a.js", "b.js"]
