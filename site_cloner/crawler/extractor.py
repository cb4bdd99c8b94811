"""
Reference extractor for HTML, CSS and JavaScript.

Uses BeautifulSoup to find page links, linked resources and the build-tool
signals of a page, and regular expressions to find further assets inside
stylesheets and scripts.
"""

import re
from dataclasses import dataclass, field
from typing import Set, List

from bs4 import BeautifulSoup, FeatureNotFound

from .detector import BuildSignals
from ..utils.constants import TRACKING_DOMAINS
from ..utils.log import get_logger
from ..utils.paths import normalize_url, is_same_domain, get_domain


# Attributes used by lazy-loading libraries
LAZY_ATTRIBUTES = ('data-src', 'data-lazy', 'data-original', 'data-bg', 'data-background')

CSS_URL_PATTERN = re.compile(r'url\s*\(\s*["\']?([^"\')\s]+)["\']?\s*\)')
CSS_IMPORT_PATTERN = re.compile(r'@import\s+["\']([^"\']+)["\']|@import\s+url\(\s*["\']?([^"\')\s]+)["\']?\s*\)')

JS_ASSET_EXTENSIONS = (
    'css', 'js', 'mjs', 'png', 'jpg', 'jpeg', 'gif', 'svg', 'webp', 'avif',
    'woff', 'woff2', 'ttf', 'otf', 'glb', 'gltf', 'hdr', 'exr', 'ktx2', 'ktx',
    'basis', 'mp4', 'webm', 'mp3', 'wav', 'ogg',
)
JS_STRING_PATTERN = re.compile(
    r'["\'`]((?:https?:)?(?:/|\./|\.\./)?[\w\-./%@~]+\.(?:' + '|'.join(JS_ASSET_EXTENSIONS) +
    r'))(?:\?[^"\'`\s]*)?["\'`]',
    re.IGNORECASE
)
JS_DYNAMIC_IMPORT = re.compile(r'import\(\s*["\'`]([^"\'`]+)["\'`]\s*\)')

# Static-markup build signals
VITE_SCRIPT_MARKERS = ('/@vite/', '/.vite/')
NEXT_SCRIPT_MARKERS = ('/_next/',)
NUXT_SCRIPT_MARKERS = ('/_nuxt/',)
WEBPACK_SCRIPT_MARKERS = ('webpack', 'runtime~', 'vendors~', 'chunk.', '-chunk', '/chunk')


def make_soup(html: str) -> BeautifulSoup:
    """Parse with lxml when installed, otherwise with the stdlib parser."""
    try:
        return BeautifulSoup(html, 'lxml')
    except FeatureNotFound:
        return BeautifulSoup(html, 'html.parser')


def is_tracking_url(url: str) -> bool:
    """True for analytics and social hosts that are never downloaded."""
    host = get_domain(url)
    return any(host == domain or host.endswith('.' + domain) for domain in TRACKING_DOMAINS)


@dataclass
class ExtractedAssets:
    """Container for extracted assets and links."""

    # Internal page links to crawl
    internal_links: Set[str] = field(default_factory=set)

    # External links (for reference, not crawled)
    external_links: Set[str] = field(default_factory=set)

    stylesheets: Set[str] = field(default_factory=set)
    scripts: Set[str] = field(default_factory=set)
    images: Set[str] = field(default_factory=set)
    fonts: Set[str] = field(default_factory=set)
    media: Set[str] = field(default_factory=set)
    models: Set[str] = field(default_factory=set)
    other_assets: Set[str] = field(default_factory=set)

    def all_assets(self) -> Set[str]:
        """Get all asset URLs combined."""
        return (
            self.stylesheets |
            self.scripts |
            self.images |
            self.fonts |
            self.media |
            self.models |
            self.other_assets
        )


class AssetExtractor:
    """
    Extracts assets and links from HTML content.

    Finds images, stylesheets, scripts, fonts, media and 3D models, plus the
    framework markers used for build-tool detection.
    """

    def __init__(self, base_url: str):
        """
        Initialize the asset extractor.

        Args:
            base_url: Root URL of the site; decides which links are internal
        """
        self.base_url = base_url
        self.logger = get_logger("extractor")

    def extract(self, html: str, page_url: str) -> ExtractedAssets:
        """
        Extract all assets and links from HTML content.

        Args:
            html: HTML content to parse
            page_url: URL of the page (for resolving relative URLs)

        Returns:
            ExtractedAssets object containing all found resources
        """
        assets = ExtractedAssets()
        soup = make_soup(html)

        self._extract_links(soup, page_url, assets)
        self._extract_stylesheets(soup, page_url, assets)
        self._extract_scripts(soup, page_url, assets)
        self._extract_images(soup, page_url, assets)
        self._extract_media(soup, page_url, assets)
        self._extract_models(soup, page_url, assets)
        self._extract_style_tags(soup, page_url, assets)

        self.logger.debug(
            f"Extracted from {page_url}: "
            f"{len(assets.internal_links)} links, "
            f"{len(assets.all_assets())} assets"
        )

        return assets

    def _add(self, bucket: Set[str], url: str, page_url: str) -> None:
        if not url or url.startswith('data:'):
            return
        full_url = normalize_url(url, page_url)
        if full_url:
            bucket.add(full_url)

    def _extract_links(self, soup, page_url, assets):
        """Extract anchor links from the page."""
        for anchor in soup.find_all('a', href=True):
            href = anchor.get('href', '').strip()
            full_url = normalize_url(href, page_url)
            if not full_url:
                continue

            if is_same_domain(full_url, self.base_url):
                assets.internal_links.add(full_url)
            else:
                assets.external_links.add(full_url)

    def _extract_stylesheets(self, soup, page_url, assets):
        """Extract stylesheet links and preloaded resources."""
        for link in soup.find_all('link', href=True):
            rel_value = link.get('rel', [])
            # bs4 splits rel="stylesheet preload" into a list
            if isinstance(rel_value, list):
                rel_values = [v.lower() for v in rel_value]
            else:
                rel_values = rel_value.lower().split()

            href = link.get('href', '').strip()
            as_value = (link.get('as') or '').lower()

            if 'stylesheet' in rel_values or as_value == 'style':
                self._add(assets.stylesheets, href, page_url)
            elif 'modulepreload' in rel_values or as_value == 'script':
                self._add(assets.scripts, href, page_url)
            elif as_value == 'font':
                self._add(assets.fonts, href, page_url)
            elif as_value == 'image' or any('icon' in v for v in rel_values):
                self._add(assets.images, href, page_url)
            elif 'manifest' in rel_values:
                self._add(assets.other_assets, href, page_url)

    def _extract_scripts(self, soup, page_url, assets):
        for script in soup.find_all('script', src=True):
            self._add(assets.scripts, script.get('src', '').strip(), page_url)

    def _extract_images(self, soup, page_url, assets):
        """Extract image sources including srcset and lazy-load attributes."""
        for img in soup.find_all('img'):
            self._add(assets.images, img.get('src', '').strip(), page_url)
            for url in self._parse_srcset(img.get('srcset', '')):
                self._add(assets.images, url, page_url)

        for source in soup.find_all('source', srcset=True):
            for url in self._parse_srcset(source.get('srcset', '')):
                self._add(assets.images, url, page_url)

        for attribute in LAZY_ATTRIBUTES:
            for elem in soup.find_all(attrs={attribute: True}):
                self._add(assets.images, elem.get(attribute, '').strip(), page_url)

        # Background images in style attributes
        for elem in soup.find_all(style=True):
            for url in self.extract_css_urls(elem.get('style', '')):
                self._add(assets.images, url, page_url)

    def _extract_media(self, soup, page_url, assets):
        """Extract video and audio sources."""
        for tag in soup.find_all(['video', 'audio']):
            self._add(assets.media, tag.get('src', '').strip(), page_url)
            poster = tag.get('poster', '').strip()
            if poster:
                self._add(assets.images, poster, page_url)

        for source in soup.find_all('source', src=True):
            self._add(assets.media, source.get('src', '').strip(), page_url)

        for track in soup.find_all('track', src=True):
            self._add(assets.other_assets, track.get('src', '').strip(), page_url)

    def _extract_models(self, soup, page_url, assets):
        """Extract <model-viewer> models and environment images."""
        for viewer in soup.find_all('model-viewer'):
            for attribute in ('src', 'ios-src'):
                self._add(assets.models, viewer.get(attribute, '').strip(), page_url)
            for attribute in ('environment-image', 'skybox-image', 'poster'):
                self._add(assets.other_assets, viewer.get(attribute, '').strip(), page_url)

    def _extract_style_tags(self, soup, page_url, assets):
        """Extract URLs from inline <style> tags."""
        for style in soup.find_all('style'):
            if not style.string:
                continue
            for url in self.extract_css_assets(style.string, page_url):
                lower_url = url.lower()
                if any(ext in lower_url for ext in ('.woff', '.ttf', '.otf', '.eot')):
                    assets.fonts.add(url)
                elif url.endswith('.css'):
                    assets.stylesheets.add(url)
                else:
                    assets.images.add(url)

    def _parse_srcset(self, srcset: str) -> List[str]:
        """
        Parse a srcset attribute.

        Args:
            srcset: srcset attribute value

        Returns:
            List of URLs without their size descriptors
        """
        urls = []
        for part in (srcset or '').split(','):
            pieces = part.strip().split()
            if pieces and not pieces[0].startswith('data:'):
                urls.append(pieces[0])
        return urls

    def extract_css_urls(self, css: str) -> List[str]:
        """Return the raw url() references of a CSS fragment."""
        return [
            match.group(1).strip()
            for match in CSS_URL_PATTERN.finditer(css or '')
            if not match.group(1).strip().startswith('data:')
        ]

    def extract_css_assets(self, css_content: str, css_url: str) -> Set[str]:
        """
        Extract asset URLs from CSS file content.

        Args:
            css_content: CSS file content
            css_url: URL of the CSS file (for resolving relative URLs)

        Returns:
            Set of absolute asset URLs, including @import targets
        """
        found: Set[str] = set()

        for url in self.extract_css_urls(css_content):
            self._add(found, url, css_url)

        for match in CSS_IMPORT_PATTERN.finditer(css_content or ''):
            self._add(found, match.group(1) or match.group(2), css_url)

        return found

    def extract_js_assets(self, js_content: str, js_url: str) -> Set[str]:
        """
        Extract asset-looking string literals and dynamic imports from a script.

        Only same-site URLs are returned; bundles often embed CDN and API
        strings that are not part of the site.

        Args:
            js_content: JavaScript source
            js_url: URL of the script

        Returns:
            Set of absolute URLs
        """
        found: Set[str] = set()
        candidates = [m.group(1) for m in JS_STRING_PATTERN.finditer(js_content or '')]
        candidates.extend(m.group(1) for m in JS_DYNAMIC_IMPORT.finditer(js_content or ''))

        for candidate in candidates:
            if '/' not in candidate and not candidate.startswith('.'):
                # Bare names like "a.js" are usually module ids, not URLs
                continue
            full_url = normalize_url(candidate, js_url)
            if full_url and is_same_domain(full_url, self.base_url):
                found.add(full_url)

        return found

    def extract_signals(self, html: str, page_url: str) -> BuildSignals:
        """
        Collect build-tool signals from static page markup.

        Args:
            html: Page HTML
            page_url: URL of the page

        Returns:
            BuildSignals with framework flags and ordered script sources
        """
        soup = make_soup(html)

        scripts: List[str] = []
        for script in soup.find_all('script', src=True):
            url = normalize_url(script.get('src', '').strip(), page_url)
            if url and url not in scripts:
                scripts.append(url)
        for link in soup.find_all('link', rel=True, href=True):
            rel_values = [v.lower() for v in link.get('rel', [])]
            if 'modulepreload' in rel_values:
                url = normalize_url(link.get('href', '').strip(), page_url)
                if url and url not in scripts:
                    scripts.append(url)

        inline = ' '.join(s.string or '' for s in soup.find_all('script', src=False))
        lowered = [s.lower() for s in scripts]

        def scripts_contain(markers):
            return any(marker in s for s in lowered for marker in markers)

        generators = [
            meta.get('content', '').strip()
            for meta in soup.find_all('meta', attrs={'name': 'generator'})
            if meta.get('content')
        ]

        has_vue_attr = soup.find(
            lambda tag: any(attr.startswith('data-v-') for attr in tag.attrs)
        ) is not None

        return BuildSignals(
            has_vue=has_vue_attr or soup.select_one('#app, [data-v-app]') is not None,
            has_react=soup.select_one('[data-reactroot], #root') is not None,
            has_vite=scripts_contain(VITE_SCRIPT_MARKERS),
            has_angular=soup.select_one('[ng-version], [ng-app], app-root') is not None,
            has_webpack='webpackJsonp' in inline or 'webpackChunk' in inline
                        or scripts_contain(WEBPACK_SCRIPT_MARKERS),
            has_next=soup.find(id='__NEXT_DATA__') is not None
                     or scripts_contain(NEXT_SCRIPT_MARKERS),
            has_nuxt='__NUXT__' in inline or soup.find(id='__nuxt') is not None
                     or scripts_contain(NUXT_SCRIPT_MARKERS),
            dev_client=scripts_contain(('/@vite/client',)),
            script_sources=scripts,
            meta_generators=generators,
        )
