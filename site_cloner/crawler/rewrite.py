"""
Link rewriter for converting URLs to local relative paths.

Consumes the URL to path table of a session and rewrites page markup and
stylesheets so every downloaded resource is referenced locally.
"""

import re
from typing import Dict, Optional

from .extractor import make_soup, LAZY_ATTRIBUTES
from ..utils.log import get_logger
from ..utils.paths import get_relative_path, normalize_url


# (tag, attribute) pairs holding a single URL
URL_ATTRIBUTES = (
    ('a', 'href'),
    ('link', 'href'),
    ('script', 'src'),
    ('img', 'src'),
    ('iframe', 'src'),
    ('video', 'src'),
    ('video', 'poster'),
    ('audio', 'src'),
    ('source', 'src'),
    ('track', 'src'),
    ('model-viewer', 'src'),
    ('model-viewer', 'ios-src'),
    ('model-viewer', 'environment-image'),
    ('model-viewer', 'skybox-image'),
    ('model-viewer', 'poster'),
)

SKIPPED_PREFIXES = ('#', 'javascript:', 'mailto:', 'tel:', 'data:', 'blob:')


class LinkRewriter:
    """
    Rewrites URLs in HTML and CSS to local relative paths.

    References without a local counterpart are made absolute so the offline
    copy still points at the live site.
    """

    CSS_URL_PATTERN = re.compile(r'url\s*\(\s*["\']?([^"\')\s]+)["\']?\s*\)')
    CSS_IMPORT_PATTERN = re.compile(r'(@import\s+)(["\'])([^"\']+)\2')

    def __init__(self, base_url: str, url_mapping: Dict[str, str]):
        """
        Initialize the link rewriter.

        Args:
            base_url: Root URL of the website
            url_mapping: URL to output-relative path table
        """
        self.base_url = base_url
        self.url_mapping = url_mapping
        self.logger = get_logger("rewriter")

    def _local_reference(self, url: str, context_url: str, context_path: str) -> Optional[str]:
        """
        Relative path from a file to the local copy of ``url``.

        Args:
            url: Reference as written in the file
            context_url: Original URL of the referencing file
            context_path: Output-relative path of the referencing file

        Returns:
            Relative reference, or None if the target was not downloaded
        """
        full_url = normalize_url(url, context_url)
        if not full_url:
            return None

        local_path = self.url_mapping.get(full_url)
        if not local_path:
            return None

        return get_relative_path(context_path, local_path)

    def _rewrite_value(self, value: str, page_url: str, page_path: str) -> str:
        value = value.strip()
        if not value or value.startswith(SKIPPED_PREFIXES):
            return value
        local = self._local_reference(value, page_url, page_path)
        if local:
            return local
        return normalize_url(value, page_url) or value

    def rewrite_html(self, html: str, page_url: str, page_path: str) -> str:
        """
        Rewrite all references in a page.

        Args:
            html: HTML content to rewrite
            page_url: Original URL of the page
            page_path: Output-relative path of the page

        Returns:
            Rewritten HTML content
        """
        soup = make_soup(html)

        for tag_name, attribute in URL_ATTRIBUTES:
            for tag in soup.find_all(tag_name, attrs={attribute: True}):
                tag[attribute] = self._rewrite_value(tag[attribute], page_url, page_path)

        for attribute in LAZY_ATTRIBUTES:
            for tag in soup.find_all(attrs={attribute: True}):
                tag[attribute] = self._rewrite_value(tag[attribute], page_url, page_path)

        for tag in soup.find_all(['img', 'source'], srcset=True):
            tag['srcset'] = self._rewrite_srcset(tag['srcset'], page_url, page_path)

        for elem in soup.find_all(style=True):
            elem['style'] = self.rewrite_css(elem['style'], page_url, page_path)

        for style in soup.find_all('style'):
            if style.string:
                style.string = self.rewrite_css(style.string, page_url, page_path)

        # A <base> tag would redirect every relative reference
        for base in soup.find_all('base'):
            base.decompose()

        return str(soup)

    def _rewrite_srcset(self, srcset: str, page_url: str, page_path: str) -> str:
        new_parts = []

        for part in srcset.split(','):
            pieces = part.strip().split()
            if not pieces:
                continue

            url = pieces[0]
            if not url.startswith('data:'):
                url = self._local_reference(url, page_url, page_path) or url
            new_parts.append(' '.join([url] + pieces[1:]))

        return ', '.join(new_parts)

    def rewrite_css(self, css: str, css_url: str, css_path: str) -> str:
        """
        Rewrite url() and @import references in CSS.

        Args:
            css: CSS content
            css_url: URL context for resolving relative references
            css_path: Output-relative path of the file holding the CSS

        Returns:
            CSS with rewritten references
        """
        def replace_url(match):
            url = match.group(1).strip()
            if url.startswith('data:'):
                return match.group(0)
            local = self._local_reference(url, css_url, css_path)
            return f'url("{local}")' if local else match.group(0)

        def replace_import(match):
            local = self._local_reference(match.group(3), css_url, css_path)
            if not local:
                return match.group(0)
            return f'{match.group(1)}{match.group(2)}{local}{match.group(2)}'

        css = self.CSS_URL_PATTERN.sub(replace_url, css)
        return self.CSS_IMPORT_PATTERN.sub(replace_import, css)

    def inject_script(self, html: str, snippet: str) -> str:
        """Append an inline script to the end of the page body."""
        soup = make_soup(html)
        script = soup.new_tag('script')
        script.string = snippet
        target = soup.body or soup.html or soup
        target.append(script)
        return str(soup)
