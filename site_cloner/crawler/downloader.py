"""
HTTP fetcher for pages and assets.

Uses aiohttp with one client session per crawl. Every failure is reported as
a FetchError carrying a short reason, so callers can record it per asset.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import aiohttp
from aiohttp import ClientTimeout, ClientError, TooManyRedirects

from .models import FetchError
from ..utils.constants import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from ..utils.log import get_logger
from ..utils.paths import is_http_url


@dataclass
class FetchResponse:
    """A successful (2xx) response body with its metadata."""

    url: str
    final_url: str
    status: int
    content_type: Optional[str]
    body: bytes

    @property
    def size(self) -> int:
        return len(self.body)

    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')


class AssetDownloader:
    """
    Downloads website resources asynchronously.

    Used as an async context manager so the underlying client session lives
    exactly as long as the crawl that owns it.
    """

    MAX_REDIRECTS = 10

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        max_redirects: int = MAX_REDIRECTS,
        max_body_size: Optional[int] = None
    ):
        """
        Initialize the downloader.

        Args:
            timeout: Total request timeout in seconds
            user_agent: User agent string for requests
            max_redirects: Redirects followed before the request is abandoned
            max_body_size: Optional cap on response size in bytes
        """
        self.timeout = ClientTimeout(total=timeout)
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self.max_body_size = max_body_size
        self.logger = get_logger("downloader")
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "AssetDownloader":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent}
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(self, url: str) -> FetchResponse:
        """
        Fetch one URL.

        Args:
            url: Absolute http(s) URL

        Returns:
            FetchResponse for a 2xx answer

        Raises:
            FetchError: On disallowed scheme, network error, timeout,
                redirect loop, oversized body or non-2xx status
        """
        if not is_http_url(url):
            raise FetchError(url, "disallowed scheme")
        if self._session is None:
            raise RuntimeError("AssetDownloader must be entered before fetching")

        try:
            async with self._session.get(
                url,
                allow_redirects=True,
                max_redirects=self.max_redirects
            ) as response:
                if not 200 <= response.status < 300:
                    raise FetchError(url, f"HTTP {response.status}")

                if (self.max_body_size is not None
                        and response.content_length is not None
                        and response.content_length > self.max_body_size):
                    raise FetchError(url, f"body larger than {self.max_body_size} bytes")

                body = await response.read()
                self.logger.debug(f"Fetched {url} ({len(body)} bytes)")

                return FetchResponse(
                    url=url,
                    final_url=str(response.url),
                    status=response.status,
                    content_type=response.headers.get('Content-Type'),
                    body=body
                )

        except TooManyRedirects:
            raise FetchError(url, "redirect loop")
        except asyncio.TimeoutError:
            raise FetchError(url, "timeout")
        except ClientError as e:
            raise FetchError(url, f"network error: {e.__class__.__name__}")
