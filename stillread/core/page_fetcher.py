"""Upstream fetching for the proxy and the relay.

One fetcher owns a lazily created httpx.AsyncClient with a browser-like
identity. Pages go through fetch_page(); secondary resources requested by
the embedded page go through relay(), which passes bytes through untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from bs4 import UnicodeDammit

from stillread.core.errors import InputError, UpstreamFetchError
from stillread.core.settings import Settings

logger = logging.getLogger(__name__)

# Maximum page size to rewrite (10MB)
MAX_CONTENT_SIZE = 10 * 1024 * 1024

PAGE_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
ACCEPT_LANGUAGE = "en-US,en;q=0.5"


def validate_target_url(url: str | None) -> str:
    """Check that a target URL is present and absolute http(s).

    Raises:
        InputError: If the URL is missing or not absolute
    """
    if not url or not url.strip():
        raise InputError("Missing url parameter")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InputError(f"Invalid url parameter: {url}")
    return url


def _decode_markup(response: httpx.Response) -> str:
    """Decode page bytes, honouring a charset declared only in <meta>."""
    if response.charset_encoding:
        return response.text
    return UnicodeDammit(response.content, is_html=True).unicode_markup or ""


@dataclass
class FetchedPage:
    """An HTML page fetched from its origin server."""

    url: str
    final_url: str
    status_code: int
    html: str


@dataclass
class RelayResponse:
    """Raw upstream response handed back to the embedded page."""

    status_code: int
    content: bytes
    content_type: str
    cache_control: str | None = None


class PageFetcher:
    """Fetches article pages and relays resource requests."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or Settings.from_env()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.fetch_timeout),
                follow_redirects=True,
                limits=httpx.Limits(max_connections=20),
                headers={
                    "User-Agent": self._settings.user_agent,
                    "Accept-Language": ACCEPT_LANGUAGE,
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise UpstreamFetchError(
                f"Request timed out after {self._settings.fetch_timeout}s", 504
            ) from None
        except httpx.RequestError as e:
            raise UpstreamFetchError(f"Connection error: {e}", 502) from e

    async def fetch_page(self, url: str) -> FetchedPage:
        """Fetch an article page.

        Args:
            url: Absolute URL of the article

        Returns:
            FetchedPage with the decoded markup

        Raises:
            InputError: If the URL is not absolute http(s)
            UpstreamFetchError: On network failure or non-success status
        """
        url = validate_target_url(url)
        response = await self._send("GET", url, headers={"Accept": PAGE_ACCEPT})

        if not response.is_success:
            logger.warning(f"Upstream returned {response.status_code} for {url}")
            raise UpstreamFetchError(
                f"Failed to fetch: {response.status_code}", response.status_code
            )

        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_CONTENT_SIZE:
            raise UpstreamFetchError(f"Content too large: {content_length} bytes", 502)

        return FetchedPage(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            html=_decode_markup(response),
        )

    async def relay(
        self,
        url: str,
        *,
        method: str = "GET",
        body: bytes | None = None,
        content_type: str | None = None,
        accept: str | None = None,
    ) -> RelayResponse:
        """Forward a resource request upstream and return the raw response.

        Non-success upstream statuses are passed through, not raised.
        POST bodies and their content type are forwarded verbatim.
        """
        url = validate_target_url(url)
        headers = {
            "Accept": accept or "*/*",
            "Referer": f"{urlparse(url).scheme}://{urlparse(url).netloc}/",
        }
        if method == "POST":
            headers["Content-Type"] = content_type or "application/json"

        response = await self._send(method, url, headers=headers, content=body)
        logger.debug(f"Relayed {method} {url} -> {response.status_code}")

        return RelayResponse(
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            cache_control=response.headers.get("cache-control"),
        )


# Module-level instance for convenience
_fetcher: PageFetcher | None = None


def get_fetcher() -> PageFetcher:
    """Get or create the module-level PageFetcher instance."""
    global _fetcher
    if _fetcher is None:
        _fetcher = PageFetcher()
    return _fetcher


async def close_fetcher() -> None:
    global _fetcher
    if _fetcher is not None:
        await _fetcher.close()
        _fetcher = None
