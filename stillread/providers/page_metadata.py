"""Title and favicon lookup for newly saved articles."""

from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from stillread.core.errors import UpstreamFetchError
from stillread.core.page_fetcher import PageFetcher, get_fetcher
from stillread.core.url_resolution import origin_of, resolve
from stillread.providers.content_types import PageMetadata

logger = logging.getLogger(__name__)


def default_favicon(url: str) -> str:
    return f"{origin_of(url)}/favicon.ico"


def extract_page_metadata(html: str, url: str) -> PageMetadata:
    """Pick a title and favicon out of page markup.

    Title: <title>, then og:title, then the URL itself.
    Favicon: first icon link resolved against the origin, else /favicon.ico.
    """
    soup = BeautifulSoup(html or "", "lxml")

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title:
        og = soup.find("meta", attrs={"property": "og:title"})
        if og and og.get("content"):
            title = og["content"].strip()

    favicon = ""
    for link in soup.find_all("link", href=True):
        rel = [r.lower() for r in (link.get("rel") or [])]
        if "icon" in rel:
            favicon = resolve(link["href"], origin_of(url) + "/")
            break

    return PageMetadata(title=title or url, favicon=favicon or default_favicon(url))


async def fetch_page_metadata(url: str, fetcher: PageFetcher | None = None) -> PageMetadata:
    """Fetch a page and extract its metadata, falling back to defaults on failure."""
    fetcher = fetcher or get_fetcher()
    try:
        page = await fetcher.fetch_page(url)
    except UpstreamFetchError as e:
        logger.warning(f"Metadata fetch failed for {url}: {e.message}")
        return PageMetadata(title=url, favicon=default_favicon(url))
    return extract_page_metadata(page.html, url)
