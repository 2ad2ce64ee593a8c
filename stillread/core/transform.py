"""Document transform: fetch an article page and make it servable in a frame.

Pipeline:
1. fetch the page with a browser-like identity
2. parse the markup
3. detect SPA fingerprints and strip conflicting hydration scripts
4. resolve every resource reference against the page URL
5. force anchors to open in a new top-level context
6. inject the scroll observer (when an article id is given) and the
   runtime shim as the very first element of <head>
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from bs4 import BeautifulSoup, Tag

from stillread.core.errors import ProxyError, RewriteError
from stillread.core.fingerprints import (
    DEFAULT_RULES,
    FingerprintRule,
    build_rules,
    detect_spa,
    strip_conflicting_scripts,
)
from stillread.core.observer import OBSERVER_ATTR, generate_observer_script
from stillread.core.page_fetcher import PageFetcher, get_fetcher
from stillread.core.settings import Settings
from stillread.core.shim import (
    INTERCEPTOR_ATTR,
    OVERRIDES_ATTR,
    OVERRIDES_CSS,
    generate_interceptor_script,
)
from stillread.core.url_resolution import (
    is_navigable_href,
    origin_of,
    resolve,
    resolve_srcset,
    rewrite_css,
)

logger = logging.getLogger(__name__)

# (tag, attribute) pairs holding a single resource URL
RESOURCE_ATTRIBUTES: tuple[tuple[str, str], ...] = (
    ("link", "href"),
    ("script", "src"),
    ("img", "src"),
    ("source", "src"),
    ("video", "src"),
    ("audio", "src"),
    ("video", "poster"),
)

SRCSET_TAGS = ["img", "source"]

# Served document must be embeddable anywhere and readable cross-origin
DOCUMENT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "X-Frame-Options": "ALLOWALL",
    "Content-Security-Policy": "frame-ancestors *;",
}

INJECTED_ATTRS = (INTERCEPTOR_ATTR, OVERRIDES_ATTR, OBSERVER_ATTR)


@dataclass(frozen=True)
class RewriteContext:
    """Per-request values fixed once the page has been fetched."""

    base_url: str
    base_origin: str
    is_spa: bool


@dataclass
class RewrittenDocument:
    html: str
    target_url: str
    article_id: str | None
    is_spa: bool
    scripts_stripped: int = 0
    content_type: str = "text/html; charset=utf-8"


def _ensure_head(soup: BeautifulSoup) -> Tag:
    if soup.head is not None:
        return soup.head
    html = soup.html
    if html is None:
        html = soup.new_tag("html")
        for child in list(soup.contents):
            html.append(child.extract())
        soup.append(html)
    head = soup.new_tag("head")
    html.insert(0, head)
    return head


def _remove_previous_injections(soup: BeautifulSoup) -> None:
    for attr in INJECTED_ATTRS:
        for el in soup.find_all(attrs={attr: True}):
            el.decompose()


def _rewrite_references(soup: BeautifulSoup, base_url: str) -> None:
    for tag_name, attr in RESOURCE_ATTRIBUTES:
        for el in soup.find_all(tag_name, attrs={attr: True}):
            el[attr] = resolve(el[attr], base_url)

    for el in soup.find_all(SRCSET_TAGS, attrs={"srcset": True}):
        el["srcset"] = resolve_srcset(el["srcset"], base_url)

    for el in soup.find_all(style=True):
        el["style"] = rewrite_css(el["style"], base_url)

    for style in soup.find_all("style"):
        css = style.get_text()
        rewritten = rewrite_css(css, base_url)
        if rewritten != css:
            style.string = rewritten


def _rewrite_anchors(soup: BeautifulSoup, base_url: str) -> None:
    for a in soup.find_all("a", href=True):
        href = a["href"]
        if not is_navigable_href(href):
            continue
        a["href"] = resolve(href, base_url)
        a["target"] = "_blank"
        a["rel"] = "noopener noreferrer"


def _inject(soup: BeautifulSoup, target_url: str, base_origin: str, article_id: str | None) -> None:
    head = _ensure_head(soup)

    if article_id:
        observer = soup.new_tag("script", attrs={OBSERVER_ATTR: ""})
        observer.string = generate_observer_script(article_id)
        head.append(observer)

    # The shim must patch fetch/XHR/location before any page script runs
    shim = soup.new_tag("script", attrs={INTERCEPTOR_ATTR: ""})
    shim.string = generate_interceptor_script(target_url, base_origin)
    overrides = soup.new_tag("style", attrs={OVERRIDES_ATTR: ""})
    overrides.string = OVERRIDES_CSS
    head.insert(0, shim)
    head.insert(1, overrides)


def rewrite_document(
    html: str,
    target_url: str,
    article_id: str | None = None,
    *,
    base_url: str | None = None,
    rules: Iterable[FingerprintRule] = DEFAULT_RULES,
) -> RewrittenDocument:
    """Rewrite fetched markup into a self-contained, frame-embeddable document.

    Args:
        html: Markup as fetched from the origin
        target_url: URL the article was requested under (reported by the shim)
        article_id: Enables the scroll observer when given
        base_url: URL relative references resolve against (defaults to target_url)
        rules: SPA fingerprint rule table

    Raises:
        RewriteError: If the markup cannot be parsed or rewritten
    """
    base_url = base_url or target_url
    rules = tuple(rules)

    try:
        soup = BeautifulSoup(html, "lxml")
        ctx = RewriteContext(
            base_url=base_url,
            base_origin=origin_of(base_url),
            is_spa=detect_spa(soup, rules),
        )

        _remove_previous_injections(soup)

        stripped = 0
        if ctx.is_spa:
            stripped = strip_conflicting_scripts(soup, rules)

        _rewrite_references(soup, ctx.base_url)
        _rewrite_anchors(soup, ctx.base_url)
        _inject(soup, target_url, ctx.base_origin, article_id)

        output = str(soup)
    except ProxyError:
        raise
    except Exception as e:
        logger.exception(f"Failed to rewrite {target_url}")
        raise RewriteError("Failed to rewrite document") from e

    return RewrittenDocument(
        html=output,
        target_url=target_url,
        article_id=article_id,
        is_spa=ctx.is_spa,
        scripts_stripped=stripped,
    )


async def transform(
    target_url: str,
    article_id: str | None = None,
    *,
    fetcher: PageFetcher | None = None,
    settings: Settings | None = None,
) -> RewrittenDocument:
    """Fetch an article page and rewrite it for the reader frame.

    Raises:
        InputError: If target_url is missing or not absolute
        UpstreamFetchError: If the origin fails or answers non-success
        RewriteError: If the markup cannot be rewritten
    """
    fetcher = fetcher or get_fetcher()
    rules = build_rules(settings or Settings.from_env())

    page = await fetcher.fetch_page(target_url)
    document = rewrite_document(
        page.html,
        page.url,
        article_id,
        base_url=page.final_url,
        rules=rules,
    )
    logger.info(
        f"Transformed {page.url} (spa={document.is_spa}, "
        f"stripped={document.scripts_stripped}, observer={bool(article_id)})"
    )
    return document
