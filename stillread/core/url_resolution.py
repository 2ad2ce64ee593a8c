"""Resolution of references found in fetched markup.

Every resource-bearing reference (stylesheets, scripts, media, srcset
candidates, anchors, CSS url()/@import) is turned into an absolute URL so
the rewritten document no longer depends on the location it is served from.
"""

from __future__ import annotations

import re
from urllib.parse import urljoin, urlparse

# Schemes that must never be touched
OPAQUE_PREFIXES = ("data:", "blob:", "javascript:")

ABSOLUTE_PREFIXES = ("http://", "https://")

# data: payloads and in-document fragments (SVG paint servers, filters) stay as-is
CSS_URL_RE = re.compile(r"""url\(['"]?((?!data:|#)[^'")\s]+)['"]?\)""", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"""@import\s+['"]([^'"]+)['"]""", re.IGNORECASE)


def resolve(reference: str | None, base_url: str) -> str:
    """Resolve a reference against the document base URL.

    - data:, blob: and javascript: references pass through unchanged
    - protocol-relative references adopt the base URL's protocol
    - absolute http(s) references pass through unchanged
    - everything else is joined with the base; failures return the input
    """
    if not reference:
        return reference or ""

    lowered = reference.lstrip().lower()
    if lowered.startswith(OPAQUE_PREFIXES):
        return reference
    if reference.startswith("//"):
        scheme = urlparse(base_url).scheme or "https"
        return f"{scheme}:{reference}"
    if lowered.startswith(ABSOLUTE_PREFIXES):
        return reference

    try:
        return urljoin(base_url, reference)
    except ValueError:
        return reference


def resolve_srcset(srcset: str, base_url: str) -> str:
    """Resolve every candidate URL of a srcset value, keeping its descriptor."""
    if not srcset or srcset.lstrip().lower().startswith("data:"):
        return srcset

    candidates = []
    for entry in srcset.split(","):
        parts = entry.strip().split()
        if not parts:
            continue
        parts[0] = resolve(parts[0], base_url)
        candidates.append(" ".join(parts))
    return ", ".join(candidates)


def rewrite_css(css: str, base_url: str) -> str:
    """Resolve url() and @import references inside a CSS fragment."""
    if not css:
        return css

    def _url(match: re.Match[str]) -> str:
        return f"url('{resolve(match.group(1), base_url)}')"

    def _import(match: re.Match[str]) -> str:
        return f"@import '{resolve(match.group(1), base_url)}'"

    css = CSS_URL_RE.sub(_url, css)
    return CSS_IMPORT_RE.sub(_import, css)


def is_navigable_href(href: str | None) -> bool:
    """Whether an anchor href leaves the page (not a fragment, script or mail link)."""
    if not href:
        return False
    lowered = href.strip().lower()
    return not lowered.startswith(("#", "javascript:", "mailto:"))


def origin_of(url: str) -> str:
    """Return scheme://host[:port] for an absolute URL."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"
