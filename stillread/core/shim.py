"""Runtime shim injected as the first element of every rewritten document.

The shim runs inside the embedded page and:
- sends the page's fetch/XHR traffic through the relay
- reports the article URL from window.location so client routers render it
- absorbs history.pushState/replaceState
- hides the fact that the page is framed

classify_outbound() / rewrite_outbound() are the decision table the
in-page script applies to every outbound URL; the template mirrors them.
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import quote, urljoin

from stillread.core.script_templates import render_script
from stillread.core.url_resolution import origin_of

RELAY_PATH = "/relay"
PROXY_PATH = "/proxy"

INTERCEPTOR_ATTR = "data-stillread-interceptor"
OVERRIDES_ATTR = "data-stillread-overrides"

OVERRIDES_CSS = "html { scroll-behavior: smooth; }"

# Same safe set as encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


class OutboundClass(str, Enum):
    """How the shim treats an outbound URL."""

    RELAY = "relay"  # already addressed to the relay or proxy
    PASSTHROUGH = "passthrough"  # data:, blob:, non-string
    ABSOLUTE = "absolute"
    PROTOCOL_RELATIVE = "protocol_relative"
    RELATIVE = "relative"


def _is_relayed(url: str, relay_origin: str) -> bool:
    for path in (RELAY_PATH, PROXY_PATH):
        for prefix in (path, relay_origin + path if relay_origin else None):
            if prefix and (url == prefix or url.startswith(prefix + "?")):
                return True
    return False


def classify_outbound(url: str | None, relay_origin: str = "") -> OutboundClass:
    if not url or not isinstance(url, str):
        return OutboundClass.PASSTHROUGH
    if _is_relayed(url, relay_origin):
        return OutboundClass.RELAY
    if url.startswith(("data:", "blob:")):
        return OutboundClass.PASSTHROUGH
    if url.startswith(("http://", "https://")):
        return OutboundClass.ABSOLUTE
    if url.startswith("//"):
        return OutboundClass.PROTOCOL_RELATIVE
    return OutboundClass.RELATIVE


def relay_url(absolute_url: str, relay_origin: str = "") -> str:
    """Address an absolute URL to the relay endpoint."""
    return f"{relay_origin}{RELAY_PATH}?url={quote(absolute_url, safe=_URI_COMPONENT_SAFE)}"


def rewrite_outbound(url: str | None, base_origin: str, relay_origin: str = "") -> str | None:
    """Return the URL the embedded page should actually request.

    Args:
        url: URL passed to fetch/XHR by the embedded page
        base_origin: Origin of the original article
        relay_origin: Origin the rewritten document is served from

    Returns:
        The relay URL, or the input unchanged for relay/passthrough URLs
    """
    kind = classify_outbound(url, relay_origin)
    if kind == OutboundClass.ABSOLUTE:
        return relay_url(url, relay_origin)
    if kind == OutboundClass.PROTOCOL_RELATIVE:
        return relay_url("https:" + url, relay_origin)
    if kind == OutboundClass.RELATIVE:
        try:
            return relay_url(urljoin(base_origin + "/", url), relay_origin)
        except ValueError:
            return url
    return url


def generate_interceptor_script(target_url: str, base_origin: str | None = None) -> str:
    """Render the shim's JavaScript for one proxied document."""
    return render_script(
        "interceptor.js.j2",
        base_origin=base_origin or origin_of(target_url),
        target_url=target_url,
        relay_path=RELAY_PATH,
        proxy_path=PROXY_PATH,
    )
