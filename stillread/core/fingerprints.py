"""SPA fingerprint rule table.

Sites like Substack serve fully server-rendered article HTML, then hydrate a
client-side app whose router sees the proxy URL instead of the article path
and replaces the body with a not-found shell. Pages carrying a known
fingerprint get their hydration scripts removed so the server-rendered
content stays intact.

Detection is an allow-list matched against what the page loads or declares
(script sources, link targets, meta content), never its text or anchors.
Unlisted platforms are not detected, and pages without any page marker never
lose a script.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from bs4 import BeautifulSoup

if TYPE_CHECKING:
    from stillread.core.settings import Settings

logger = logging.getLogger(__name__)


class RuleTarget(str, Enum):
    """What a marker is matched against."""

    PAGE = "page"  # raw markup, flags the page as SPA
    SCRIPT_SRC = "script_src"  # src attribute of external scripts
    INLINE_SCRIPT = "inline_script"  # body of inline scripts


class RuleAction(str, Enum):
    FLAG_SPA = "flag_spa"
    STRIP = "strip"


@dataclass(frozen=True)
class FingerprintRule:
    marker: str
    target: RuleTarget
    action: RuleAction


DEFAULT_RULES: tuple[FingerprintRule, ...] = (
    # Platforms
    FingerprintRule("substackcdn.com/bundle", RuleTarget.PAGE, RuleAction.FLAG_SPA),
    FingerprintRule("substack.com", RuleTarget.PAGE, RuleAction.FLAG_SPA),
    # Framework runtime bundles, module-loader chunks, error tracking
    FingerprintRule("substackcdn.com/bundle", RuleTarget.SCRIPT_SRC, RuleAction.STRIP),
    FingerprintRule("webpack", RuleTarget.SCRIPT_SRC, RuleAction.STRIP),
    FingerprintRule("_next/static", RuleTarget.SCRIPT_SRC, RuleAction.STRIP),
    FingerprintRule("sentry", RuleTarget.SCRIPT_SRC, RuleAction.STRIP),
    # Hydration entry points, virtual-DOM mounts, preloaded state
    FingerprintRule("__NEXT_DATA__", RuleTarget.INLINE_SCRIPT, RuleAction.STRIP),
    FingerprintRule("__next", RuleTarget.INLINE_SCRIPT, RuleAction.STRIP),
    FingerprintRule("hydrateRoot", RuleTarget.INLINE_SCRIPT, RuleAction.STRIP),
    FingerprintRule("ReactDOM", RuleTarget.INLINE_SCRIPT, RuleAction.STRIP),
    FingerprintRule("window.__preloaded", RuleTarget.INLINE_SCRIPT, RuleAction.STRIP),
    FingerprintRule("webpackChunk", RuleTarget.INLINE_SCRIPT, RuleAction.STRIP),
)


def build_rules(settings: Settings | None = None) -> tuple[FingerprintRule, ...]:
    """Return the default rule table extended with markers from settings."""
    if settings is None:
        return DEFAULT_RULES

    extra: list[FingerprintRule] = []
    extra.extend(
        FingerprintRule(m, RuleTarget.PAGE, RuleAction.FLAG_SPA) for m in settings.spa_page_markers
    )
    extra.extend(
        FingerprintRule(m, RuleTarget.SCRIPT_SRC, RuleAction.STRIP)
        for m in settings.spa_script_src_markers
    )
    extra.extend(
        FingerprintRule(m, RuleTarget.INLINE_SCRIPT, RuleAction.STRIP)
        for m in settings.spa_inline_markers
    )
    return DEFAULT_RULES + tuple(extra)


def _markers(rules: Iterable[FingerprintRule], target: RuleTarget) -> list[str]:
    return [r.marker for r in rules if r.target == target]


def _resource_locations(soup: BeautifulSoup) -> list[str]:
    locations = [s["src"] for s in soup.find_all("script", src=True)]
    locations.extend(link["href"] for link in soup.find_all("link", href=True))
    locations.extend(meta["content"] for meta in soup.find_all("meta", content=True))
    return locations


def detect_spa(
    markup: str | BeautifulSoup,
    rules: Iterable[FingerprintRule] = DEFAULT_RULES,
) -> bool:
    """Whether the page loads or declares a known SPA platform.

    A page that merely mentions or links to a platform is not flagged.
    """
    markers = _markers(rules, RuleTarget.PAGE)
    if not markers:
        return False
    soup = BeautifulSoup(markup, "lxml") if isinstance(markup, str) else markup
    return any(marker in loc for loc in _resource_locations(soup) for marker in markers)


def strip_conflicting_scripts(
    soup: BeautifulSoup,
    rules: Iterable[FingerprintRule] = DEFAULT_RULES,
) -> int:
    """Remove hydration scripts matched by the rule table.

    Only call this for pages flagged by detect_spa().

    Returns:
        Number of script elements removed
    """
    rules = tuple(rules)
    src_markers = _markers(rules, RuleTarget.SCRIPT_SRC)
    inline_markers = _markers(rules, RuleTarget.INLINE_SCRIPT)
    removed = 0

    for script in soup.find_all("script"):
        src = script.get("src")
        if src is not None:
            if any(marker in src for marker in src_markers):
                logger.debug(f"Stripping framework bundle {src}")
                script.decompose()
                removed += 1
            continue

        body = script.string or script.get_text() or ""
        if any(marker in body for marker in inline_markers):
            script.decompose()
            removed += 1

    return removed
