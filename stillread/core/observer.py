"""Scroll observer injected into rewritten documents.

Reports reading position (0-100) to the host frame and the progress
endpoint, debounced; restores a saved position on request.
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import quote

from stillread.core.script_templates import render_script

OBSERVER_ATTR = "data-stillread-observer"

# Scroll events reset this timer; only quiet periods emit an update
DEBOUNCE_MS = 2000
# Wait for late-loading content before scrolling to a restored position
RESTORE_DELAY_MS = 500

# Completion thresholds (percent)
COMPLETED_THRESHOLD = 98.0
UNREAD_THRESHOLD = 0.0


class MessageType(str, Enum):
    """Messages exchanged between the host window and the embedded frame."""

    SCROLL = "stillread-scroll"
    READY = "stillread-ready"
    RESTORE = "stillread-restore"


class CompletionStatus(str, Enum):
    UNREAD = "unread"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


def clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, float(value)))


def scroll_percent(scroll_top: float, scroll_height: float, viewport_height: float) -> float:
    """Reading position as the in-page script computes it.

    A document no taller than the viewport counts as fully read.
    """
    max_scroll = scroll_height - viewport_height
    if max_scroll <= 0:
        return 100.0
    return clamp_percent((scroll_top / max_scroll) * 100)


def restore_offset(percent: float, scroll_height: float, viewport_height: float) -> float:
    """Pixel offset to scroll to for a saved percentage."""
    max_scroll = max(0.0, scroll_height - viewport_height)
    return (clamp_percent(percent) / 100) * max_scroll


def completion_status_for(scroll_position: float) -> CompletionStatus:
    if scroll_position >= COMPLETED_THRESHOLD:
        return CompletionStatus.COMPLETED
    if scroll_position <= UNREAD_THRESHOLD:
        return CompletionStatus.UNREAD
    return CompletionStatus.IN_PROGRESS


def progress_path(article_id: str) -> str:
    return f"/articles/{quote(article_id, safe='')}/progress"


def generate_observer_script(article_id: str) -> str:
    """Render the observer's JavaScript for one article."""
    return render_script(
        "observer.js.j2",
        article_id=article_id,
        progress_url=progress_path(article_id),
        debounce_ms=DEBOUNCE_MS,
        restore_delay_ms=RESTORE_DELAY_MS,
        msg_scroll=MessageType.SCROLL.value,
        msg_ready=MessageType.READY.value,
        msg_restore=MessageType.RESTORE.value,
    )
