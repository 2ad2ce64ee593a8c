"""Content types for saved articles and push registrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from stillread.core.observer import CompletionStatus


@dataclass(frozen=True)
class Article:
    """A saved article and its reading position."""

    id: str
    url: str
    title: str
    favicon: str = ""
    scroll_position: float = 0.0  # 0-100
    completion_status: CompletionStatus = CompletionStatus.UNREAD
    last_updated_at: str = ""  # ISO timestamp
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape the host UI consumes."""
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "favicon": self.favicon,
            "scrollPosition": self.scroll_position,
            "completionStatus": self.completion_status.value,
            "lastUpdatedAt": self.last_updated_at,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class PageMetadata:
    """Title and favicon scraped from an article page."""

    title: str
    favicon: str


@dataclass(frozen=True)
class PushSubscription:
    """A browser push registration as sent by the host UI."""

    endpoint: str
    keys: dict[str, str] = field(default_factory=dict)
    expiration_time: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PushSubscription:
        return cls(
            endpoint=str(data.get("endpoint") or ""),
            keys=dict(data.get("keys") or {}),
            expiration_time=data.get("expirationTime"),
        )
