"""Push registrations and reading nudges.

Delivery of push messages is handled outside this service; here we only keep
registrations and decide which articles deserve a "resume reading" nudge.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable

from stillread.providers.content_types import Article, PushSubscription

logger = logging.getLogger(__name__)

NUDGE_TITLE = "StillRead"


class SubscriptionStore(ABC):
    """Where push registrations live."""

    @abstractmethod
    def add(self, subscription: PushSubscription) -> None:
        """Register a subscription. Re-registering an endpoint replaces its keys."""

    @abstractmethod
    def list(self) -> list[PushSubscription]:
        """All registered subscriptions."""


class InMemorySubscriptionStore(SubscriptionStore):
    """Process-local registrations; lost on restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, PushSubscription] = {}

    def add(self, subscription: PushSubscription) -> None:
        with self._lock:
            self._subscriptions[subscription.endpoint] = subscription

    def list(self) -> list[PushSubscription]:
        with self._lock:
            return list(self._subscriptions.values())


class SqliteSubscriptionStore(SubscriptionStore):
    """Registrations persisted in the push_subscriptions table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(self, subscription: PushSubscription) -> None:
        self.conn.execute(
            """
            INSERT INTO push_subscriptions(endpoint, keys_json, expiration_time)
            VALUES(?, ?, ?)
            ON CONFLICT(endpoint) DO UPDATE SET
                keys_json = excluded.keys_json,
                expiration_time = excluded.expiration_time
            """,
            (subscription.endpoint, json.dumps(subscription.keys), subscription.expiration_time),
        )
        self.conn.commit()

    def list(self) -> list[PushSubscription]:
        cur = self.conn.execute(
            "SELECT endpoint, keys_json, expiration_time FROM push_subscriptions ORDER BY created_at"
        )
        return [
            PushSubscription(
                endpoint=r[0],
                keys=json.loads(r[1]) if r[1] else {},
                expiration_time=r[2],
            )
            for r in cur.fetchall()
        ]


@dataclass(frozen=True)
class Nudge:
    """A "resume reading" reminder for one article."""

    article_id: str
    title: str
    body: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "articleId": self.article_id,
            "title": self.title,
            "body": self.body,
            "url": self.url,
        }


def build_nudge(article: Article) -> Nudge:
    return Nudge(
        article_id=article.id,
        title=NUDGE_TITLE,
        body=(
            f"You left off at {round(article.scroll_position)}% of "
            f'"{article.title}". Resume reading?'
        ),
        url=article.url,
    )


def build_nudges(stale_articles: Iterable[Article]) -> list[Nudge]:
    nudges = [build_nudge(a) for a in stale_articles]
    logger.info(f"Built {len(nudges)} reading nudges")
    return nudges


_subscription_store: SubscriptionStore | None = None


def init_subscription_store(store: SubscriptionStore | None = None) -> None:
    global _subscription_store
    _subscription_store = store or InMemorySubscriptionStore()


def get_subscription_store() -> SubscriptionStore:
    global _subscription_store
    if _subscription_store is None:
        _subscription_store = InMemorySubscriptionStore()
    return _subscription_store
