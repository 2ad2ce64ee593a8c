from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from stillread.core.observer import CompletionStatus, clamp_percent, completion_status_for
from stillread.core.settings import Settings
from stillread.providers.content_types import Article

logger = logging.getLogger(__name__)

ArticleListener = Callable[[list[Article]], None]


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS articles (
  id TEXT PRIMARY KEY,
  url TEXT NOT NULL,
  title TEXT NOT NULL,
  favicon TEXT DEFAULT '',
  scroll_position REAL NOT NULL DEFAULT 0,
  completion_status TEXT NOT NULL DEFAULT 'unread',
  last_updated_at TEXT NOT NULL,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_updated ON articles(last_updated_at);
CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(completion_status);

CREATE TABLE IF NOT EXISTS push_subscriptions (
  endpoint TEXT PRIMARY KEY,
  keys_json TEXT,
  expiration_time REAL,
  created_at TEXT DEFAULT (datetime('now'))
);
"""

ARTICLE_COLUMNS = (
    "id, url, title, favicon, scroll_position, completion_status, last_updated_at, created_at"
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_article(row: sqlite3.Row) -> Article:
    return Article(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        favicon=row["favicon"] or "",
        scroll_position=row["scroll_position"] or 0.0,
        completion_status=CompletionStatus(row["completion_status"] or "unread"),
        last_updated_at=row["last_updated_at"],
        created_at=row["created_at"],
    )


@dataclass
class DB:
    conn: sqlite3.Connection
    _listeners: list[ArticleListener] = field(default_factory=list, repr=False)

    def init(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    # ==================== Change subscription ====================

    def subscribe(self, callback: ArticleListener) -> Callable[[], None]:
        """Call `callback` with the full article list after every change.

        Returns:
            Function that removes the subscription
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        articles = self.list_articles()
        for listener in list(self._listeners):
            try:
                listener(articles)
            except Exception as e:
                # A broken listener must not fail the write
                logger.warning(f"Article listener failed: {e}")

    # ==================== Articles ====================

    def list_articles(self) -> list[Article]:
        """All articles, most recently updated first."""
        cur = self.conn.execute(
            f"SELECT {ARTICLE_COLUMNS} FROM articles ORDER BY last_updated_at DESC"
        )
        return [_row_to_article(r) for r in cur.fetchall()]

    def get_article(self, article_id: str) -> Article | None:
        cur = self.conn.execute(
            f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE id = ?",
            (article_id,),
        )
        row = cur.fetchone()
        return _row_to_article(row) if row else None

    def add_article(self, url: str, title: str, favicon: str = "") -> Article:
        """Save a new unread article at position 0."""
        now = utc_now()
        article_id = str(uuid.uuid4())
        self.conn.execute(
            """
            INSERT INTO articles(id, url, title, favicon, scroll_position,
                                 completion_status, last_updated_at, created_at)
            VALUES(?, ?, ?, ?, 0, ?, ?, ?)
            """,
            (article_id, url, title, favicon, CompletionStatus.UNREAD.value, now, now),
        )
        self.conn.commit()
        self._notify()
        return self.get_article(article_id)  # type: ignore[return-value]

    def update_progress(self, article_id: str, scroll_position: float) -> Article | None:
        """Store a reading position and derive the completion status.

        Positions may move backwards; status follows the latest position.

        Returns:
            Updated article, or None if it does not exist
        """
        position = clamp_percent(scroll_position)
        status = completion_status_for(position)
        cur = self.conn.execute(
            """
            UPDATE articles
            SET scroll_position = ?, completion_status = ?, last_updated_at = ?
            WHERE id = ?
            """,
            (position, status.value, utc_now(), article_id),
        )
        self.conn.commit()
        if cur.rowcount == 0:
            return None
        self._notify()
        return self.get_article(article_id)

    def delete_article(self, article_id: str) -> bool:
        """Delete an article. Returns True if found and deleted."""
        cur = self.conn.execute("DELETE FROM articles WHERE id = ?", (article_id,))
        self.conn.commit()
        deleted = cur.rowcount > 0
        if deleted:
            self._notify()
        return deleted

    def get_stale_in_progress(self, hours_threshold: int = 24) -> list[Article]:
        """In-progress articles not touched for `hours_threshold` hours."""
        cutoff = (datetime.now(timezone.utc) - timedelta(hours=hours_threshold)).isoformat()
        cur = self.conn.execute(
            f"""
            SELECT {ARTICLE_COLUMNS} FROM articles
            WHERE completion_status = ? AND last_updated_at < ?
            ORDER BY last_updated_at DESC
            """,
            (CompletionStatus.IN_PROGRESS.value, cutoff),
        )
        return [_row_to_article(r) for r in cur.fetchall()]

    def get_most_recent_in_progress(self) -> Article | None:
        cur = self.conn.execute(
            f"""
            SELECT {ARTICLE_COLUMNS} FROM articles
            WHERE completion_status = ?
            ORDER BY last_updated_at DESC
            LIMIT 1
            """,
            (CompletionStatus.IN_PROGRESS.value,),
        )
        row = cur.fetchone()
        return _row_to_article(row) if row else None


_db: DB | None = None


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    global _db

    s = Settings.from_env()
    if s.db_path != ":memory:":
        os.makedirs(os.path.dirname(s.db_path) or ".", exist_ok=True)

    _db = DB(conn=connect(s.db_path))
    _db.init()


def get_db() -> DB:
    assert _db is not None, "DB not initialized"
    return _db
