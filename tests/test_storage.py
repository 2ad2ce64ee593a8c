"""Tests for storage.py"""

from datetime import datetime, timedelta, timezone

import pytest

from stillread.core.observer import CompletionStatus
from stillread.core.storage import DB, connect


@pytest.fixture
def db():
    """In-memory article store with schema."""
    store = DB(conn=connect(":memory:"))
    store.init()
    return store


def _age(db, article_id, hours):
    """Push an article's last update into the past."""
    old = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()
    db.conn.execute("UPDATE articles SET last_updated_at = ? WHERE id = ?", (old, article_id))
    db.conn.commit()


class TestArticles:
    """Tests for article CRUD."""

    def test_add_article(self, db):
        article = db.add_article("https://site.example/a", "A", "https://site.example/favicon.ico")

        assert article.id
        assert article.url == "https://site.example/a"
        assert article.scroll_position == 0
        assert article.completion_status == CompletionStatus.UNREAD
        assert article.created_at == article.last_updated_at

    def test_get_article(self, db):
        article = db.add_article("https://site.example/a", "A")
        assert db.get_article(article.id) == article

    def test_get_nonexistent_article(self, db):
        assert db.get_article("missing") is None

    def test_list_most_recent_first(self, db):
        first = db.add_article("https://site.example/1", "One")
        second = db.add_article("https://site.example/2", "Two")
        _age(db, second.id, 2)

        assert [a.id for a in db.list_articles()] == [first.id, second.id]

    def test_duplicate_urls_allowed(self, db):
        db.add_article("https://site.example/a", "A")
        db.add_article("https://site.example/a", "A")
        assert len(db.list_articles()) == 2

    def test_delete_article(self, db):
        article = db.add_article("https://site.example/a", "A")
        assert db.delete_article(article.id) is True
        assert db.get_article(article.id) is None
        assert db.delete_article(article.id) is False

    def test_to_dict_is_camel_case(self, db):
        d = db.add_article("https://site.example/a", "A").to_dict()
        assert d["scrollPosition"] == 0
        assert d["completionStatus"] == "unread"
        assert set(d) == {
            "id", "url", "title", "favicon", "scrollPosition",
            "completionStatus", "lastUpdatedAt", "createdAt",
        }


class TestProgress:
    """Tests for update_progress() status transitions."""

    @pytest.mark.parametrize(
        "position, status",
        [
            (99, CompletionStatus.COMPLETED),
            (0, CompletionStatus.UNREAD),
            (40, CompletionStatus.IN_PROGRESS),
        ],
    )
    def test_transition_from_unread(self, db, position, status):
        article = db.add_article("https://site.example/a", "A")
        updated = db.update_progress(article.id, position)

        assert updated.scroll_position == position
        assert updated.completion_status == status

    def test_backwards_scroll_reopens(self, db):
        article = db.add_article("https://site.example/a", "A")
        db.update_progress(article.id, 100)
        updated = db.update_progress(article.id, 30)
        assert updated.completion_status == CompletionStatus.IN_PROGRESS

    def test_out_of_range_clamped(self, db):
        article = db.add_article("https://site.example/a", "A")
        assert db.update_progress(article.id, 140).scroll_position == 100
        assert db.update_progress(article.id, -3).scroll_position == 0

    def test_unknown_article(self, db):
        assert db.update_progress("missing", 50) is None


class TestInProgressQueries:
    """Tests for stale and resume lookups."""

    def test_stale_in_progress(self, db):
        stale = db.add_article("https://site.example/stale", "Stale")
        fresh = db.add_article("https://site.example/fresh", "Fresh")
        done = db.add_article("https://site.example/done", "Done")
        db.update_progress(stale.id, 40)
        db.update_progress(fresh.id, 40)
        db.update_progress(done.id, 100)
        _age(db, stale.id, 30)
        _age(db, done.id, 30)

        assert [a.id for a in db.get_stale_in_progress(24)] == [stale.id]

    def test_most_recent_in_progress(self, db):
        older = db.add_article("https://site.example/1", "One")
        newer = db.add_article("https://site.example/2", "Two")
        db.update_progress(older.id, 20)
        db.update_progress(newer.id, 60)
        _age(db, older.id, 1)

        assert db.get_most_recent_in_progress().id == newer.id

    def test_no_in_progress(self, db):
        db.add_article("https://site.example/1", "One")
        assert db.get_most_recent_in_progress() is None


class TestSubscribe:
    """Tests for change subscriptions."""

    def test_listener_receives_fresh_list(self, db):
        received = []
        db.subscribe(received.append)

        article = db.add_article("https://site.example/a", "A")
        db.update_progress(article.id, 50)
        db.delete_article(article.id)

        assert len(received) == 3
        assert received[0][0].id == article.id
        assert received[1][0].scroll_position == 50
        assert received[2] == []

    def test_unsubscribe(self, db):
        received = []
        unsubscribe = db.subscribe(received.append)
        unsubscribe()

        db.add_article("https://site.example/a", "A")
        assert received == []

    def test_failing_listener_does_not_break_writes(self, db):
        def broken(articles):
            raise RuntimeError("listener down")

        received = []
        db.subscribe(broken)
        db.subscribe(received.append)

        article = db.add_article("https://site.example/a", "A")
        assert db.get_article(article.id) is not None
        assert len(received) == 1
