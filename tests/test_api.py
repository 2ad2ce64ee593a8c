"""Tests for the HTTP surface in main.py"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from stillread.core.notifications import InMemorySubscriptionStore, get_subscription_store
from stillread.core.page_fetcher import PageFetcher, get_fetcher
from stillread.core.shim import INTERCEPTOR_ATTR
from stillread.core.storage import DB, connect, get_db
from stillread.main import app

PAGE = """<html><head><title>Hello</title><link rel="icon" href="/i.png"></head>
<body><img src="/a.png"><a href="/next">Next</a></body></html>"""


def upstream(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/missing":
        return httpx.Response(404, text="gone")
    if path == "/api/echo":
        return httpx.Response(
            200,
            content=request.content,
            headers={"Content-Type": request.headers.get("content-type", "text/plain")},
        )
    if path == "/img.png":
        return httpx.Response(200, content=b"\x89PNG", headers={"Content-Type": "image/png"})
    return httpx.Response(200, html=PAGE)


@pytest.fixture
def db():
    store = DB(conn=connect(":memory:"))
    store.init()
    return store


@pytest.fixture
def subscriptions():
    return InMemorySubscriptionStore()


@pytest.fixture
def client(db, subscriptions):
    app.dependency_overrides[get_fetcher] = lambda: PageFetcher(transport=httpx.MockTransport(upstream))
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_subscription_store] = lambda: subscriptions
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestProxy:
    """Tests for GET /proxy."""

    def test_missing_url(self, client):
        resp = client.get("/proxy")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing url parameter"}
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_rewritten_document(self, client):
        resp = client.get("/proxy", params={"url": "https://site.example/p", "articleId": "a1"})

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "text/html; charset=utf-8"
        assert resp.headers["content-security-policy"] == "frame-ancestors *;"
        assert resp.headers["x-frame-options"] == "ALLOWALL"
        assert resp.headers["access-control-allow-origin"] == "*"
        assert INTERCEPTOR_ATTR in resp.text
        assert "https://site.example/a.png" in resp.text
        assert '"a1"' in resp.text

    def test_upstream_status_propagates(self, client):
        resp = client.get("/proxy", params={"url": "https://site.example/missing"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Failed to fetch: 404"}

    def test_preflight(self, client):
        resp = client.options("/proxy")
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-methods"] == "GET, OPTIONS"


class TestRelay:
    """Tests for /relay."""

    def test_missing_url(self, client):
        assert client.get("/relay").status_code == 400

    def test_get_passthrough(self, client):
        resp = client.get("/relay", params={"url": "https://cdn.site.example/img.png"})

        assert resp.status_code == 200
        assert resp.content == b"\x89PNG"
        assert resp.headers["content-type"] == "image/png"
        assert resp.headers["cache-control"] == "public, max-age=3600"
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_post_body_and_content_type_forwarded(self, client):
        body = b'{"query": "{ me { id } }"}'
        resp = client.post(
            "/relay",
            params={"url": "https://api.site.example/api/echo"},
            content=body,
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 200
        assert resp.content == body
        assert resp.headers["content-type"].startswith("application/json")
        assert "cache-control" not in resp.headers

    def test_upstream_error_status_passed_through(self, client):
        resp = client.get("/relay", params={"url": "https://site.example/missing"})
        assert resp.status_code == 404
        assert resp.text == "gone"

    def test_preflight(self, client):
        resp = client.options("/relay")
        assert resp.status_code == 200
        assert "POST" in resp.headers["access-control-allow-methods"]


class TestProgressBeacon:
    """Tests for POST /articles/{id}/progress."""

    def test_json_body(self, client):
        resp = client.post("/articles/a1/progress", json={"scrollPosition": 42.5})
        assert resp.status_code == 200
        assert resp.json() == {"id": "a1", "scrollPosition": 42.5, "updated": True}

    def test_text_plain_beacon(self, client):
        resp = client.post(
            "/articles/a1/progress",
            content=b'{"scrollPosition": 10}',
            headers={"Content-Type": "text/plain;charset=UTF-8"},
        )
        assert resp.status_code == 200
        assert resp.json()["scrollPosition"] == 10

    def test_invalid_body(self, client):
        resp = client.post("/articles/a1/progress", content=b"not json")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid body"}

    def test_missing_scroll_position(self, client):
        resp = client.post("/articles/a1/progress", json={"position": 10})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing scrollPosition"}

    @pytest.mark.parametrize("raw", [b"NaN", b"Infinity", b"-Infinity"])
    def test_non_finite_rejected(self, client, raw):
        resp = client.post(
            "/articles/a1/progress",
            content=b'{"scrollPosition": ' + raw + b"}",
            headers={"Content-Type": "text/plain"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing scrollPosition"}


class TestArticlesApi:
    """Tests for the article library endpoints."""

    def test_add_and_list(self, client):
        resp = client.post("/articles", json={"url": "https://site.example/p"})
        assert resp.status_code == 200
        article = resp.json()
        assert article["title"] == "Hello"
        assert article["favicon"] == "https://site.example/i.png"
        assert article["completionStatus"] == "unread"

        listed = client.get("/articles").json()["articles"]
        assert [a["id"] for a in listed] == [article["id"]]

    def test_add_with_failing_origin_uses_defaults(self, client):
        article = client.post("/articles", json={"url": "https://site.example/missing"}).json()
        assert article["title"] == "https://site.example/missing"
        assert article["favicon"] == "https://site.example/favicon.ico"

    def test_add_requires_url(self, client):
        assert client.post("/articles", json={}).status_code == 400

    def test_get_and_missing(self, client, db):
        article = db.add_article("https://site.example/p", "P")
        assert client.get(f"/articles/{article.id}").json()["id"] == article.id
        assert client.get("/articles/missing").status_code == 404

    @pytest.mark.parametrize(
        "position, status",
        [(99, "completed"), (0, "unread"), (40, "in-progress")],
    )
    def test_patch_progress(self, client, db, position, status):
        article = db.add_article("https://site.example/p", "P")
        resp = client.patch(f"/articles/{article.id}", json={"scrollPosition": position})

        assert resp.status_code == 200
        assert resp.json()["completionStatus"] == status
        assert db.get_article(article.id).scroll_position == position

    def test_patch_rounds_to_one_decimal(self, client, db):
        article = db.add_article("https://site.example/p", "P")
        resp = client.patch(f"/articles/{article.id}", json={"scrollPosition": 33.3333})
        assert resp.json()["scrollPosition"] == 33.3

    def test_patch_missing_article(self, client):
        resp = client.patch("/articles/missing", json={"scrollPosition": 10})
        assert resp.status_code == 404

    def test_patch_non_finite_rejected(self, client, db):
        article = db.add_article("https://site.example/p", "P")
        resp = client.patch(
            f"/articles/{article.id}",
            content=b'{"scrollPosition": NaN}',
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert db.get_article(article.id).scroll_position == 0

    def test_delete(self, client, db):
        article = db.add_article("https://site.example/p", "P")
        assert client.delete(f"/articles/{article.id}").json() == {"deleted": True}
        assert client.delete(f"/articles/{article.id}").status_code == 404

    def test_resume(self, client, db):
        assert client.get("/articles/resume").json() is None
        article = db.add_article("https://site.example/p", "P")
        db.update_progress(article.id, 30)
        assert client.get("/articles/resume").json()["id"] == article.id


class TestNotificationsApi:
    """Tests for push registration and nudges."""

    def test_subscribe(self, client, subscriptions):
        resp = client.post(
            "/notifications/subscribe",
            json={"subscription": {"endpoint": "https://push.example/1", "keys": {"auth": "a"}}},
        )
        assert resp.json() == {"success": True}
        assert [s.endpoint for s in subscriptions.list()] == ["https://push.example/1"]

    def test_subscribe_requires_endpoint(self, client):
        resp = client.post("/notifications/subscribe", json={"subscription": {}})
        assert resp.status_code == 400

    def test_nudge_for_stale_article(self, client, db, monkeypatch):
        monkeypatch.delenv("STALE_HOURS", raising=False)
        article = db.add_article("https://site.example/p", "Long Read")
        db.update_progress(article.id, 40)
        old = (datetime.now(timezone.utc) - timedelta(hours=48)).isoformat()
        db.conn.execute("UPDATE articles SET last_updated_at = ? WHERE id = ?", (old, article.id))
        db.conn.commit()

        body = client.post("/notifications/nudge").json()
        assert body["subscriptions"] == 0
        assert body["nudges"] == [
            {
                "articleId": article.id,
                "title": "StillRead",
                "body": 'You left off at 40% of "Long Read". Resume reading?',
                "url": "https://site.example/p",
            }
        ]
