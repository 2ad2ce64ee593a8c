from __future__ import annotations

import json
import logging
import math

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from stillread.core.errors import InputError, ProxyError
from stillread.core.notifications import (
    SqliteSubscriptionStore,
    SubscriptionStore,
    build_nudges,
    get_subscription_store,
    init_subscription_store,
)
from stillread.core.page_fetcher import PageFetcher, close_fetcher, get_fetcher, validate_target_url
from stillread.core.settings import Settings
from stillread.core.storage import DB, get_db, init_db
from stillread.core.transform import DOCUMENT_HEADERS, transform
from stillread.providers.content_types import PushSubscription
from stillread.providers.page_metadata import fetch_page_metadata

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

RELAY_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

DEFAULT_RELAY_CACHE = "public, max-age=3600"

app = FastAPI(title="stillread")


@app.on_event("startup")
def _startup() -> None:
    s = Settings.from_env()
    logging.basicConfig(
        level=s.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    init_subscription_store(SqliteSubscriptionStore(get_db().conn))


@app.on_event("shutdown")
async def _shutdown() -> None:
    await close_fetcher()


@app.exception_handler(ProxyError)
async def _proxy_error(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=CORS_HEADERS)


def error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=CORS_HEADERS)


async def read_json_body(request: Request) -> dict:
    """Parse a JSON object body regardless of content type.

    Beacons arrive as text/plain, so the declared type is not trusted.
    """
    raw = await request.body()
    try:
        body = json.loads(raw or b"")
    except ValueError:
        raise InputError("Invalid body") from None
    if not isinstance(body, dict):
        raise InputError("Invalid body")
    return body


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@app.get("/health")
def health():
    return {"status": "ok"}


# ==================== Proxy & Relay ====================


@app.get("/proxy", response_class=HTMLResponse)
async def proxy(
    url: str | None = None,
    article_id: str | None = Query(default=None, alias="articleId"),
    fetcher: PageFetcher = Depends(get_fetcher),
):
    """Serve the article at `url` rewritten for the reader frame.

    Errors come back as JSON: 400 without url, the upstream status when the
    origin fails, 500 otherwise.
    """
    try:
        document = await transform(url, article_id or None, fetcher=fetcher)
    except ProxyError:
        raise
    except Exception as e:
        logger.exception(f"Proxy failed for {url}")
        return error(str(e) or "Unknown error", 500)

    headers = {**DOCUMENT_HEADERS, "Content-Type": document.content_type}
    return HTMLResponse(document.html, headers=headers)


@app.options("/proxy")
def proxy_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@app.api_route("/relay", methods=["GET", "POST"])
async def relay(
    request: Request,
    url: str | None = None,
    fetcher: PageFetcher = Depends(get_fetcher),
):
    """Pass a resource request from the embedded page through to its origin.

    The upstream status, body and content type come back unmodified.
    """
    url = validate_target_url(url)
    body = None
    content_type = None
    if request.method == "POST":
        body = await request.body()
        content_type = request.headers.get("content-type")

    try:
        upstream = await fetcher.relay(
            url,
            method=request.method,
            body=body,
            content_type=content_type,
            accept=request.headers.get("accept"),
        )
    except ProxyError as e:
        # Relay failures surface as plain 500s to the embedded page
        logger.warning(f"Relay failed for {url}: {e.message}")
        return error(e.message, 500)
    except Exception as e:
        logger.exception(f"Relay failed for {url}")
        return error(str(e) or "Unknown error", 500)

    headers = {**RELAY_HEADERS, "Content-Type": upstream.content_type}
    if request.method == "GET":
        headers["Cache-Control"] = upstream.cache_control or DEFAULT_RELAY_CACHE
    return Response(content=upstream.content, status_code=upstream.status_code, headers=headers)


@app.options("/relay")
def relay_preflight():
    return Response(status_code=200, headers=RELAY_HEADERS)


# ==================== Articles ====================


@app.post("/articles/{article_id}/progress")
async def article_progress(article_id: str, request: Request):
    """Acknowledge a progress beacon from the scroll observer.

    Persistence happens through the host frame (PATCH /articles/{id}),
    this endpoint only validates and echoes.
    """
    body = await read_json_body(request)
    scroll_position = body.get("scrollPosition")
    if not _is_number(scroll_position):
        return error("Missing scrollPosition", 400)

    return {"id": article_id, "scrollPosition": scroll_position, "updated": True}


@app.get("/articles")
def list_articles(db: DB = Depends(get_db)):
    return {"articles": [a.to_dict() for a in db.list_articles()]}


@app.post("/articles")
async def add_article(
    request: Request,
    db: DB = Depends(get_db),
    fetcher: PageFetcher = Depends(get_fetcher),
):
    """Save an article, looking up its title and favicon first."""
    body = await read_json_body(request)
    url = body.get("url")
    if not url or not isinstance(url, str):
        return error("Missing url", 400)
    url = validate_target_url(url)

    meta = await fetch_page_metadata(url, fetcher=fetcher)
    article = db.add_article(url, meta.title, meta.favicon)
    logger.info(f"Saved article {article.id} ({url})")
    return article.to_dict()


@app.get("/articles/resume")
def resume_article(db: DB = Depends(get_db)):
    """Most recently read in-progress article, or null."""
    article = db.get_most_recent_in_progress()
    return article.to_dict() if article else None


@app.get("/articles/{article_id}")
def get_article(article_id: str, db: DB = Depends(get_db)):
    article = db.get_article(article_id)
    if not article:
        return error("Article not found", 404)
    return article.to_dict()


@app.patch("/articles/{article_id}")
async def update_article_progress(article_id: str, request: Request, db: DB = Depends(get_db)):
    """Persist a reading position reported to the host frame."""
    body = await read_json_body(request)
    scroll_position = body.get("scrollPosition")
    if not _is_number(scroll_position):
        return error("Missing scrollPosition", 400)

    article = db.update_progress(article_id, round(float(scroll_position), 1))
    if not article:
        return error("Article not found", 404)
    return article.to_dict()


@app.delete("/articles/{article_id}")
def delete_article(article_id: str, db: DB = Depends(get_db)):
    if not db.delete_article(article_id):
        return error("Article not found", 404)
    return {"deleted": True}


# ==================== Notifications ====================


@app.post("/notifications/subscribe")
async def notifications_subscribe(
    request: Request,
    store: SubscriptionStore = Depends(get_subscription_store),
):
    body = await read_json_body(request)
    subscription = body.get("subscription")
    if not isinstance(subscription, dict) or not subscription.get("endpoint"):
        return error("Missing subscription", 400)

    store.add(PushSubscription.from_dict(subscription))
    return {"success": True}


@app.post("/notifications/nudge")
def notifications_nudge(
    db: DB = Depends(get_db),
    store: SubscriptionStore = Depends(get_subscription_store),
):
    """Build "resume reading" nudges for articles left in progress too long."""
    s = Settings.from_env()
    nudges = build_nudges(db.get_stale_in_progress(s.stale_hours))
    return {
        "nudges": [n.to_dict() for n in nudges],
        "subscriptions": len(store.list()),
    }
