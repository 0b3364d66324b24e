from __future__ import annotations

import dataclasses
import hmac
import html
import logging
import os
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from .config import Config, ConfigError, get_state_db_path, load_config
from .db import DBConn
from .errors import ValidationError
from .models import Article
from .pipelines.publish import run_publish_once, share_url_for
from .storage import (
    count_source_items_by_status,
    enqueue_source_urls,
    get_article_by_slug,
    init_db,
    list_articles,
)
from .utils import configure_logging, log_event

app = FastAPI(title="PressWire API")

logger = configure_logging("presswire.api")


class SourcesRequest(BaseModel):
    urls: list[str] | None = None
    url: str | None = None


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("presswire")
    except Exception:  # noqa: BLE001
        return "unknown"


def get_config() -> Config:
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def get_conn(config: Config = Depends(get_config)):
    conn = init_db(get_state_db_path(config))
    try:
        yield conn
    finally:
        conn.close()


def get_publish_collaborators() -> dict[str, Any]:
    """Scraper/rewriter/social overrides for the publish step; empty means real clients."""
    return {}


def _secret_matches(candidate: str | None, secret: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def _presented_secret(request: Request, header_name: str) -> list[str | None]:
    auth = request.headers.get("Authorization") or ""
    bearer = auth[7:].strip() if auth.lower().startswith("bearer ") else None
    return [request.headers.get(header_name), bearer, request.query_params.get("secret")]


def _require_cron_secret(request: Request) -> None:
    secret = os.environ.get("PW_CRON_SECRET")
    if not secret:
        return
    if not any(_secret_matches(value, secret) for value in _presented_secret(request, "X-Cron-Secret")):
        raise HTTPException(status_code=401, detail="unauthorized")


def _require_admin_secret(request: Request) -> None:
    secret = os.environ.get("PW_ADMIN_SECRET") or os.environ.get("PW_CRON_SECRET")
    if not secret:
        return
    presented = _presented_secret(request, "X-Admin-Secret") + [request.headers.get("X-Cron-Secret")]
    if not any(_secret_matches(value, secret) for value in presented):
        raise HTTPException(status_code=401, detail="unauthorized")


def article_to_dict(article: Article, config: Config) -> dict[str, Any]:
    payload = dataclasses.asdict(article)
    payload["share_url"] = share_url_for(config.site, article.slug)
    return payload


@app.get("/health")
def health(conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
        "queue": count_source_items_by_status(conn),
    }


@app.post("/sources", dependencies=[Depends(_require_admin_secret)])
def sources_enqueue(payload: SourcesRequest, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    urls = list(payload.urls or [])
    if payload.url:
        urls.append(payload.url)
    urls = [url for url in (str(u or "").strip() for u in urls) if url]
    if not urls:
        raise HTTPException(status_code=400, detail="urls required")
    try:
        items = enqueue_source_urls(conn, urls)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_event(logger, logging.INFO, "sources_enqueued", count=len(items))
    return {
        "ok": True,
        "enqueued": [
            {"id": item.id, "source_url": item.source_url, "status": item.status} for item in items
        ],
    }


@app.api_route("/cron/publish", methods=["GET", "POST"], dependencies=[Depends(_require_cron_secret)])
def cron_publish(
    config: Config = Depends(get_config),
    conn: DBConn = Depends(get_conn),
    collaborators: dict[str, Any] = Depends(get_publish_collaborators),
) -> JSONResponse:
    result = run_publish_once(conn, config, logger, **collaborators)
    status_code = 503 if result.get("hard_failure") else 200
    return JSONResponse(result, status_code=status_code)


@app.get("/articles")
def articles_list(
    category: str | None = None,
    limit: int = 9,
    offset: int = 0,
    config: Config = Depends(get_config),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    limit = max(1, min(50, limit))
    offset = max(0, offset)
    articles = list_articles(conn, category=category, limit=limit, offset=offset)
    return {
        "items": [article_to_dict(article, config) for article in articles],
        "limit": limit,
        "offset": offset,
    }


@app.get("/articles/{slug}")
def article_get(
    slug: str,
    config: Config = Depends(get_config),
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    article = get_article_by_slug(conn, slug)
    if article is None:
        raise HTTPException(status_code=404, detail="article not found")
    return article_to_dict(article, config)


@app.get("/s/{slug}", response_class=HTMLResponse)
def share_page(
    slug: str,
    config: Config = Depends(get_config),
    conn: DBConn = Depends(get_conn),
) -> HTMLResponse:
    article = get_article_by_slug(conn, slug)
    if article is None:
        raise HTTPException(status_code=404, detail="article not found")
    return HTMLResponse(render_share_page(article, config))


def render_share_page(article: Article, config: Config) -> str:
    esc = html.escape
    url = share_url_for(config.site, article.slug)
    meta = [
        ("og:type", "article"),
        ("og:site_name", config.site.name),
        ("og:title", article.title),
        ("og:description", article.excerpt),
        ("og:url", url),
    ]
    if article.image_url:
        meta.append(("og:image", article.image_url))
    meta_tags = "\n".join(
        f'    <meta property="{esc(name)}" content="{esc(value or "")}">' for name, value in meta
    )
    paragraphs = "\n".join(
        f"    <p>{esc(part.strip())}</p>" for part in article.content.split("\n") if part.strip()
    )
    return (
        "<!doctype html>\n"
        f'<html lang="{esc(config.app.language)}">\n'
        "<head>\n"
        '    <meta charset="utf-8">\n'
        f"    <title>{esc(article.title)} | {esc(config.site.name)}</title>\n"
        f'    <link rel="canonical" href="{esc(url)}">\n'
        f"{meta_tags}\n"
        "</head>\n"
        "<body>\n"
        f"    <h1>{esc(article.title)}</h1>\n"
        f"{paragraphs}\n"
        "</body>\n"
        "</html>\n"
    )
