from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from urllib.parse import urldefrag

import feedparser

from .blocklist import is_blocked_source_url, is_blocked_title
from .config import Config
from .db import DBConn
from .errors import InvalidUrl, ScrapeError, UpstreamError
from .httpclient import http_request
from .storage import enqueue_source_urls, validate_source_url
from .utils import log_event


@dataclass(frozen=True)
class FeedLink:
    url: str
    title: str
    feed_url: str


def parse_feed_links(content: bytes | str, feed_url: str, per_feed_limit: int) -> list[FeedLink]:
    parsed = feedparser.parse(content)
    links: list[FeedLink] = []
    for entry in parsed.entries or []:
        link = (entry.get("link") or "").strip()
        if not link:
            continue
        link = urldefrag(link)[0]
        links.append(FeedLink(url=link, title=(entry.get("title") or "").strip(), feed_url=feed_url))
        if len(links) >= per_feed_limit:
            break
    return links


def fetch_feed(feed_url: str, config: Config, logger: logging.Logger) -> list[FeedLink]:
    response = http_request(
        "GET",
        feed_url,
        timeout=config.http.timeout_seconds,
        headers={"User-Agent": config.http.user_agent},
        error_cls=ScrapeError,
    )
    if not response.ok:
        raise ScrapeError(f"feed fetch failed for {feed_url}", status=response.status)
    links = parse_feed_links(response.body, feed_url, config.discovery.per_feed_limit)
    log_event(logger, logging.INFO, "feed_parsed", feed=feed_url, links=len(links))
    return links


def discover_feed_urls(
    feeds: list[str],
    config: Config,
    logger: logging.Logger,
    *,
    fetch=fetch_feed,
) -> list[str]:
    """Collect candidate article URLs from ``feeds``.

    Links are de-duplicated in feed order, filtered by the blocklists and capped
    at ``discovery.batch_limit``. A feed that fails is logged and skipped.
    """
    urls: list[str] = []
    for feed_url in feeds:
        try:
            links = fetch(feed_url, config, logger)
        except UpstreamError as exc:
            log_event(logger, logging.WARNING, "feed_fetch_failed", feed=feed_url, error=str(exc))
            continue
        for link in links:
            if link.url in urls:
                continue
            try:
                validate_source_url(link.url)
            except InvalidUrl:
                continue
            decision = is_blocked_source_url(link.url, config.blocklist.hosts)
            if not decision.blocked:
                decision = is_blocked_title(link.title, config.blocklist.title_substrings)
            if decision.blocked:
                log_event(logger, logging.DEBUG, "feed_link_blocked", url=link.url, reason=decision.reason)
                continue
            urls.append(link.url)
            if len(urls) >= config.discovery.batch_limit:
                return urls
    return urls


def enqueue_local(conn: DBConn, urls: list[str]) -> int:
    return len(enqueue_source_urls(conn, urls))


def enqueue_remote(api_url: str, urls: list[str], secret: str | None, *, timeout: float) -> int:
    headers = {"Content-Type": "application/json"}
    if secret:
        headers["X-Admin-Secret"] = secret
    response = http_request(
        "POST",
        api_url.rstrip("/") + "/sources",
        timeout=timeout,
        headers=headers,
        data=json.dumps({"urls": urls}).encode("utf-8"),
    )
    if not response.ok:
        raise UpstreamError(response.text()[:400] or "enqueue failed", status=response.status)
    body = response.json()
    if not isinstance(body, dict):
        return 0
    return len(body.get("enqueued") or [])
