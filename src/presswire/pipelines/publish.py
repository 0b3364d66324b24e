from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Protocol

from ..blocklist import is_blocked_source_url, is_blocked_title
from ..config import Config, SiteConfig
from ..db import DBConn
from ..errors import BlockedError, ConfigError, SourceRateLimited, TitleRejected, UpstreamError
from ..models import Article, ScrapeResult, SocialOutcome, SourceQueueItem
from ..social.facebook import FacebookClient, SocialPublisher, cross_post
from ..storage import (
    claim_next_source,
    get_article_by_slug,
    get_latest_published_at,
    insert_article,
    mark_blocked,
    mark_failed,
    mark_pending_no_attempt,
    mark_posted,
    set_fb_post_id,
    set_published_slug,
)
from ..utils import log_event, parse_iso, utc_now
from .rewrite import Rewriter, RewriterProtocol, rewrite_with_guardrails
from .scrape import Scraper

DEFAULT_RATE_LIMIT_RETRY_SECONDS = 300


class ScraperProtocol(Protocol):
    def scrape(self, url: str) -> ScrapeResult:
        ...


def share_url_for(site: SiteConfig, slug: str) -> str:
    path = site.share_path if site.share_path.endswith("/") else site.share_path + "/"
    return f"{site.base_url.rstrip('/')}{path}{slug}"


def cooldown_remaining_seconds(conn: DBConn, min_interval_minutes: float, now: datetime) -> int:
    if min_interval_minutes <= 0:
        return 0
    latest = get_latest_published_at(conn)
    if not latest:
        return 0
    elapsed = (now - parse_iso(latest)).total_seconds()
    remaining = min_interval_minutes * 60 - elapsed
    return int(math.ceil(remaining)) if remaining > 0 else 0


def run_publish_once(
    conn: DBConn,
    config: Config,
    logger: logging.Logger,
    *,
    scraper: ScraperProtocol | None = None,
    rewriter: RewriterProtocol | None = None,
    social: SocialPublisher | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Claim one queued source and carry it through to a terminal queue state.

    Never raises for per-item problems: every error becomes a queue transition
    plus a result dict (``ok``, and one of ``message``, ``cooldown``, ``blocked``,
    ``processed`` or ``error``).
    """
    remaining = cooldown_remaining_seconds(conn, config.publish.min_interval_minutes, now or utc_now())
    if remaining > 0:
        log_event(logger, logging.INFO, "publish_cooldown", retry_after_seconds=remaining)
        return {"ok": True, "cooldown": True, "retry_after_seconds": remaining}

    item = claim_next_source(
        conn,
        config.queue.max_attempts,
        scan_limit=config.queue.scan_limit,
        recent_posted_limit=config.queue.recent_posted_limit,
        stale_claim_seconds=config.queue.stale_claim_seconds,
    )
    if item is None:
        return {"ok": True, "message": "no pending sources"}
    log_event(logger, logging.INFO, "publish_claimed", id=item.id, url=item.source_url, attempt=item.attempt_count)

    try:
        processed = _process_item(conn, config, item, logger, scraper, rewriter, social)
    except BlockedError as exc:
        mark_blocked(conn, item.id, exc.reason)
        log_event(logger, logging.INFO, "publish_blocked", id=item.id, reason=exc.reason)
        return {"ok": True, "blocked": True, "reason": exc.reason}
    except ConfigError as exc:
        mark_pending_no_attempt(conn, item.id, exc)
        log_event(logger, logging.ERROR, "publish_config_error", id=item.id, error=str(exc))
        return {"ok": False, "hard_failure": True, "error": str(exc)}
    except SourceRateLimited as exc:
        mark_pending_no_attempt(conn, item.id, exc)
        retry_after = exc.retry_after_seconds or DEFAULT_RATE_LIMIT_RETRY_SECONDS
        log_event(
            logger,
            logging.WARNING,
            "publish_source_rate_limited",
            id=item.id,
            retry_after_seconds=retry_after,
        )
        return {
            "ok": True,
            "cooldown": True,
            "retry_after_seconds": retry_after,
            "reason": str(exc),
        }
    except Exception as exc:  # noqa: BLE001
        updated = mark_failed(conn, item.id, exc, config.queue.max_attempts)
        log_event(
            logger,
            logging.ERROR,
            "publish_failed",
            id=item.id,
            error=str(exc),
            attempt_count=updated.attempt_count if updated else None,
            status=updated.status if updated else None,
        )
        return {"ok": False, "hard_failure": False, "error": str(exc)}

    log_event(
        logger,
        logging.INFO,
        "publish_succeeded",
        id=item.id,
        slug=processed["published_slug"],
        fb_post_id=processed["fb_post_id"],
        social_ok=processed["social_ok"],
    )
    return {"ok": True, "processed": processed}


def _process_item(
    conn: DBConn,
    config: Config,
    item: SourceQueueItem,
    logger: logging.Logger,
    scraper: ScraperProtocol | None,
    rewriter: RewriterProtocol | None,
    social: SocialPublisher | None,
) -> dict[str, Any]:
    _check_blocked(is_blocked_source_url(item.source_url, config.blocklist.hosts))

    article: Article | None = None
    resumed = False
    if item.published_slug:
        article = get_article_by_slug(conn, item.published_slug)
        if article is not None:
            resumed = True
            log_event(logger, logging.INFO, "publish_resumed", id=item.id, slug=article.slug)
        else:
            log_event(logger, logging.WARNING, "publish_article_missing", id=item.id, slug=item.published_slug)

    if article is None:
        article = _build_article(conn, config, item, logger, scraper, rewriter)
        set_published_slug(conn, item.id, article.slug)

    outcome = _maybe_cross_post(conn, config, item, article, logger, social)
    fb_post_id = outcome.post_id if outcome else item.fb_post_id
    mark_posted(
        conn,
        item.id,
        published_slug=article.slug,
        fb_post_id=fb_post_id,
        last_error=outcome.error if outcome else None,
    )
    return {
        "id": item.id,
        "source_url": item.source_url,
        "published_slug": article.slug,
        "fb_post_id": fb_post_id,
        "social_ok": outcome.ok if outcome else None,
        "social_error": outcome.error if outcome else None,
        "resumed": resumed,
    }


def _build_article(
    conn: DBConn,
    config: Config,
    item: SourceQueueItem,
    logger: logging.Logger,
    scraper: ScraperProtocol | None,
    rewriter: RewriterProtocol | None,
) -> Article:
    scraped = (scraper or Scraper(config, logger)).scrape(item.source_url)
    _check_blocked(is_blocked_title(scraped.title, config.blocklist.title_substrings))

    title, content = scraped.title, scraped.content
    if config.rewrite.enabled:
        title, content = _rewrite(config, scraped, logger, rewriter or Rewriter(config, logger))
        _check_blocked(is_blocked_title(title, config.blocklist.title_substrings))

    article = insert_article(
        conn,
        title=title,
        content=content,
        category=config.publish.category,
        image_url=scraped.image_url,
        source_url=item.source_url,
        excerpt_length=config.publish.excerpt_length,
        slug_max_length=config.publish.slug_max_length,
        max_slug_attempts=config.publish.max_slug_attempts,
    )
    log_event(logger, logging.INFO, "article_inserted", id=item.id, slug=article.slug)
    return article


def _rewrite(
    config: Config,
    scraped: ScrapeResult,
    logger: logging.Logger,
    rewriter: RewriterProtocol,
) -> tuple[str, str]:
    try:
        result = rewrite_with_guardrails(rewriter, scraped.title, scraped.content, config.rewrite, logger)
    except ConfigError:
        raise
    except TitleRejected as exc:
        if config.rewrite.required:
            raise
        log_event(logger, logging.WARNING, "rewrite_fallback", reason="title_rejected", error=str(exc))
        return scraped.title, exc.content or scraped.content
    except Exception as exc:  # noqa: BLE001
        if config.rewrite.required:
            raise
        log_event(logger, logging.WARNING, "rewrite_fallback", reason="rewrite_failed", error=str(exc))
        return scraped.title, scraped.content
    return result.title, result.content


def _maybe_cross_post(
    conn: DBConn,
    config: Config,
    item: SourceQueueItem,
    article: Article,
    logger: logging.Logger,
    social: SocialPublisher | None,
) -> SocialOutcome | None:
    if not config.facebook.enabled:
        return None
    if item.fb_post_id:
        log_event(logger, logging.INFO, "facebook_already_posted", id=item.id, post_id=item.fb_post_id)
        return SocialOutcome(ok=True, post_id=item.fb_post_id, comment_id=None, error=None)

    client = social or FacebookClient(config.facebook, config.http, logger)
    try:
        return cross_post(
            client,
            title=article.title,
            excerpt=article.excerpt,
            image_url=article.image_url,
            share_url=share_url_for(config.site, article.slug),
            config=config.facebook,
            logger=logger,
            on_post=lambda post_id: set_fb_post_id(conn, item.id, post_id),
        )
    except UpstreamError as exc:
        if config.facebook.required:
            raise
        log_event(logger, logging.WARNING, "facebook_post_failed", id=item.id, error=str(exc))
        return SocialOutcome(ok=False, post_id=None, comment_id=None, error=f"facebook_failed: {exc}")


def _check_blocked(decision) -> None:
    if decision.blocked:
        raise BlockedError(decision.reason or "blocked")
