from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlsplit

from .db import DBConn, connect_db
from .errors import InvalidUrl, SlugCollisionError
from .models import (
    QUEUE_STATUSES,
    Article,
    SourceQueueItem,
)
from .utils import host_of, log_event, slugify, to_excerpt, utc_now_iso, utc_now_iso_offset

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_SCAN_LIMIT = 200
DEFAULT_RECENT_POSTED_LIMIT = 2000

QUEUE_COLUMNS = (
    "id, source_url, status, attempt_count, claimed_at, created_at, processed_at, "
    "updated_at, published_slug, fb_post_id, last_error"
)
ARTICLE_COLUMNS = (
    "id, slug, title, content, excerpt, image_url, category, status, source_url, "
    "published_at, created_at"
)

logger = logging.getLogger("presswire.storage")


def init_db(path: str) -> DBConn:
    return connect_db(path)


def validate_source_url(url: str) -> str:
    try:
        split = urlsplit(url)
    except ValueError as exc:
        raise InvalidUrl(url) from exc
    if split.scheme not in ("http", "https") or not split.hostname:
        raise InvalidUrl(url)
    return url


def enqueue_source_urls(conn: DBConn, urls: Iterable[Any]) -> list[SourceQueueItem]:
    """Insert each URL as a pending item; existing URLs only get ``updated_at`` touched.

    Every URL is validated before anything is written.
    """
    clean: list[str] = []
    for raw in urls or []:
        url = str(raw or "").strip()
        if url and url not in clean:
            clean.append(url)
    for url in clean:
        validate_source_url(url)

    items: list[SourceQueueItem] = []
    if not clean:
        return items
    now = utc_now_iso()
    with conn.transaction():
        for url in clean:
            rows = conn.execute(
                f"""
                INSERT INTO source_queue (source_url, status, attempt_count, created_at, updated_at)
                VALUES (?, 'pending', 0, ?, ?)
                ON CONFLICT (source_url) DO UPDATE SET updated_at = excluded.updated_at
                RETURNING {QUEUE_COLUMNS}
                """,
                (url, now, now),
            ).fetchall()
            items.append(_row_to_item(rows[0]))
    return items


@dataclass(frozen=True)
class ClaimCandidate:
    id: int
    source_url: str
    created_at: str
    host: str | None


def choose_candidate(
    candidates: list[ClaimCandidate],
    last_posted_host: str | None,
    host_last_posted_at: dict[str, str],
) -> ClaimCandidate:
    """Pick the next item, spreading posts across source hosts.

    Hosts are ranked by: not the host posted last, never posted before, least
    recently posted, oldest pending item, host name. The oldest pending item of
    the winning host is returned.
    """
    by_host: dict[str, list[ClaimCandidate]] = {}
    for candidate in candidates:
        if candidate.host:
            by_host.setdefault(candidate.host, []).append(candidate)
    if not by_host:
        return min(candidates, key=lambda c: (c.created_at, c.id))

    def _rank(host: str) -> tuple:
        oldest = min(c.created_at for c in by_host[host])
        last_posted = host_last_posted_at.get(host)
        return (
            host == last_posted_host,
            last_posted is not None,
            last_posted or "",
            oldest,
            host,
        )

    chosen_host = min(by_host, key=_rank)
    return min(by_host[chosen_host], key=lambda c: (c.created_at, c.id))


def claim_next_source(
    conn: DBConn,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    *,
    scan_limit: int = DEFAULT_SCAN_LIMIT,
    recent_posted_limit: int = DEFAULT_RECENT_POSTED_LIMIT,
    stale_claim_seconds: int | None = None,
) -> SourceQueueItem | None:
    with conn.transaction():
        if stale_claim_seconds:
            _release_stale_claims(conn, stale_claim_seconds)
        last_posted_host = _last_posted_host(conn)
        rows = conn.execute(
            f"""
            SELECT id, source_url, created_at
            FROM source_queue
            WHERE status = 'pending' AND attempt_count < ?
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            {conn.lock_clause()}
            """,
            (max_attempts, scan_limit),
        ).fetchall()
        if not rows:
            return None
        candidates = [
            ClaimCandidate(id=row[0], source_url=row[1], created_at=row[2], host=host_of(row[1]))
            for row in rows
        ]
        chosen = choose_candidate(
            candidates,
            last_posted_host,
            _host_last_posted_at(conn, recent_posted_limit),
        )
        now = utc_now_iso()
        updated = conn.execute(
            f"""
            UPDATE source_queue
            SET status = 'processing', claimed_at = ?, updated_at = ?
            WHERE id = ? AND status = 'pending'
            RETURNING {QUEUE_COLUMNS}
            """,
            (now, now, chosen.id),
        ).fetchall()
        if not updated:
            return None
        item = _row_to_item(updated[0])
    log_event(
        logger,
        logging.DEBUG,
        "source_claimed",
        id=item.id,
        host=chosen.host,
        last_posted_host=last_posted_host,
        candidates=len(candidates),
    )
    return item


def release_stale_claims(conn: DBConn, timeout_seconds: int) -> int:
    with conn.transaction():
        return _release_stale_claims(conn, timeout_seconds)


def _release_stale_claims(conn: DBConn, timeout_seconds: int) -> int:
    cutoff = utc_now_iso_offset(seconds=-timeout_seconds)
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE source_queue
        SET status = 'pending',
            claimed_at = NULL,
            updated_at = ?,
            last_error = 'stale_claim_released'
        WHERE status = 'processing' AND claimed_at IS NOT NULL AND claimed_at < ?
        """,
        (now, cutoff),
    )
    released = cursor.rowcount or 0
    if released > 0:
        log_event(logger, logging.WARNING, "stale_claims_released", count=released)
    return released


def _last_posted_host(conn: DBConn) -> str | None:
    row = conn.execute(
        """
        SELECT source_url
        FROM source_queue
        WHERE status = 'posted'
        ORDER BY processed_at DESC NULLS LAST, updated_at DESC
        LIMIT 1
        """
    ).fetchone()
    if not row:
        return None
    return host_of(row[0])


def _host_last_posted_at(conn: DBConn, limit: int) -> dict[str, str]:
    rows = conn.execute(
        """
        SELECT source_url, processed_at
        FROM source_queue
        WHERE status = 'posted' AND processed_at IS NOT NULL
        ORDER BY processed_at DESC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    result: dict[str, str] = {}
    for source_url, processed_at in rows:
        host = host_of(source_url)
        if host and host not in result:
            result[host] = processed_at
    return result


def set_published_slug(conn: DBConn, item_id: int, slug: str | None) -> SourceQueueItem | None:
    return _update_returning(
        conn,
        "UPDATE source_queue SET published_slug = ?, updated_at = ? WHERE id = ?",
        (slug, utc_now_iso(), item_id),
    )


def set_fb_post_id(conn: DBConn, item_id: int, post_id: str | None) -> SourceQueueItem | None:
    return _update_returning(
        conn,
        "UPDATE source_queue SET fb_post_id = ?, updated_at = ? WHERE id = ?",
        (post_id, utc_now_iso(), item_id),
    )


def mark_posted(
    conn: DBConn,
    item_id: int,
    *,
    published_slug: str | None = None,
    fb_post_id: str | None = None,
    last_error: str | None = None,
) -> SourceQueueItem | None:
    now = utc_now_iso()
    return _update_returning(
        conn,
        """
        UPDATE source_queue
        SET status = 'posted',
            processed_at = ?,
            updated_at = ?,
            claimed_at = NULL,
            last_error = ?,
            published_slug = COALESCE(?, published_slug),
            fb_post_id = COALESCE(?, fb_post_id)
        WHERE id = ?
        """,
        (now, now, _error_text(last_error) if last_error else None, published_slug, fb_post_id, item_id),
    )


def mark_failed(
    conn: DBConn,
    item_id: int,
    err: object,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> SourceQueueItem | None:
    now = utc_now_iso()
    return _update_returning(
        conn,
        """
        UPDATE source_queue
        SET attempt_count = attempt_count + 1,
            last_error = ?,
            updated_at = ?,
            claimed_at = NULL,
            processed_at = CASE WHEN attempt_count + 1 >= ? THEN ? ELSE processed_at END,
            status = CASE WHEN attempt_count + 1 >= ? THEN 'failed' ELSE 'pending' END
        WHERE id = ? AND status <> 'posted'
        """,
        (_error_text(err), now, max_attempts, now, max_attempts, item_id),
    )


def mark_blocked(conn: DBConn, item_id: int, reason: str | None) -> SourceQueueItem | None:
    now = utc_now_iso()
    return _update_returning(
        conn,
        """
        UPDATE source_queue
        SET status = 'failed',
            last_error = ?,
            updated_at = ?,
            processed_at = ?,
            claimed_at = NULL
        WHERE id = ? AND status <> 'posted'
        """,
        (_error_text(reason or "Blocked by rules"), now, now, item_id),
    )


def mark_pending_no_attempt(conn: DBConn, item_id: int, err: object) -> SourceQueueItem | None:
    return _update_returning(
        conn,
        """
        UPDATE source_queue
        SET status = 'pending',
            claimed_at = NULL,
            last_error = ?,
            updated_at = ?
        WHERE id = ? AND status <> 'posted'
        """,
        (_error_text(err), utc_now_iso(), item_id),
    )


def get_source_item(conn: DBConn, item_id: int) -> SourceQueueItem | None:
    row = conn.execute(
        f"SELECT {QUEUE_COLUMNS} FROM source_queue WHERE id = ?", (item_id,)
    ).fetchone()
    return _row_to_item(row) if row else None


def get_source_item_by_url(conn: DBConn, source_url: str) -> SourceQueueItem | None:
    row = conn.execute(
        f"SELECT {QUEUE_COLUMNS} FROM source_queue WHERE source_url = ?", (source_url,)
    ).fetchone()
    return _row_to_item(row) if row else None


def list_source_items(
    conn: DBConn, status: str | None = None, limit: int = 50
) -> list[SourceQueueItem]:
    if status:
        rows = conn.execute(
            f"""
            SELECT {QUEUE_COLUMNS} FROM source_queue
            WHERE status = ?
            ORDER BY updated_at DESC, id DESC
            LIMIT ?
            """,
            (status, limit),
        ).fetchall()
    else:
        rows = conn.execute(
            f"""
            SELECT {QUEUE_COLUMNS} FROM source_queue
            ORDER BY updated_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
    return [_row_to_item(row) for row in rows]


def count_source_items_by_status(conn: DBConn) -> dict[str, int]:
    counts = {status: 0 for status in QUEUE_STATUSES}
    for status, count in conn.execute(
        "SELECT status, COUNT(*) FROM source_queue GROUP BY status"
    ).fetchall():
        counts[status] = int(count)
    return counts


def insert_article(
    conn: DBConn,
    *,
    title: str,
    content: str,
    category: str,
    image_url: str | None = None,
    source_url: str | None = None,
    excerpt_length: int = 160,
    slug_max_length: int = 80,
    max_slug_attempts: int = 20,
) -> Article:
    """Insert a published article under a free slug (``slug``, ``slug-2``, ...)."""
    base = slugify(title, max_length=slug_max_length)
    excerpt = to_excerpt(content, excerpt_length)
    now = utc_now_iso()
    for attempt in range(max_slug_attempts):
        slug = base if attempt == 0 else f"{base}-{attempt + 1}"
        rows = conn.execute(
            f"""
            INSERT INTO articles
                (slug, title, content, excerpt, image_url, category, status, source_url,
                 published_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 'published', ?, ?, ?)
            ON CONFLICT (slug) DO NOTHING
            RETURNING {ARTICLE_COLUMNS}
            """,
            (slug, title, content, excerpt, image_url, category, source_url, now, now),
        ).fetchall()
        if rows:
            return _row_to_article(rows[0])
        log_event(logger, logging.DEBUG, "slug_collision", slug=slug, attempt=attempt + 1)
    raise SlugCollisionError(
        f"no free slug for {base!r} after {max_slug_attempts} attempts"
    )


def get_article_by_slug(conn: DBConn, slug: str) -> Article | None:
    row = conn.execute(
        f"""
        SELECT {ARTICLE_COLUMNS} FROM articles
        WHERE slug = ? AND status = 'published'
        LIMIT 1
        """,
        (slug,),
    ).fetchone()
    return _row_to_article(row) if row else None


def list_articles(
    conn: DBConn, category: str | None = None, limit: int = 9, offset: int = 0
) -> list[Article]:
    limit = max(1, min(50, int(limit or 9)))
    offset = max(0, int(offset or 0))
    if category:
        rows = conn.execute(
            f"""
            SELECT {ARTICLE_COLUMNS} FROM articles
            WHERE category = ? AND status = 'published'
            ORDER BY published_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (category, limit, offset),
        ).fetchall()
    else:
        rows = conn.execute(
            f"""
            SELECT {ARTICLE_COLUMNS} FROM articles
            WHERE status = 'published'
            ORDER BY published_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        ).fetchall()
    return [_row_to_article(row) for row in rows]


def count_articles(conn: DBConn) -> int:
    row = conn.execute("SELECT COUNT(*) FROM articles").fetchone()
    return int(row[0]) if row else 0


def get_latest_published_at(conn: DBConn) -> str | None:
    row = conn.execute(
        "SELECT MAX(published_at) FROM articles WHERE status = 'published'"
    ).fetchone()
    return row[0] if row and row[0] else None


def _update_returning(conn: DBConn, sql: str, params: tuple) -> SourceQueueItem | None:
    rows = conn.execute(
        sql.rstrip() + f"\nRETURNING {QUEUE_COLUMNS}",
        params,
    ).fetchall()
    return _row_to_item(rows[0]) if rows else None


def _error_text(err: object) -> str:
    if err is None:
        return "Unknown error"
    text = str(err) or err.__class__.__name__
    return text[:2000]


def _row_to_item(row: tuple) -> SourceQueueItem:
    (
        item_id,
        source_url,
        status,
        attempt_count,
        claimed_at,
        created_at,
        processed_at,
        updated_at,
        published_slug,
        fb_post_id,
        last_error,
    ) = row
    return SourceQueueItem(
        id=int(item_id),
        source_url=source_url,
        status=status,
        attempt_count=int(attempt_count),
        claimed_at=claimed_at,
        created_at=created_at,
        processed_at=processed_at,
        updated_at=updated_at,
        published_slug=published_slug,
        fb_post_id=fb_post_id,
        last_error=last_error,
    )


def _row_to_article(row: tuple) -> Article:
    (
        article_id,
        slug,
        title,
        content,
        excerpt,
        image_url,
        category,
        status,
        source_url,
        published_at,
        created_at,
    ) = row
    return Article(
        id=int(article_id),
        slug=slug,
        title=title,
        content=content,
        excerpt=excerpt or "",
        image_url=image_url,
        category=category,
        status=status,
        source_url=source_url,
        published_at=published_at,
        created_at=created_at,
    )
