from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("presswire.migrations")
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row[0]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise


def _migration_source_queue(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS source_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_url TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'pending',
            attempt_count INTEGER NOT NULL DEFAULT 0,
            claimed_at TEXT NULL,
            created_at TEXT NOT NULL,
            processed_at TEXT NULL,
            updated_at TEXT NOT NULL,
            published_slug TEXT NULL,
            fb_post_id TEXT NULL,
            last_error TEXT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_source_queue_status_created "
        "ON source_queue(status, created_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_source_queue_processed "
        "ON source_queue(processed_at)"
    )


def _migration_articles(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            slug TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            excerpt TEXT NOT NULL DEFAULT '',
            image_url TEXT NULL,
            category TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'published',
            source_url TEXT NULL,
            published_at TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_articles_category_published "
        "ON articles(category, status, published_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at)"
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_source_queue", _migration_source_queue),
        ("002_articles", _migration_articles),
    ]
