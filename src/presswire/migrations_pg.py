from __future__ import annotations

import logging

from .utils import utc_now_iso


def apply_migrations_pg(conn) -> None:
    logger = logging.getLogger("presswire.migrations")
    with conn.transaction():
        # Serialise concurrent cold starts on the migration table.
        conn.execute("SELECT pg_advisory_xact_lock(?)", (4_242_001,))
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
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)


def _migrate_source_queue(conn) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS source_queue (
            id BIGSERIAL PRIMARY KEY,
            source_url TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'posted', 'failed')),
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
        "ON source_queue(processed_at DESC NULLS LAST)"
    )


def _migrate_articles(conn) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id BIGSERIAL PRIMARY KEY,
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
        "ON articles(category, status, published_at DESC)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at DESC)"
    )


def _get_migrations():
    return [
        ("001_source_queue", _migrate_source_queue),
        ("002_articles", _migrate_articles),
    ]
