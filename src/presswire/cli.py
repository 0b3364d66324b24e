from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os

from .config import ConfigError, get_state_db_path, load_config
from .cron import http_publish_call, local_publish_call, max_calls_from_env, run_cron
from .discover import discover_feed_urls, enqueue_local, enqueue_remote
from .errors import PressWireError, ValidationError
from .models import QUEUE_STATUSES
from .pipelines.publish import run_publish_once
from .storage import (
    enqueue_source_urls,
    get_source_item,
    init_db,
    list_articles,
    list_source_items,
)
from .utils import configure_logging, json_dumps, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("presswire")


def _load(args: argparse.Namespace, logger: logging.Logger):
    try:
        return load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None


def _cmd_sources_enqueue(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    urls = list(args.urls)
    if args.file:
        with open(args.file, "r", encoding="utf-8") as handle:
            urls.extend(line.strip() for line in handle if line.strip() and not line.startswith("#"))
    if not urls:
        log_event(logger, logging.ERROR, "sources_enqueue_empty")
        return 1
    try:
        with init_db(get_state_db_path(config)) as conn:
            items = enqueue_source_urls(conn, urls)
    except ValidationError as exc:
        log_event(logger, logging.ERROR, "sources_enqueue_error", error=str(exc))
        return 1
    for item in items:
        log_event(logger, logging.INFO, "source_enqueued", id=item.id, status=item.status, url=item.source_url)
    log_event(logger, logging.INFO, "sources_enqueued", count=len(items))
    return 0


def _cmd_sources_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    with init_db(get_state_db_path(config)) as conn:
        items = list_source_items(conn, status=args.status, limit=args.limit)
    for item in items:
        log_event(
            logger,
            logging.INFO,
            "source",
            id=item.id,
            status=item.status,
            attempts=item.attempt_count,
            slug=item.published_slug,
            url=item.source_url,
            last_error=item.last_error,
        )
    log_event(logger, logging.INFO, "sources_listed", count=len(items))
    return 0


def _cmd_sources_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    with init_db(get_state_db_path(config)) as conn:
        item = get_source_item(conn, args.item_id)
    if item is None:
        log_event(logger, logging.ERROR, "source_not_found", id=args.item_id)
        return 1
    logger.info(json.dumps(dataclasses.asdict(item), indent=2, sort_keys=True))
    return 0


def _cmd_publish(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    with init_db(get_state_db_path(config)) as conn:
        result = run_publish_once(conn, config, logger)
    logger.info(json_dumps(result))
    return 1 if result.get("hard_failure") else 0


def _cmd_cron(args: argparse.Namespace, logger: logging.Logger) -> int:
    max_calls = args.max_calls or max_calls_from_env()
    if args.url:
        secret = args.secret or os.environ.get("PW_CRON_SECRET")
        call = http_publish_call(args.url, secret, timeout=args.timeout)
    else:
        config = _load(args, logger)
        if config is None:
            return 1
        call = local_publish_call(config, logger)
    summary = run_cron(call, max_calls, logger)
    return summary.exit_code


def _cmd_discover(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    feeds = args.feeds or config.discovery.feeds
    if not feeds:
        log_event(logger, logging.WARNING, "no_feeds", hint="Set discovery.feeds or pass --feed")
        return 1
    urls = discover_feed_urls(feeds, config, logger)
    if args.dry_run:
        for url in urls:
            log_event(logger, logging.INFO, "discovered", url=url)
        log_event(logger, logging.INFO, "discover_dry_run", count=len(urls))
        return 0
    if not urls:
        log_event(logger, logging.INFO, "discover_empty")
        return 0
    try:
        if args.api_url:
            secret = os.environ.get("PW_ADMIN_SECRET") or os.environ.get("PW_CRON_SECRET")
            count = enqueue_remote(args.api_url, urls, secret, timeout=config.http.timeout_seconds)
        else:
            with init_db(get_state_db_path(config)) as conn:
                count = enqueue_local(conn, urls)
    except PressWireError as exc:
        log_event(logger, logging.ERROR, "discover_enqueue_error", error=str(exc))
        return 1
    log_event(logger, logging.INFO, "discover_enqueued", count=count)
    return 0


def _cmd_articles_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    with init_db(get_state_db_path(config)) as conn:
        articles = list_articles(conn, category=args.category, limit=args.limit)
    for article in articles:
        log_event(
            logger,
            logging.INFO,
            "article",
            slug=article.slug,
            category=article.category,
            published_at=article.published_at,
        )
    log_event(logger, logging.INFO, "articles_listed", count=len(articles))
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    path = get_state_db_path(config)
    with init_db(path):
        log_event(logger, logging.INFO, "db_migrated", path=path)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    uvicorn.run("presswire.api:app", host=args.host, port=args.port, proxy_headers=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="presswire", description="PressWire CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to PW_CONFIG_PATH, then built-in defaults)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sources_parser = subparsers.add_parser("sources", help="Manage the source queue")
    sources_subparsers = sources_parser.add_subparsers(dest="sources_command", required=True)

    sources_enqueue = sources_subparsers.add_parser("enqueue", help="Enqueue source URLs")
    sources_enqueue.add_argument("urls", nargs="*", help="Article URLs")
    sources_enqueue.add_argument("--file", help="Read URLs from a file, one per line")
    sources_enqueue.set_defaults(func=_cmd_sources_enqueue)

    sources_list = sources_subparsers.add_parser("list", help="List queue items")
    sources_list.add_argument("--status", choices=list(QUEUE_STATUSES), default=None)
    sources_list.add_argument("--limit", type=int, default=50, help="Number of items to show")
    sources_list.set_defaults(func=_cmd_sources_list)

    sources_show = sources_subparsers.add_parser("show", help="Show a queue item")
    sources_show.add_argument("item_id", type=int, help="Queue item id")
    sources_show.set_defaults(func=_cmd_sources_show)

    publish_parser = subparsers.add_parser("publish", help="Claim and publish one source")
    publish_parser.set_defaults(func=_cmd_publish)

    cron_parser = subparsers.add_parser("cron", help="Call the publish step repeatedly")
    cron_parser.add_argument("--url", help="Base URL of a running API; runs in-process when omitted")
    cron_parser.add_argument("--secret", help="Cron secret (defaults to PW_CRON_SECRET)")
    cron_parser.add_argument(
        "--max-calls",
        type=int,
        default=None,
        help="Call budget for this run (defaults to PW_MAX_CALLS_PER_RUN or 10)",
    )
    cron_parser.add_argument("--timeout", type=float, default=120.0, help="Per-call HTTP timeout")
    cron_parser.set_defaults(func=_cmd_cron)

    discover_parser = subparsers.add_parser("discover", help="Enqueue article links from RSS feeds")
    discover_parser.add_argument("--feed", dest="feeds", action="append", default=[], help="Feed URL (repeatable)")
    discover_parser.add_argument("--api-url", help="POST links to this API instead of the local store")
    discover_parser.add_argument("--dry-run", action="store_true", help="Print links without enqueueing")
    discover_parser.set_defaults(func=_cmd_discover)

    articles_parser = subparsers.add_parser("articles", help="Published articles")
    articles_subparsers = articles_parser.add_subparsers(dest="articles_command", required=True)

    articles_list = articles_subparsers.add_parser("list", help="List published articles")
    articles_list.add_argument("--category", default=None)
    articles_list.add_argument("--limit", type=int, default=20)
    articles_list.set_defaults(func=_cmd_articles_list)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)

    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
