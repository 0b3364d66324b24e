from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable

from .config import Config, get_state_db_path
from .errors import PressWireError
from .httpclient import http_request
from .pipelines.publish import run_publish_once
from .storage import init_db
from .utils import log_event

DEFAULT_MAX_CALLS = 10

PublishCall = Callable[[], tuple[int, dict[str, Any]]]


@dataclass
class CronSummary:
    calls: int = 0
    processed: int = 0
    blocked: int = 0
    hard_failures: int = 0
    soft_failures: int = 0
    stopped: str | None = None

    @property
    def exit_code(self) -> int:
        return 1 if self.hard_failures else 0


def max_calls_from_env(default: int = DEFAULT_MAX_CALLS) -> int:
    raw = os.environ.get("PW_MAX_CALLS_PER_RUN", "").strip()
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        return default


def http_publish_call(base_url: str, secret: str | None, *, timeout: float = 120.0) -> PublishCall:
    """Call ``POST {base_url}/cron/publish`` and return (status, body)."""
    url = base_url.rstrip("/") + "/cron/publish"
    headers = {"Accept": "application/json"}
    if secret:
        headers["X-Cron-Secret"] = secret

    def _call() -> tuple[int, dict[str, Any]]:
        response = http_request("POST", url, timeout=timeout, headers=headers, data=b"")
        body = response.json()
        if not isinstance(body, dict):
            body = {"ok": False, "error": response.text()[:400] or "invalid response"}
        return response.status, body

    return _call


def local_publish_call(config: Config, logger: logging.Logger) -> PublishCall:
    """Run the publish step in-process against the configured store."""

    def _call() -> tuple[int, dict[str, Any]]:
        conn = init_db(get_state_db_path(config))
        try:
            result = run_publish_once(conn, config, logger)
        finally:
            conn.close()
        return (503 if result.get("hard_failure") else 200), result

    return _call


def run_cron(call: PublishCall, max_calls: int, logger: logging.Logger) -> CronSummary:
    """Invoke ``call`` up to ``max_calls`` times.

    Stops early on cooldown, an empty queue, or a hard failure. Per-item errors are
    counted as soft failures and the loop keeps going.
    """
    summary = CronSummary()
    for index in range(max(0, max_calls)):
        summary.calls += 1
        try:
            status, body = call()
        except PressWireError as exc:
            summary.hard_failures += 1
            summary.stopped = "transport_error"
            log_event(logger, logging.ERROR, "cron_call_error", call=index + 1, error=str(exc))
            break

        if status >= 500 or body.get("hard_failure"):
            summary.hard_failures += 1
            summary.stopped = "hard_failure"
            log_event(
                logger,
                logging.ERROR,
                "cron_hard_failure",
                call=index + 1,
                status=status,
                error=body.get("error"),
            )
            break
        if status >= 400:
            summary.hard_failures += 1
            summary.stopped = f"http_{status}"
            log_event(logger, logging.ERROR, "cron_http_error", call=index + 1, status=status)
            break
        if body.get("cooldown"):
            summary.stopped = "cooldown"
            log_event(
                logger,
                logging.INFO,
                "cron_cooldown",
                call=index + 1,
                retry_after_seconds=body.get("retry_after_seconds"),
            )
            break
        if body.get("processed"):
            summary.processed += 1
            continue
        if body.get("blocked"):
            summary.blocked += 1
            continue
        if body.get("ok") is False:
            summary.soft_failures += 1
            log_event(logger, logging.WARNING, "cron_soft_failure", call=index + 1, error=body.get("error"))
            continue
        summary.stopped = "no_pending"
        break

    log_event(
        logger,
        logging.INFO,
        "cron_finished",
        calls=summary.calls,
        processed=summary.processed,
        blocked=summary.blocked,
        hard_failures=summary.hard_failures,
        soft_failures=summary.soft_failures,
        stopped=summary.stopped,
    )
    return summary
