from __future__ import annotations

import http.client
import json
import logging
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from .errors import TransientUpstreamError, UpstreamError
from .utils import log_event

T = TypeVar("T")


@dataclass(frozen=True)
class HttpResponse:
    status: int
    url: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def text(self) -> str:
        charset = "utf-8"
        content_type = self.header("content-type") or ""
        if "charset=" in content_type:
            charset = content_type.split("charset=", 1)[1].split(";", 1)[0].strip() or charset
        try:
            return self.body.decode(charset, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.text() or "null")
        except json.JSONDecodeError:
            return None


def http_request(
    method: str,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    data: bytes | None = None,
    error_cls: type[UpstreamError] = TransientUpstreamError,
) -> HttpResponse:
    """Perform one request.

    Any HTTP status comes back as a response; timeouts and connection failures
    raise ``error_cls`` with no status.
    """
    request = urllib.request.Request(url, data=data, method=method)
    for key, value in (headers or {}).items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return HttpResponse(
                status=response.getcode(),
                url=response.geturl(),
                body=response.read(),
                headers={k.lower(): v for k, v in response.headers.items()},
            )
    except urllib.error.HTTPError as exc:
        try:
            body = exc.read()
        except (OSError, http.client.HTTPException):
            body = b""
        return HttpResponse(
            status=exc.code,
            url=url,
            body=body,
            headers={k.lower(): v for k, v in (exc.headers or {}).items()},
        )
    except (urllib.error.URLError, TimeoutError, ConnectionError, http.client.HTTPException) as exc:
        reason = getattr(exc, "reason", exc)
        raise error_cls(f"network_error: {reason}") from exc
    except OSError as exc:
        raise error_cls(f"network_error: {exc}") from exc


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Capped exponential backoff with full jitter."""
    ceiling = min(cap, base * (2 ** attempt))
    return random.uniform(0, ceiling) if ceiling > 0 else 0.0


def _is_retryable(exc: Exception) -> bool:
    return isinstance(exc, UpstreamError) and exc.retryable


def call_with_retries(
    func: Callable[[], T],
    *,
    retries: int,
    base_delay: float,
    max_delay: float,
    logger: logging.Logger,
    label: str,
    is_retryable: Callable[[Exception], bool] = _is_retryable,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    attempt = 0
    while True:
        try:
            return func()
        except Exception as exc:  # noqa: BLE001
            if attempt >= retries or not is_retryable(exc):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            log_event(
                logger,
                logging.WARNING,
                "upstream_retry",
                call=label,
                attempt=attempt + 1,
                delay_seconds=round(delay, 2),
                error=str(exc),
            )
            sleep(delay)
            attempt += 1


def retry_after_seconds(response: HttpResponse) -> int | None:
    value = response.header("retry-after")
    if not value:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None
