from __future__ import annotations

from typing import Iterable

from .models import BlockDecision
from .utils import host_of, normalize_for_compare

NOT_BLOCKED = BlockDecision(blocked=False, reason=None)


def host_matches(blocked_host: str, actual_host: str) -> bool:
    """Exact match, or ``actual_host`` is a subdomain of ``blocked_host``."""
    blocked = (blocked_host or "").strip().lower().lstrip(".")
    actual = (actual_host or "").strip().lower()
    if not blocked or not actual:
        return False
    return actual == blocked or actual.endswith("." + blocked)


def is_blocked_source_url(url: str | None, blocked_hosts: Iterable[str]) -> BlockDecision:
    blocked = [host for host in blocked_hosts if host]
    if not blocked:
        return NOT_BLOCKED
    host = host_of(url)
    if not host:
        return NOT_BLOCKED
    for candidate in blocked:
        if host_matches(candidate, host):
            return BlockDecision(blocked=True, reason=f"Blocked host: {candidate}")
    return NOT_BLOCKED


def is_blocked_title(title: str | None, blocked_substrings: Iterable[str]) -> BlockDecision:
    normalized_title = normalize_for_compare(title)
    if not normalized_title:
        return NOT_BLOCKED
    for part in blocked_substrings:
        normalized_part = normalize_for_compare(part)
        if normalized_part and normalized_part in normalized_title:
            return BlockDecision(blocked=True, reason=f"Blocked title match: {part}")
    return NOT_BLOCKED
