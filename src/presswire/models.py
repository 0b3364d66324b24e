from __future__ import annotations

from dataclasses import dataclass

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_POSTED = "posted"
STATUS_FAILED = "failed"

QUEUE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_POSTED, STATUS_FAILED)


@dataclass(frozen=True)
class SourceQueueItem:
    id: int
    source_url: str
    status: str
    attempt_count: int
    claimed_at: str | None
    created_at: str
    processed_at: str | None
    updated_at: str
    published_slug: str | None
    fb_post_id: str | None
    last_error: str | None


@dataclass(frozen=True)
class Article:
    id: int | None
    slug: str
    title: str
    content: str
    excerpt: str
    image_url: str | None
    category: str
    status: str
    source_url: str | None
    published_at: str
    created_at: str


@dataclass(frozen=True)
class ScrapeResult:
    title: str
    content: str
    image_url: str | None


@dataclass(frozen=True)
class RewriteResult:
    title: str
    content: str


@dataclass(frozen=True)
class BlockDecision:
    blocked: bool
    reason: str | None = None


@dataclass(frozen=True)
class SocialPost:
    post_id: str | None
    photo_id: str | None = None


@dataclass(frozen=True)
class SocialOutcome:
    ok: bool
    post_id: str | None
    comment_id: str | None
    error: str | None
