from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

import jsonschema

from ..config import Config, RewriteConfig
from ..errors import InvalidFormat, TitleRejected
from ..llm import chat_completion
from ..models import RewriteResult
from ..utils import log_event, normalize_for_compare, normalize_title_key

REWRITE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "content": {"type": "string", "minLength": 1},
    },
    "required": ["title", "content"],
}

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_SENTENCE_END_RE = re.compile(r"(?<=[.!?…])\s+")


class RewriterProtocol(Protocol):
    def rewrite(self, title: str, content: str, hints: list[str] | None = None) -> str:
        ...


class Rewriter:
    """LLM-backed rewriter returning raw model text."""

    def __init__(self, config: Config, logger: logging.Logger) -> None:
        self._config = config
        self._logger = logger

    def rewrite(self, title: str, content: str, hints: list[str] | None = None) -> str:
        messages = build_rewrite_messages(
            title,
            content,
            category=self._config.publish.category,
            language=self._config.app.language,
            hints=hints,
            max_input_chars=self._config.rewrite.max_input_chars,
        )
        return chat_completion(self._config.llm, self._config.http, messages, self._logger)


def build_rewrite_messages(
    title: str,
    content: str,
    *,
    category: str,
    language: str,
    hints: list[str] | None = None,
    max_input_chars: int = 12000,
) -> list[dict[str, str]]:
    lines = [
        f"Rewrite the article below in the language with code '{language}'.",
        "Be clear and concise and do not copy whole sentences from the source.",
        "Write a new headline that says the same thing in different words.",
        "Return exactly this format:",
        "Line 1: the headline, with no label or prefix",
        "Line 2: empty",
        "Rest: the article body, paragraphs separated by empty lines.",
    ]
    for hint in hints or []:
        lines.append(hint)
    lines.extend(
        [
            "",
            f"Category: {category}",
            "",
            f"Source headline: {title or ''}".strip(),
            "",
            "Source content:",
            (content or "")[:max_input_chars],
        ]
    )
    return [
        {"role": "system", "content": "You are a careful news editor."},
        {"role": "user", "content": "\n".join(lines)},
    ]


def parse_rewrite(raw: str | None) -> RewriteResult:
    """Parse model output: a JSON object or "title, blank line, body" text."""
    text = _FENCE_RE.sub("", (raw or "").strip()).strip()
    if not text:
        raise InvalidFormat("empty rewrite")
    if text.startswith("{"):
        try:
            payload = json.loads(text)
            jsonschema.validate(payload, REWRITE_SCHEMA)
        except (json.JSONDecodeError, jsonschema.ValidationError) as exc:
            raise InvalidFormat(f"invalid rewrite JSON: {exc}") from exc
        title = _clean_title(payload["title"])
        content = str(payload["content"]).strip()
    else:
        lines = text.split("\n")
        title = _clean_title(lines[0])
        content = "\n".join(lines[1:]).strip()
    if not title or not content:
        raise InvalidFormat("invalid rewrite format")
    return RewriteResult(title=title, content=content)


def _clean_title(value: Any) -> str:
    title = str(value or "").strip()
    title = title.lstrip("#").strip()
    if len(title) > 4 and title.startswith("**") and title.endswith("**"):
        title = title[2:-2].strip()
    return title


def titles_look_same(a: str | None, b: str | None, min_length: int = 24) -> bool:
    """True when two headlines are equal once diacritics, case and punctuation are
    ignored, or when the shorter one (at least ``min_length`` chars) is contained in
    the other."""
    key_a = normalize_title_key(a)
    key_b = normalize_title_key(b)
    if not key_a or not key_b:
        return False
    if key_a == key_b:
        return True
    shorter, longer = sorted((key_a, key_b), key=len)
    return len(shorter) >= min_length and shorter in longer


def title_problem(title: str | None, source_title: str | None, config: RewriteConfig) -> str | None:
    cleaned = (title or "").strip()
    if not cleaned:
        return "empty"
    if len(cleaned) < config.min_title_length:
        return "too_short"
    key = normalize_title_key(cleaned)
    if key in {normalize_title_key(word) for word in config.placeholder_titles}:
        return "placeholder"
    folded = normalize_for_compare(cleaned)
    for prefix in config.label_prefixes:
        normalized_prefix = normalize_for_compare(prefix)
        if normalized_prefix and folded.startswith(normalized_prefix):
            return "label_prefix"
    if titles_look_same(cleaned, source_title, config.same_title_min_length):
        return "unchanged"
    return None


def derive_title_from_content(content: str | None, max_length: int = 110) -> str:
    paragraphs = [p.strip() for p in (content or "").split("\n") if p.strip()]
    if not paragraphs:
        return ""
    first = _SENTENCE_END_RE.split(paragraphs[0], maxsplit=1)[0].strip()
    first = re.sub(r"\s+", " ", first).rstrip(".").strip()
    if len(first) <= max_length:
        return first
    cut = first[: max_length - 1]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:-") + "…"


def rewrite_with_guardrails(
    rewriter: RewriterProtocol,
    source_title: str,
    source_content: str,
    config: RewriteConfig,
    logger: logging.Logger,
) -> RewriteResult:
    hints: list[str] = []
    result: RewriteResult | None = None
    for attempt in range(1, 3):
        raw = rewriter.rewrite(source_title, source_content, hints=hints)
        try:
            result = parse_rewrite(raw)
        except InvalidFormat as exc:
            log_event(logger, logging.WARNING, "rewrite_invalid_format", attempt=attempt, error=str(exc))
            if attempt == 2:
                raise
            hints = ["The previous answer did not follow the required format. Follow it exactly."]
            continue
        problem = title_problem(result.title, source_title, config)
        if problem is None:
            return result
        log_event(
            logger,
            logging.WARNING,
            "rewrite_title_rejected",
            attempt=attempt,
            reason=problem,
            title=repr(result.title),
        )
        hints = [
            f"The previous headline was rejected ({problem}). "
            f"Do not reuse this title: {result.title}",
            f"Do not reuse the source headline: {source_title}",
        ]

    if result is None:
        raise InvalidFormat("invalid rewrite format")
    derived = derive_title_from_content(result.content, config.max_title_length)
    problem = title_problem(derived, source_title, config)
    if problem is None:
        log_event(logger, logging.INFO, "rewrite_title_derived", title=repr(derived))
        return RewriteResult(title=derived, content=result.content)
    raise TitleRejected(f"rewrite_title_rejected: {problem}", content=result.content)
