from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup

from ..config import Config
from ..errors import ScrapeError, SourceRateLimited
from ..httpclient import call_with_retries, http_request, retry_after_seconds
from ..models import ScrapeResult
from ..utils import host_of, log_event

_BLOCK_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "br", "div", "section"]
_NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside", "form", "iframe"]


class Scraper:
    """Fetches a source page and pulls out title, main text and lead image."""

    def __init__(self, config: Config, logger: logging.Logger) -> None:
        self._config = config
        self._logger = logger

    def scrape(self, url: str) -> ScrapeResult:
        http_cfg = self._config.http
        response = call_with_retries(
            lambda: _fetch_page(url, timeout=http_cfg.timeout_seconds, user_agent=http_cfg.user_agent),
            retries=http_cfg.max_retries,
            base_delay=http_cfg.backoff_seconds,
            max_delay=http_cfg.backoff_cap_seconds,
            logger=self._logger,
            label="scrape",
        )
        html = response.text()
        result = parse_article_html(
            html,
            url,
            min_content_length=self._config.scrape.min_content_length,
            max_content_chars=self._config.scrape.max_content_chars,
        )
        log_event(
            self._logger,
            logging.INFO,
            "source_scraped",
            url=url,
            content_chars=len(result.content),
            has_image=bool(result.image_url),
        )
        return result


def _fetch_page(url: str, *, timeout: float, user_agent: str):
    response = http_request(
        "GET",
        url,
        timeout=timeout,
        headers={"User-Agent": user_agent, "Accept": "text/html,application/xhtml+xml"},
        error_cls=ScrapeError,
    )
    if response.status == 429:
        raise SourceRateLimited(
            f"rate limited by {host_of(url) or url}",
            retry_after_seconds=retry_after_seconds(response),
        )
    if not response.ok:
        raise ScrapeError(f"fetch failed for {url}", status=response.status)
    return response


def parse_article_html(
    html: str,
    url: str,
    *,
    min_content_length: int = 200,
    max_content_chars: int = 50000,
) -> ScrapeResult:
    soup = BeautifulSoup(html, "html.parser")
    title = _meta_content(soup, "og:title") or _title_tag(soup) or host_of(url) or url
    image_url = _meta_content(soup, "og:image") or _meta_content(soup, "twitter:image")
    content = extract_main_content(html, min_length=min_content_length)
    return ScrapeResult(
        title=_normalize_inline(title),
        content=content[:max_content_chars].strip(),
        image_url=image_url or None,
    )


def extract_main_content(html: str, min_length: int = 200) -> str:
    """Best-effort article body extraction.

    Lossy heuristic: prefers ``<article>``, then ``<main>``, then the largest text
    ``<div>``; when that yields fewer than ``min_length`` characters, the whole
    page text is returned instead.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_NOISE_TAGS):
        tag.decompose()
    body = soup.body or soup
    candidates = [soup.find("article"), soup.find("main"), _largest_div(soup)]
    for candidate in candidates:
        if candidate is None:
            continue
        text = _block_text(candidate)
        if len(text) >= min_length:
            return text
    return _block_text(body)


def _largest_div(soup: BeautifulSoup):
    best = None
    best_len = 0
    for div in soup.find_all("div"):
        length = len(div.get_text(" ", strip=True))
        if length > best_len:
            best_len = length
            best = div
    return best


def _block_text(node) -> str:
    for tag in node.find_all(_BLOCK_TAGS):
        tag.insert_after("\n")
    text = node.get_text("", strip=False)
    lines = [_normalize_inline(line) for line in text.splitlines()]
    paragraphs = [line for line in lines if line]
    return "\n\n".join(paragraphs)


def _meta_content(soup: BeautifulSoup, name: str) -> str | None:
    tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
    if not tag:
        return None
    value = tag.get("content")
    return value.strip() if value and value.strip() else None


def _title_tag(soup: BeautifulSoup) -> str | None:
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None


def _normalize_inline(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
