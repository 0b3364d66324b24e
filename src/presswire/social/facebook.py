from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol
from urllib.parse import urlencode

from ..config import FacebookConfig, HttpConfig
from ..errors import ConfigError, FacebookError
from ..httpclient import HttpResponse, backoff_delay, call_with_retries, http_request
from ..models import SocialOutcome, SocialPost
from ..utils import log_event

GRAPH_BASE_URL = "https://graph.facebook.com"


class SocialPublisher(Protocol):
    def post_photo(self, image_url: str, caption: str) -> SocialPost:
        ...

    def post_link(self, link: str, message: str) -> SocialPost:
        ...

    def resolve_canonical_post_id(self, post: SocialPost) -> str:
        ...

    def comment(self, post_id: str, message: str) -> str:
        ...


class FacebookClient:
    """Minimal Graph API client for a single Page."""

    def __init__(
        self,
        config: FacebookConfig,
        http: HttpConfig,
        logger: logging.Logger,
        *,
        base_url: str = GRAPH_BASE_URL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not config.page_id or not config.page_token:
            raise ConfigError("missing Facebook credentials (PW_FB_PAGE_ID, PW_FB_PAGE_TOKEN)")
        self._config = config
        self._http = http
        self._logger = logger
        self._base_url = base_url.rstrip("/")
        self._sleep = sleep

    def post_photo(self, image_url: str, caption: str) -> SocialPost:
        data = self._call("POST", f"{self._config.page_id}/photos", {"url": image_url, "caption": caption})
        photo_id = _str_or_none(data.get("id"))
        post_id = _str_or_none(data.get("post_id"))
        if not photo_id and not post_id:
            raise FacebookError("photo post returned no id")
        return SocialPost(post_id=post_id, photo_id=photo_id)

    def post_link(self, link: str, message: str) -> SocialPost:
        data = self._call("POST", f"{self._config.page_id}/feed", {"link": link, "message": message})
        post_id = _str_or_none(data.get("id"))
        if not post_id:
            raise FacebookError("link post returned no id")
        return SocialPost(post_id=post_id)

    def resolve_canonical_post_id(self, post: SocialPost) -> str:
        """Return the id of the visible feed story for ``post``.

        A photo upload answers with the photo id first; the page story id shows up
        a little later, so it is polled with backoff. Falls back to whatever id is
        already known.
        """
        if post.photo_id is None:
            if not post.post_id:
                raise FacebookError("post has no id")
            return post.post_id
        attempts = max(1, self._config.resolve_attempts)
        for attempt in range(attempts):
            try:
                data = self._call("GET", post.photo_id, {"fields": "page_story_id"}, retries=0)
            except FacebookError as exc:
                if not exc.retryable:
                    raise
                log_event(self._logger, logging.WARNING, "facebook_story_poll_failed", error=str(exc))
                data = {}
            story_id = _str_or_none(data.get("page_story_id"))
            if story_id:
                return story_id
            if attempt + 1 < attempts:
                self._sleep(
                    backoff_delay(attempt, self._config.resolve_backoff_seconds, self._http.backoff_cap_seconds)
                )
        log_event(
            self._logger,
            logging.WARNING,
            "facebook_story_id_unresolved",
            photo_id=post.photo_id,
            attempts=attempts,
        )
        return post.post_id or post.photo_id

    def comment(self, post_id: str, message: str) -> str:
        """Single comment request; ``cross_post`` owns the retry budget."""
        data = self._call("POST", f"{post_id}/comments", {"message": message}, retries=0)
        comment_id = _str_or_none(data.get("id"))
        if not comment_id:
            raise FacebookError("comment returned no id")
        return comment_id

    def _call(
        self, method: str, path: str, params: dict[str, str], *, retries: int | None = None
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{self._config.api_version}/{path}"
        payload = dict(params)
        payload["access_token"] = self._config.page_token or ""
        encoded = urlencode(payload)
        if method == "GET":
            url = f"{url}?{encoded}"
            data = None
        else:
            data = encoded.encode("utf-8")

        def _once() -> dict[str, Any]:
            response = http_request(
                method,
                url,
                timeout=self._config.timeout_seconds,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data=data,
                error_cls=FacebookError,
            )
            return _parse_graph_response(response)

        return call_with_retries(
            _once,
            retries=self._http.max_retries if retries is None else retries,
            base_delay=self._http.backoff_seconds,
            max_delay=self._http.backoff_cap_seconds,
            logger=self._logger,
            label=f"facebook:{path.split('/')[-1]}",
            sleep=self._sleep,
        )


def _parse_graph_response(response: HttpResponse) -> dict[str, Any]:
    payload = response.json()
    error = payload.get("error") if isinstance(payload, dict) else None
    if response.ok and not error:
        return payload if isinstance(payload, dict) else {}
    error = error if isinstance(error, dict) else {}
    raise FacebookError(
        str(error.get("message") or response.text()[:400] or "graph_error"),
        status=response.status,
        code=_int_or_none(error.get("code")),
        subcode=_int_or_none(error.get("error_subcode")),
    )


def build_caption(title: str, excerpt: str | None) -> str:
    title = (title or "").strip()
    excerpt = (excerpt or "").strip()
    if excerpt and excerpt != title:
        return f"{title}\n\n{excerpt}"
    return title


def render_comment(template: str, share_url: str, title: str) -> str:
    return template.replace("{url}", share_url).replace("{title}", title)


def cross_post(
    client: SocialPublisher,
    *,
    title: str,
    excerpt: str | None,
    image_url: str | None,
    share_url: str,
    config: FacebookConfig,
    logger: logging.Logger,
    on_post: Callable[[str], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SocialOutcome:
    """Post the article to the Page, then comment the share link under it.

    ``on_post`` receives the canonical post id as soon as it is known. Credential
    and permission failures raise ``ConfigError``; a failed post raises
    ``FacebookError``. A failed comment is reported in the outcome.
    """
    caption = build_caption(title, excerpt)
    try:
        post = _create_post(client, caption, image_url, share_url, logger)
        post_id = client.resolve_canonical_post_id(post)
    except FacebookError as exc:
        if exc.is_config_error:
            raise ConfigError(str(exc)) from exc
        raise
    if on_post is not None:
        on_post(post_id)
    log_event(logger, logging.INFO, "facebook_posted", post_id=post_id, photo=bool(post.photo_id))

    if not config.comment_enabled:
        return SocialOutcome(ok=True, post_id=post_id, comment_id=None, error=None)
    message = render_comment(config.comment_template, share_url, title)
    try:
        comment_id = _comment_with_retries(client, post_id, message, config, logger, sleep)
    except FacebookError as exc:
        if exc.is_config_error:
            raise ConfigError(str(exc)) from exc
        log_event(logger, logging.WARNING, "facebook_comment_failed", post_id=post_id, error=str(exc))
        return SocialOutcome(ok=False, post_id=post_id, comment_id=None, error=f"comment_failed: {exc}")
    return SocialOutcome(ok=True, post_id=post_id, comment_id=comment_id, error=None)


def _create_post(
    client: SocialPublisher,
    caption: str,
    image_url: str | None,
    share_url: str,
    logger: logging.Logger,
) -> SocialPost:
    if image_url:
        try:
            return client.post_photo(image_url, caption)
        except FacebookError as exc:
            if exc.is_config_error or exc.retryable:
                raise
            log_event(logger, logging.WARNING, "facebook_photo_fallback", error=str(exc))
    return client.post_link(share_url, caption)


def _comment_with_retries(
    client: SocialPublisher,
    post_id: str,
    message: str,
    config: FacebookConfig,
    logger: logging.Logger,
    sleep: Callable[[float], None],
) -> str:
    attempts = max(1, config.comment_attempts)
    for attempt in range(attempts):
        try:
            return client.comment(post_id, message)
        except FacebookError as exc:
            if not exc.retryable or attempt + 1 >= attempts:
                raise
            delay = backoff_delay(attempt, config.resolve_backoff_seconds, config.resolve_backoff_seconds * 8)
            log_event(
                logger,
                logging.WARNING,
                "facebook_comment_retry",
                post_id=post_id,
                attempt=attempt + 1,
                delay_seconds=round(delay, 2),
                error=str(exc),
            )
            sleep(delay)
    raise FacebookError("comment attempts exhausted")


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
