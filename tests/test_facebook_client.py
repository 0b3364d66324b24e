import json
import logging
from urllib.parse import parse_qs, urlsplit

import pytest

from presswire.errors import ConfigError, FacebookError
from presswire.httpclient import HttpResponse
from presswire.models import SocialPost
from presswire.social import facebook as facebook_module
from presswire.social.facebook import FacebookClient, build_caption, cross_post, render_comment


class GraphStub:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, method, url, *, timeout, headers=None, data=None, error_cls=None):
        self.requests.append({"method": method, "url": url, "data": data})
        status, payload = self.responses.pop(0)
        return HttpResponse(status=status, url=url, body=json.dumps(payload).encode("utf-8"))


def _client(make_config, monkeypatch, responses, sleeps=None, max_retries=0):
    monkeypatch.setenv("PW_FB_PAGE_ID", "42")
    monkeypatch.setenv("PW_FB_PAGE_TOKEN", "page-token")
    stub = GraphStub(responses)
    monkeypatch.setattr(facebook_module, "http_request", stub)
    config = make_config(
        facebook={"enabled": True, "resolve_attempts": 3, "resolve_backoff_seconds": 0.0},
        http={"max_retries": max_retries, "backoff_seconds": 0.0},
    )
    sink = sleeps if sleeps is not None else []
    client = FacebookClient(config.facebook, config.http, logging.getLogger("test"), sleep=sink.append)
    return client, stub, config


def test_error_kind_classification():
    assert FacebookError("x", status=400, code=190).kind == "token_expired"
    assert FacebookError("x", status=400, code=102, subcode=463).kind == "token_expired"
    assert FacebookError("x", status=403, code=10).kind == "permission"
    assert FacebookError("x", status=403, code=200).kind == "permission"
    assert FacebookError("x", status=400, code=368).kind == "transient"
    assert FacebookError("x", status=500).kind == "transient"
    assert FacebookError("network_error: timed out").kind == "transient"
    assert FacebookError("x", status=400, code=100).kind == "permanent"

    assert FacebookError("x", status=400, code=190).is_config_error
    assert FacebookError("x", status=500, code=2).retryable
    assert not FacebookError("x", status=400, code=100).retryable


def test_client_requires_credentials(make_config):
    config = make_config(facebook={"enabled": True})
    with pytest.raises(ConfigError):
        FacebookClient(config.facebook, config.http, logging.getLogger("test"))


def test_post_link_sends_form_with_token(make_config, monkeypatch):
    client, stub, _ = _client(make_config, monkeypatch, [(200, {"id": "42_1"})])

    post = client.post_link("https://site.example/s/a", "Titlu\n\nRezumat")

    assert post == SocialPost(post_id="42_1", photo_id=None)
    request = stub.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == "https://graph.facebook.com/v19.0/42/feed"
    form = parse_qs(request["data"].decode("utf-8"))
    assert form["link"] == ["https://site.example/s/a"]
    assert form["message"] == ["Titlu\n\nRezumat"]
    assert form["access_token"] == ["page-token"]


def test_graph_error_payload_becomes_typed_error(make_config, monkeypatch):
    error = {"error": {"message": "Session has expired", "code": 190, "error_subcode": 463}}
    client, _, _ = _client(make_config, monkeypatch, [(400, error)])

    with pytest.raises(FacebookError) as excinfo:
        client.comment("42_1", "https://site.example/s/a")

    exc = excinfo.value
    assert exc.status == 400
    assert exc.code == 190
    assert exc.subcode == 463
    assert exc.kind == "token_expired"
    assert "Session has expired" in str(exc)


def test_resolve_canonical_post_id_polls_for_story(make_config, monkeypatch):
    sleeps = []
    client, stub, _ = _client(
        make_config,
        monkeypatch,
        [(200, {"id": "photo-1"}), (200, {"id": "photo-1", "page_story_id": "42_7"})],
        sleeps,
    )

    story_id = client.resolve_canonical_post_id(SocialPost(post_id=None, photo_id="photo-1"))

    assert story_id == "42_7"
    assert len(stub.requests) == 2
    assert stub.requests[0]["method"] == "GET"
    query = parse_qs(urlsplit(stub.requests[0]["url"]).query)
    assert query["fields"] == ["page_story_id"]
    assert len(sleeps) == 1


def test_resolve_canonical_post_id_falls_back_to_known_id(make_config, monkeypatch):
    client, stub, _ = _client(make_config, monkeypatch, [(200, {}), (200, {}), (200, {})])

    story_id = client.resolve_canonical_post_id(SocialPost(post_id="42_3", photo_id="photo-1"))

    assert story_id == "42_3"
    assert len(stub.requests) == 3


def test_link_post_needs_no_polling(make_config, monkeypatch):
    client, stub, _ = _client(make_config, monkeypatch, [])

    assert client.resolve_canonical_post_id(SocialPost(post_id="42_1")) == "42_1"
    assert stub.requests == []


def test_post_photo_returns_photo_and_post_ids(make_config, monkeypatch):
    client, stub, _ = _client(make_config, monkeypatch, [(200, {"id": "photo-9", "post_id": "42_9"})])

    post = client.post_photo("https://cdn.example/a.jpg", "Titlu")

    assert post == SocialPost(post_id="42_9", photo_id="photo-9")
    assert stub.requests[0]["url"].endswith("/42/photos")


def test_caption_and_comment_helpers():
    assert build_caption("Titlu", "Rezumat") == "Titlu\n\nRezumat"
    assert build_caption("Titlu", "Titlu") == "Titlu"
    assert build_caption("Titlu", None) == "Titlu"
    assert render_comment("Citeste: {title} {url}", "https://s/a", "T") == "Citeste: T https://s/a"


def test_transient_comment_failure_uses_exactly_comment_attempts(make_config, monkeypatch):
    server_error = (500, {"error": {"message": "An unknown error occurred", "code": 2}})
    client, stub, config = _client(
        make_config,
        monkeypatch,
        [(200, {"id": "42_1"})] + [server_error] * 9,
        max_retries=2,
    )

    outcome = cross_post(
        client,
        title="Titlu",
        excerpt="Rezumat",
        image_url=None,
        share_url="https://site.example/s/titlu",
        config=config.facebook,
        logger=logging.getLogger("test"),
        sleep=lambda _: None,
    )

    comment_calls = [r for r in stub.requests if r["url"].endswith("/comments")]
    assert len(comment_calls) == config.facebook.comment_attempts == 3
    assert outcome.ok is False
    assert outcome.post_id == "42_1"
    assert outcome.error.startswith("comment_failed: ")


def test_story_polling_makes_one_request_per_attempt(make_config, monkeypatch):
    server_error = (503, {"error": {"message": "Service temporarily unavailable", "code": 2}})
    client, stub, _ = _client(
        make_config,
        monkeypatch,
        [server_error, server_error, (200, {"page_story_id": "42_8"})],
        max_retries=2,
    )

    story_id = client.resolve_canonical_post_id(SocialPost(post_id=None, photo_id="photo-1"))

    assert story_id == "42_8"
    assert len(stub.requests) == 3
