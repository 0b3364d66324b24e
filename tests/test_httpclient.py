import logging

import pytest

from presswire.errors import ScrapeError, TransientUpstreamError
from presswire.httpclient import HttpResponse, backoff_delay, call_with_retries, retry_after_seconds


def test_call_with_retries_retries_only_retryable_errors():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientUpstreamError("network_error: timed out")
        return "ok"

    result = call_with_retries(
        flaky,
        retries=2,
        base_delay=0.5,
        max_delay=4.0,
        logger=logging.getLogger("test"),
        label="flaky",
        sleep=sleeps.append,
    )

    assert result == "ok"
    assert len(calls) == 3
    assert len(sleeps) == 2
    assert all(0 <= delay <= 4.0 for delay in sleeps)


def test_call_with_retries_raises_permanent_errors_immediately():
    calls = []

    def not_found():
        calls.append(1)
        raise ScrapeError("missing", status=404)

    with pytest.raises(ScrapeError):
        call_with_retries(
            not_found,
            retries=3,
            base_delay=0.0,
            max_delay=0.0,
            logger=logging.getLogger("test"),
            label="missing",
            sleep=lambda _: None,
        )

    assert len(calls) == 1


def test_backoff_delay_is_capped():
    assert backoff_delay(0, 0.0, 10.0) == 0.0
    for attempt in range(10):
        assert 0 <= backoff_delay(attempt, 1.0, 5.0) <= 5.0


def test_retry_after_and_text_decoding():
    response = HttpResponse(
        status=429,
        url="https://a.example",
        body="știre".encode("utf-8"),
        headers={"retry-after": "30", "content-type": "text/plain; charset=utf-8"},
    )
    assert retry_after_seconds(response) == 30
    assert response.text() == "știre"
    assert not response.ok
    assert retry_after_seconds(HttpResponse(status=429, url="u", body=b"")) is None
