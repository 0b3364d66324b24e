import logging

from presswire.discover import FeedLink, discover_feed_urls, enqueue_local, parse_feed_links
from presswire.errors import ScrapeError
from presswire.storage import list_source_items

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Ziar</title>
    <item><title>Prima stire</title><link>https://ziar.example/a#comments</link></item>
    <item><title>A doua stire</title><link>https://ziar.example/b</link></item>
    <item><title>Fara link</title></item>
    <item><title>A treia stire</title><link>https://ziar.example/c</link></item>
  </channel>
</rss>
"""


def test_parse_feed_links_strips_fragments_and_caps():
    links = parse_feed_links(RSS, "https://ziar.example/rss", per_feed_limit=2)

    assert links == [
        FeedLink(url="https://ziar.example/a", title="Prima stire", feed_url="https://ziar.example/rss"),
        FeedLink(url="https://ziar.example/b", title="A doua stire", feed_url="https://ziar.example/rss"),
    ]


def _fake_fetch(feeds):
    def _fetch(feed_url, config, logger):
        result = feeds[feed_url]
        if isinstance(result, Exception):
            raise result
        return [FeedLink(url=url, title=title, feed_url=feed_url) for url, title in result]

    return _fetch


def test_discover_dedupes_filters_and_skips_failed_feeds(make_config):
    config = make_config(
        blocklist={"hosts": ["spam.example"], "title_substrings": ["horoscop"]},
        discovery={"batch_limit": 80},
    )
    feeds = {
        "https://one.example/rss": [
            ("https://one.example/a", "Stire"),
            ("https://spam.example/x", "Reclama"),
            ("https://one.example/h", "Horoscop zilnic"),
            ("ftp://one.example/file", "Fisier"),
        ],
        "https://broken.example/rss": ScrapeError("feed fetch failed", status=500),
        "https://two.example/rss": [
            ("https://one.example/a", "Stire"),
            ("https://two.example/b", "Alta stire"),
        ],
    }

    urls = discover_feed_urls(list(feeds), config, logging.getLogger("test"), fetch=_fake_fetch(feeds))

    assert urls == ["https://one.example/a", "https://two.example/b"]


def test_discover_respects_batch_limit(make_config):
    config = make_config(discovery={"batch_limit": 2})
    feeds = {"https://one.example/rss": [(f"https://one.example/{i}", f"Stire {i}") for i in range(5)]}

    urls = discover_feed_urls(list(feeds), config, logging.getLogger("test"), fetch=_fake_fetch(feeds))

    assert urls == ["https://one.example/0", "https://one.example/1"]


def test_enqueue_local_is_idempotent(conn):
    urls = ["https://one.example/a", "https://two.example/b"]

    assert enqueue_local(conn, urls) == 2
    assert enqueue_local(conn, urls) == 2
    assert len(list_source_items(conn)) == 2
