import pytest

from presswire.errors import SlugCollisionError
from presswire.storage import count_articles, get_article_by_slug, insert_article, list_articles


def _insert(conn, title="Primăria anunță lucrări", category="stiri", **kwargs):
    return insert_article(conn, title=title, content="Text " * 60, category=category, **kwargs)


def test_insert_article_derives_slug_and_excerpt(conn):
    article = _insert(conn, image_url="https://cdn.example/a.jpg", source_url="https://src.example/a")

    assert article.slug == "primaria-anunta-lucrari"
    assert article.status == "published"
    assert article.excerpt.endswith("…")
    assert len(article.excerpt) <= 160
    assert get_article_by_slug(conn, article.slug) == article


def test_slug_collisions_get_numeric_suffix(conn):
    first = _insert(conn)
    second = _insert(conn)
    third = _insert(conn)

    assert [first.slug, second.slug, third.slug] == [
        "primaria-anunta-lucrari",
        "primaria-anunta-lucrari-2",
        "primaria-anunta-lucrari-3",
    ]
    assert count_articles(conn) == 3


def test_slug_attempts_are_bounded(conn):
    _insert(conn, max_slug_attempts=2)
    _insert(conn, max_slug_attempts=2)

    with pytest.raises(SlugCollisionError):
        _insert(conn, max_slug_attempts=2)


def test_list_articles_filters_and_pages(conn):
    for index in range(5):
        _insert(conn, title=f"Stire {index}")
    _insert(conn, title="Meci", category="sport")

    newest_first = list_articles(conn, category="stiri", limit=2)
    assert [a.title for a in newest_first] == ["Stire 4", "Stire 3"]

    page_two = list_articles(conn, category="stiri", limit=2, offset=2)
    assert [a.title for a in page_two] == ["Stire 2", "Stire 1"]

    assert [a.title for a in list_articles(conn, category="sport")] == ["Meci"]
    assert len(list_articles(conn, limit=500)) == 6


def test_get_article_by_slug_missing(conn):
    assert get_article_by_slug(conn, "nu-exista") is None
