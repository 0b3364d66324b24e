import logging
import sqlite3

import pytest
import yaml

from presswire import cli as cli_module
from presswire.cli import build_parser, main
from presswire.storage import get_source_item_by_url, init_db, list_source_items


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.safe_dump({"paths": {"data_dir": str(tmp_path / "data")}}),
        encoding="utf-8",
    )
    return path


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def _state(tmp_path):
    return init_db(str(tmp_path / "data" / "state.sqlite3"))


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_db_migrate(config_path, tmp_path):
    assert main(["--config", str(config_path), "db", "migrate"]) == 0
    assert (tmp_path / "data" / "state.sqlite3").exists()


def test_sources_enqueue_from_args_and_file(config_path, tmp_path):
    url_file = tmp_path / "urls.txt"
    url_file.write_text("# comentariu\nhttps://b.example/2\n\nhttps://a.example/1\n", encoding="utf-8")

    code = main(
        ["--config", str(config_path), "sources", "enqueue", "https://a.example/1", "--file", str(url_file)]
    )

    assert code == 0
    conn = _state(tmp_path)
    assert len(list_source_items(conn)) == 2
    assert get_source_item_by_url(conn, "https://b.example/2").status == "pending"


def test_sources_enqueue_rejects_invalid_url(config_path, tmp_path):
    assert main(["--config", str(config_path), "sources", "enqueue", "mailto:someone"]) == 1
    assert list_source_items(_state(tmp_path)) == []


def test_sources_list_and_show(config_path):
    main(["--config", str(config_path), "sources", "enqueue", "https://a.example/1"])

    assert main(["--config", str(config_path), "sources", "list", "--status", "pending"]) == 0
    assert main(["--config", str(config_path), "sources", "show", "1"]) == 0
    assert main(["--config", str(config_path), "sources", "show", "99"]) == 1


def test_publish_with_empty_queue(config_path):
    assert main(["--config", str(config_path), "publish"]) == 0


def test_cron_in_process_stops_on_empty_queue(config_path):
    assert main(["--config", str(config_path), "cron", "--max-calls", "3"]) == 0


def test_missing_config_file_fails(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yml"), "db", "migrate"]) == 1


def test_articles_list_empty(config_path):
    assert main(["--config", str(config_path), "articles", "list"]) == 0


@pytest.mark.parametrize(
    "command",
    [
        ["sources", "enqueue", "https://a.example/1"],
        ["sources", "list"],
        ["sources", "show", "1"],
        ["publish"],
        ["articles", "list"],
        ["db", "migrate"],
    ],
)
def test_commands_close_their_connections(config_path, monkeypatch, command):
    opened = []

    def _tracking_init_db(path):
        conn = init_db(path)
        opened.append(conn)
        return conn

    monkeypatch.setattr(cli_module, "init_db", _tracking_init_db)
    main(["--config", str(config_path)] + command)

    assert opened
    for conn in opened:
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")
