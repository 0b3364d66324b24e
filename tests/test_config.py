import copy

import pytest
import yaml

from presswire.config import (
    DEFAULT_CONFIG,
    ConfigError,
    build_config,
    get_state_db_path,
    load_config,
    validate_config,
)


def test_defaults_are_valid():
    assert validate_config(copy.deepcopy(DEFAULT_CONFIG)) == []
    config = build_config(copy.deepcopy(DEFAULT_CONFIG))
    assert config.queue.max_attempts == 5
    assert config.publish.min_interval_minutes == 0.0
    assert config.rewrite.enabled is False
    assert config.facebook.page_id is None


def test_validate_rejects_unknown_and_mistyped_keys():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["queue"]["max_attempts"] = "five"
    cfg["queue"]["surprise"] = True
    del cfg["rewrite"]["required"]

    errors = validate_config(cfg)

    assert "config.queue.max_attempts must be an integer" in errors
    assert "unknown config.queue.surprise" in errors
    assert "missing config.rewrite.required" in errors


def test_validate_checks_ranges_and_provider():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["queue"]["max_attempts"] = 0
    cfg["llm"]["provider_type"] = "carrier_pigeon"

    errors = validate_config(cfg)

    assert "config.queue.max_attempts must be >= 1" in errors
    assert any(error.startswith("config.llm.provider_type must be one of") for error in errors)
    with pytest.raises(ConfigError):
        build_config(cfg)


def test_load_config_merges_yaml_over_defaults(tmp_path, monkeypatch):
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.safe_dump({"publish": {"min_interval_minutes": 15}, "blocklist": {"hosts": ["Spam.example"]}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("PW_CONFIG_PATH", str(path))

    config = load_config()

    assert config.publish.min_interval_minutes == 15.0
    assert config.publish.category == "stiri"
    assert config.blocklist.hosts == ["spam.example"]


def test_load_config_rejects_bad_files(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yml"))

    path = tmp_path / "list.yml"
    path.write_text("- not\n- a mapping\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_environment_supplies_secrets_and_blocklists(monkeypatch):
    monkeypatch.setenv("PW_OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("PW_FB_PAGE_ID", "42")
    monkeypatch.setenv("PW_FB_PAGE_TOKEN", "token")
    monkeypatch.setenv("PW_SITE_URL", "https://site.example/")
    monkeypatch.setenv("PW_BLOCKED_SOURCE_HOSTS", "a.example, B.example")
    monkeypatch.setenv("PW_BLOCKED_TITLE_SUBSTRINGS", "horoscop,pariuri")

    config = build_config(copy.deepcopy(DEFAULT_CONFIG))

    assert config.llm.api_key == "sk-test"
    assert config.facebook.page_id == "42"
    assert config.facebook.page_token == "token"
    assert config.site.base_url == "https://site.example"
    assert config.blocklist.hosts == ["a.example", "b.example"]
    assert config.blocklist.title_substrings == ["horoscop", "pariuri"]


def test_state_db_path(tmp_path, monkeypatch):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["paths"]["state_db"] = str(tmp_path / "explicit.sqlite3")
    assert get_state_db_path(build_config(cfg)) == str(tmp_path / "explicit.sqlite3")

    monkeypatch.setenv("PW_DATA_DIR", str(tmp_path / "data"))
    assert get_state_db_path(build_config(copy.deepcopy(DEFAULT_CONFIG))) == str(
        tmp_path / "data" / "state.sqlite3"
    )
