from __future__ import annotations

import copy

import pytest

from presswire.config import DEFAULT_CONFIG, build_config
from presswire.storage import init_db

_ENV_VARS = (
    "PW_DB_URL",
    "PW_CONFIG_PATH",
    "PW_DATA_DIR",
    "PW_SITE_URL",
    "PW_CRON_SECRET",
    "PW_ADMIN_SECRET",
    "PW_OPENAI_API_KEY",
    "PW_LLM_API_KEY",
    "PW_FB_PAGE_ID",
    "PW_FB_PAGE_TOKEN",
    "PW_BLOCKED_SOURCE_HOSTS",
    "PW_BLOCKED_TITLE_SUBSTRINGS",
    "PW_MAX_CALLS_PER_RUN",
    "PW_LOG_FILE",
    "PW_LOG_LEVELS",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def conn(tmp_path):
    db = init_db(str(tmp_path / "data" / "state.sqlite3"))
    yield db
    db.close()


@pytest.fixture
def make_config(tmp_path):
    def _make(**sections):
        cfg = copy.deepcopy(DEFAULT_CONFIG)
        cfg["paths"]["data_dir"] = str(tmp_path / "data")
        cfg["paths"]["state_db"] = str(tmp_path / "data" / "state.sqlite3")
        cfg["http"]["max_retries"] = 0
        for section, values in sections.items():
            cfg[section].update(values)
        return build_config(cfg)

    return _make
