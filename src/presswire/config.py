from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .errors import ConfigError
from .utils import parse_csv

__all__ = [
    "Config",
    "ConfigError",
    "DEFAULT_CONFIG",
    "build_config",
    "get_state_db_path",
    "load_config",
    "validate_config",
]


@dataclass(frozen=True)
class AppConfig:
    name: str
    language: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str


@dataclass(frozen=True)
class SiteConfig:
    base_url: str
    name: str
    share_path: str


@dataclass(frozen=True)
class QueueConfig:
    max_attempts: int
    scan_limit: int
    recent_posted_limit: int
    stale_claim_seconds: int


@dataclass(frozen=True)
class PublishConfig:
    min_interval_minutes: float
    category: str
    max_slug_attempts: int
    slug_max_length: int
    excerpt_length: int


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: float
    user_agent: str
    max_retries: int
    backoff_seconds: float
    backoff_cap_seconds: float


@dataclass(frozen=True)
class ScrapeConfig:
    min_content_length: int
    max_content_chars: int


@dataclass(frozen=True)
class RewriteConfig:
    enabled: bool
    required: bool
    min_title_length: int
    max_title_length: int
    same_title_min_length: int
    max_input_chars: int
    placeholder_titles: list[str]
    label_prefixes: list[str]


@dataclass(frozen=True)
class LlmConfig:
    provider_type: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float
    api_key: str | None


@dataclass(frozen=True)
class FacebookConfig:
    enabled: bool
    required: bool
    api_version: str
    timeout_seconds: float
    comment_enabled: bool
    comment_template: str
    comment_attempts: int
    resolve_attempts: int
    resolve_backoff_seconds: float
    page_id: str | None
    page_token: str | None


@dataclass(frozen=True)
class BlocklistConfig:
    hosts: list[str]
    title_substrings: list[str]


@dataclass(frozen=True)
class DiscoveryConfig:
    feeds: list[str]
    per_feed_limit: int
    batch_limit: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    site: SiteConfig
    queue: QueueConfig
    publish: PublishConfig
    http: HttpConfig
    scrape: ScrapeConfig
    rewrite: RewriteConfig
    llm: LlmConfig
    facebook: FacebookConfig
    blocklist: BlocklistConfig
    discovery: DiscoveryConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "PressWire",
        "language": "ro",
    },
    "paths": {
        "data_dir": "/data",
        "state_db": "",
    },
    "site": {
        "base_url": "http://localhost:8000",
        "name": "PressWire",
        "share_path": "/s/",
    },
    "queue": {
        "max_attempts": 5,
        "scan_limit": 200,
        "recent_posted_limit": 2000,
        "stale_claim_seconds": 900,
    },
    "publish": {
        "min_interval_minutes": 0.0,
        "category": "stiri",
        "max_slug_attempts": 20,
        "slug_max_length": 80,
        "excerpt_length": 160,
    },
    "http": {
        "timeout_seconds": 20.0,
        "user_agent": "Mozilla/5.0 (compatible; PressWireBot/1.0)",
        "max_retries": 2,
        "backoff_seconds": 1.0,
        "backoff_cap_seconds": 10.0,
    },
    "scrape": {
        "min_content_length": 200,
        "max_content_chars": 50000,
    },
    "rewrite": {
        "enabled": False,
        "required": False,
        "min_title_length": 12,
        "max_title_length": 110,
        "same_title_min_length": 24,
        "max_input_chars": 12000,
        "placeholder_titles": ["titlu", "title", "titlul", "headline", "untitled"],
        "label_prefixes": ["titlu:", "title:", "titlul:", "headline:", "linia 1:"],
    },
    "llm": {
        "provider_type": "openai_compatible",
        "base_url": "",
        "model": "gpt-4o-mini",
        "temperature": 0.4,
        "max_tokens": 1800,
        "timeout_seconds": 60.0,
    },
    "facebook": {
        "enabled": False,
        "required": False,
        "api_version": "v19.0",
        "timeout_seconds": 30.0,
        "comment_enabled": True,
        "comment_template": "{url}",
        "comment_attempts": 3,
        "resolve_attempts": 4,
        "resolve_backoff_seconds": 2.0,
    },
    "blocklist": {
        "hosts": [],
        "title_substrings": [],
    },
    "discovery": {
        "feeds": [],
        "per_feed_limit": 25,
        "batch_limit": 80,
    },
}

PROVIDER_TYPES = ("openai_compatible", "anthropic")


def get_state_db_path(config: Config | None = None) -> str:
    if config is not None and config.paths.state_db:
        return config.paths.state_db
    data_dir = os.environ.get("PW_DATA_DIR") or (
        config.paths.data_dir if config is not None else DEFAULT_CONFIG["paths"]["data_dir"]
    )
    return os.path.join(data_dir, "state.sqlite3")


def load_config(path: str | None = None) -> Config:
    """Defaults, overlaid with the YAML file at ``path`` (or ``PW_CONFIG_PATH``)."""
    path = path or os.environ.get("PW_CONFIG_PATH")
    cfg = _deep_copy(DEFAULT_CONFIG)
    if path:
        if not os.path.exists(path):
            raise ConfigError(f"config file not found: {path}")
        with open(path, "r", encoding="utf-8") as handle:
            try:
                loaded = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError("config file must contain a mapping")
        cfg = _deep_merge(cfg, loaded)
    return build_config(cfg)


def build_config(cfg: dict[str, Any]) -> Config:
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg, os.environ)


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if errors:
        return errors
    if cfg["llm"]["provider_type"] not in PROVIDER_TYPES:
        errors.append(f"config.llm.provider_type must be one of {', '.join(PROVIDER_TYPES)}")
    if cfg["queue"]["max_attempts"] < 1:
        errors.append("config.queue.max_attempts must be >= 1")
    if cfg["publish"]["max_slug_attempts"] < 1:
        errors.append("config.publish.max_slug_attempts must be >= 1")
    if cfg["publish"]["min_interval_minutes"] < 0:
        errors.append("config.publish.min_interval_minutes must be >= 0")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any], env) -> Config:
    app_cfg = cfg["app"]
    paths_cfg = cfg["paths"]
    site_cfg = cfg["site"]
    queue_cfg = cfg["queue"]
    publish_cfg = cfg["publish"]
    http_cfg = cfg["http"]
    scrape_cfg = cfg["scrape"]
    rewrite_cfg = cfg["rewrite"]
    llm_cfg = cfg["llm"]
    fb_cfg = cfg["facebook"]
    block_cfg = cfg["blocklist"]
    discovery_cfg = cfg["discovery"]

    site_url = (env.get("PW_SITE_URL") or site_cfg["base_url"]).rstrip("/")
    data_dir = env.get("PW_DATA_DIR") or paths_cfg["data_dir"]

    blocked_hosts = [host.lower() for host in block_cfg["hosts"]]
    for host in parse_csv(env.get("PW_BLOCKED_SOURCE_HOSTS")):
        if host.lower() not in blocked_hosts:
            blocked_hosts.append(host.lower())
    blocked_titles = list(block_cfg["title_substrings"])
    for item in parse_csv(env.get("PW_BLOCKED_TITLE_SUBSTRINGS")):
        if item not in blocked_titles:
            blocked_titles.append(item)

    return Config(
        app=AppConfig(name=str(app_cfg["name"]), language=str(app_cfg["language"])),
        paths=PathsConfig(data_dir=str(data_dir), state_db=str(paths_cfg["state_db"])),
        site=SiteConfig(
            base_url=site_url,
            name=str(site_cfg["name"]),
            share_path=str(site_cfg["share_path"]),
        ),
        queue=QueueConfig(
            max_attempts=int(queue_cfg["max_attempts"]),
            scan_limit=int(queue_cfg["scan_limit"]),
            recent_posted_limit=int(queue_cfg["recent_posted_limit"]),
            stale_claim_seconds=int(queue_cfg["stale_claim_seconds"]),
        ),
        publish=PublishConfig(
            min_interval_minutes=float(publish_cfg["min_interval_minutes"]),
            category=str(publish_cfg["category"]),
            max_slug_attempts=int(publish_cfg["max_slug_attempts"]),
            slug_max_length=int(publish_cfg["slug_max_length"]),
            excerpt_length=int(publish_cfg["excerpt_length"]),
        ),
        http=HttpConfig(
            timeout_seconds=float(http_cfg["timeout_seconds"]),
            user_agent=str(http_cfg["user_agent"]),
            max_retries=int(http_cfg["max_retries"]),
            backoff_seconds=float(http_cfg["backoff_seconds"]),
            backoff_cap_seconds=float(http_cfg["backoff_cap_seconds"]),
        ),
        scrape=ScrapeConfig(
            min_content_length=int(scrape_cfg["min_content_length"]),
            max_content_chars=int(scrape_cfg["max_content_chars"]),
        ),
        rewrite=RewriteConfig(
            enabled=bool(rewrite_cfg["enabled"]),
            required=bool(rewrite_cfg["required"]),
            min_title_length=int(rewrite_cfg["min_title_length"]),
            max_title_length=int(rewrite_cfg["max_title_length"]),
            same_title_min_length=int(rewrite_cfg["same_title_min_length"]),
            max_input_chars=int(rewrite_cfg["max_input_chars"]),
            placeholder_titles=list(rewrite_cfg["placeholder_titles"]),
            label_prefixes=list(rewrite_cfg["label_prefixes"]),
        ),
        llm=LlmConfig(
            provider_type=str(llm_cfg["provider_type"]),
            base_url=str(llm_cfg["base_url"]),
            model=str(llm_cfg["model"]),
            temperature=float(llm_cfg["temperature"]),
            max_tokens=int(llm_cfg["max_tokens"]),
            timeout_seconds=float(llm_cfg["timeout_seconds"]),
            api_key=env.get("PW_OPENAI_API_KEY") or env.get("PW_LLM_API_KEY") or None,
        ),
        facebook=FacebookConfig(
            enabled=bool(fb_cfg["enabled"]),
            required=bool(fb_cfg["required"]),
            api_version=str(fb_cfg["api_version"]),
            timeout_seconds=float(fb_cfg["timeout_seconds"]),
            comment_enabled=bool(fb_cfg["comment_enabled"]),
            comment_template=str(fb_cfg["comment_template"]),
            comment_attempts=int(fb_cfg["comment_attempts"]),
            resolve_attempts=int(fb_cfg["resolve_attempts"]),
            resolve_backoff_seconds=float(fb_cfg["resolve_backoff_seconds"]),
            page_id=env.get("PW_FB_PAGE_ID") or None,
            page_token=env.get("PW_FB_PAGE_TOKEN") or None,
        ),
        blocklist=BlocklistConfig(hosts=blocked_hosts, title_substrings=blocked_titles),
        discovery=DiscoveryConfig(
            feeds=list(discovery_cfg["feeds"]),
            per_feed_limit=int(discovery_cfg["per_feed_limit"]),
            batch_limit=int(discovery_cfg["batch_limit"]),
        ),
    )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
