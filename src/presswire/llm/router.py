from __future__ import annotations

import json
import logging
from typing import Any

from ..config import PROVIDER_TYPES, HttpConfig, LlmConfig
from ..errors import ConfigError, LLMError
from ..httpclient import HttpResponse, call_with_retries, http_request


def chat_completion(
    llm: LlmConfig,
    http: HttpConfig,
    messages: list[dict[str, str]],
    logger: logging.Logger,
) -> str:
    """Send ``messages`` to the configured provider and return the reply text."""
    if not llm.api_key:
        raise ConfigError("missing LLM API key (PW_OPENAI_API_KEY)")
    base_url = llm.base_url or _default_base_url(llm.provider_type)
    if llm.provider_type == "openai_compatible":
        url = _join_url(base_url, "/chat/completions")
        payload: dict[str, Any] = {
            "model": llm.model,
            "temperature": llm.temperature,
            "max_tokens": llm.max_tokens,
            "messages": messages,
        }
        reader = _read_openai
    elif llm.provider_type == "anthropic":
        url = _join_url(base_url, "/messages")
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        payload = {
            "model": llm.model,
            "temperature": llm.temperature,
            "max_tokens": llm.max_tokens,
            "system": system,
            "messages": [m for m in messages if m["role"] != "system"],
        }
        reader = _read_anthropic
    else:
        raise ConfigError(f"unsupported_provider_type: {llm.provider_type}")

    headers = {"Content-Type": "application/json", **_auth_headers(llm.provider_type, llm.api_key)}
    body = json.dumps(payload).encode("utf-8")

    def _call() -> str:
        response = http_request(
            "POST",
            url,
            timeout=llm.timeout_seconds,
            headers=headers,
            data=body,
            error_cls=LLMError,
        )
        _raise_for_status(response)
        data = response.json()
        if not isinstance(data, dict):
            raise LLMError("response is not a JSON object", status=response.status)
        return reader(data)

    return call_with_retries(
        _call,
        retries=http.max_retries,
        base_delay=http.backoff_seconds,
        max_delay=http.backoff_cap_seconds,
        logger=logger,
        label="llm",
    )


def _raise_for_status(response: HttpResponse) -> None:
    if response.ok:
        return
    detail = response.text()[:400]
    if response.status in (401, 403):
        raise ConfigError(f"LLM provider rejected credentials ({response.status}): {detail}")
    raise LLMError(detail or "http_error", status=response.status)


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        raise LLMError("openai_missing_choices")
    content = (choices[0].get("message") or {}).get("content")
    if not content:
        raise LLMError("openai_empty_content")
    return str(content).strip()


def _read_anthropic(response: dict[str, Any]) -> str:
    content = response.get("content") or []
    if not content:
        raise LLMError("anthropic_missing_content")
    text = content[0].get("text")
    if not text:
        raise LLMError("anthropic_empty_content")
    return str(text).strip()


def _auth_headers(provider_type: str, api_key: str) -> dict[str, str]:
    if provider_type == "openai_compatible":
        return {"Authorization": f"Bearer {api_key}"}
    if provider_type == "anthropic":
        return {"x-api-key": api_key, "anthropic-version": "2023-06-01"}
    return {}


def _default_base_url(provider_type: str) -> str:
    if provider_type == "openai_compatible":
        return "https://api.openai.com/v1"
    if provider_type == "anthropic":
        return "https://api.anthropic.com/v1"
    return ""


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path
