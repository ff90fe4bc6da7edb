"""Model client: one request per prompt to the messages endpoint, or a fixed offline reply."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass

import requests

from .domain import UpstreamError

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-3-sonnet-20240229"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TIMEOUT = 120
DEFAULT_API_VERSION = "2023-06-01"
OFFLINE_MODEL = "mock"


def _env(key: str, default: str | None = None) -> str | None:
    v = os.getenv(key)
    if v is None or str(v).strip() == "":
        return default
    return v.strip()


def _as_int(key: str, default: int) -> int:
    v = _env(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


@dataclass(frozen=True)
class ModelConfig:
    api_key: str = ""
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    timeout: int = DEFAULT_TIMEOUT
    api_version: str = DEFAULT_API_VERSION

    @property
    def offline(self) -> bool:
        return not self.api_key

    @staticmethod
    def from_env() -> "ModelConfig":
        return ModelConfig(
            api_key=_env("CLAUDE_API_KEY", "") or "",
            api_url=_env("CLAUDE_API_URL", DEFAULT_API_URL) or DEFAULT_API_URL,
            model=_env("CLAUDE_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL,
            max_tokens=_as_int("CLAUDE_MAX_TOKENS", DEFAULT_MAX_TOKENS),
            timeout=_as_int("CLAUDE_TIMEOUT", DEFAULT_TIMEOUT),
            api_version=_env("CLAUDE_API_VERSION", DEFAULT_API_VERSION) or DEFAULT_API_VERSION,
        )


@dataclass
class ModelReply:
    text: str
    model: str


OFFLINE_PAYLOAD = {
    "summary": "This is a mock analysis summary. Configure CLAUDE_API_KEY for real analysis.",
    "keyTerms": [
        {"term": "Parties", "value": "Mock parties", "confidence": 95},
        {"term": "Value", "value": "Mock value", "confidence": 90},
    ],
    "risks": [
        {
            "type": "Medium",
            "title": "Mock Risk",
            "description": "This is a mock risk assessment.",
            "clause": "Section 1",
            "recommendation": "Configure Claude API for real analysis",
        }
    ],
    "obligations": [
        {
            "party": "Party A",
            "obligation": "Mock obligation",
            "deadline": "30 days",
            "status": "active",
        }
    ],
    "clauses": [
        {"category": "General", "status": "standard", "text": "Mock clause analysis"},
    ],
    "confidence": 50,
}


class ModelClient:
    """Stateless wrapper; no retries (the analysis service owns retry policy)."""

    def __init__(self, config: ModelConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._session = session

    @property
    def model(self) -> str:
        return OFFLINE_MODEL if self._config.offline else self._config.model

    @property
    def offline(self) -> bool:
        return self._config.offline

    def call(self, prompt: str) -> ModelReply:
        if self._config.offline:
            return ModelReply(text=json.dumps(OFFLINE_PAYLOAD), model=OFFLINE_MODEL)
        cfg = self._config
        payload = {
            "model": cfg.model,
            "max_tokens": int(cfg.max_tokens),
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": cfg.api_key,
            "anthropic-version": cfg.api_version,
        }
        post = self._session.post if self._session is not None else requests.post
        try:
            r = post(cfg.api_url, json=payload, headers=headers, timeout=cfg.timeout)
        except requests.Timeout:
            raise UpstreamError(None, f"Claude API timed out after {cfg.timeout}s") from None
        except requests.RequestException as e:
            raise UpstreamError(None, f"Claude API request failed: {e}") from e
        if not r.ok:
            raise UpstreamError(r.status_code, f"Claude API error: {r.status_code} {r.reason or ''}".rstrip())
        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamError(r.status_code, f"Claude API returned non-JSON body: {e}") from e
        if not isinstance(data, dict):
            raise UpstreamError(r.status_code, "Claude API returned an unexpected body")
        return ModelReply(text=_reply_text(data), model=str(data.get("model") or cfg.model))


def _reply_text(data: dict) -> str:
    content = data.get("content")
    if not isinstance(content, list):
        return ""
    return "".join(str(block.get("text", "")) for block in content if isinstance(block, dict))
