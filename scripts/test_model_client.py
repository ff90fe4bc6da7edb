#!/usr/bin/env python3
"""Tests for ModelClient and ModelConfig (requests.post is patched; no network)."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest import mock

import pytest
import requests

sys.path.insert(0, str(Path(__file__).resolve().parent))

from contract_service.domain import UpstreamError  # noqa: E402
from contract_service.model_client import (  # noqa: E402
    DEFAULT_API_URL,
    DEFAULT_MODEL,
    OFFLINE_MODEL,
    ModelClient,
    ModelConfig,
)

_POST = "contract_service.model_client.requests.post"


def _response(status=200, body=None, reason="OK"):
    r = mock.Mock()
    r.status_code = status
    r.ok = 200 <= status < 400
    r.reason = reason
    if isinstance(body, Exception):
        r.json.side_effect = body
    else:
        r.json.return_value = body
    return r


def _live(**kw):
    return ModelClient(ModelConfig(api_key="sk-test", **kw))


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def test_config_from_env_defaults(monkeypatch):
    for k in ("CLAUDE_API_KEY", "CLAUDE_API_URL", "CLAUDE_MODEL", "CLAUDE_MAX_TOKENS", "CLAUDE_TIMEOUT"):
        monkeypatch.delenv(k, raising=False)
    cfg = ModelConfig.from_env()
    assert cfg.offline is True
    assert cfg.api_url == DEFAULT_API_URL
    assert cfg.model == DEFAULT_MODEL
    assert cfg.max_tokens == 4096


def test_config_from_env_overrides(monkeypatch):
    monkeypatch.setenv("CLAUDE_API_KEY", " sk-live ")
    monkeypatch.setenv("CLAUDE_MODEL", "claude-custom")
    monkeypatch.setenv("CLAUDE_MAX_TOKENS", "not-a-number")
    monkeypatch.setenv("CLAUDE_TIMEOUT", "15")
    cfg = ModelConfig.from_env()
    assert cfg.offline is False
    assert cfg.api_key == "sk-live"
    assert cfg.model == "claude-custom"
    assert cfg.max_tokens == 4096
    assert cfg.timeout == 15


# ---------------------------------------------------------------------------
# Offline mode
# ---------------------------------------------------------------------------

def test_offline_reply_is_fixed_and_makes_no_request():
    client = ModelClient(ModelConfig())
    assert client.offline is True
    assert client.model == OFFLINE_MODEL
    with mock.patch(_POST) as post:
        reply = client.call("prompt")
    post.assert_not_called()
    assert reply.model == OFFLINE_MODEL
    assert json.loads(reply.text)["confidence"] == 50


# ---------------------------------------------------------------------------
# Live mode
# ---------------------------------------------------------------------------

def test_live_call_request_shape_and_text():
    body = {
        "model": "claude-3-sonnet-20240229",
        "content": [{"type": "text", "text": '{"summary": '}, {"type": "text", "text": '"ok"}'}],
    }
    client = _live(timeout=30)
    with mock.patch(_POST, return_value=_response(200, body)) as post:
        reply = client.call("Analyze this")
    assert reply.text == '{"summary": "ok"}'
    assert reply.model == "claude-3-sonnet-20240229"
    args, kwargs = post.call_args
    assert args[0] == DEFAULT_API_URL
    assert kwargs["timeout"] == 30
    assert kwargs["headers"]["x-api-key"] == "sk-test"
    assert kwargs["headers"]["anthropic-version"] == "2023-06-01"
    assert kwargs["json"]["max_tokens"] == 4096
    assert kwargs["json"]["messages"] == [{"role": "user", "content": "Analyze this"}]


def test_live_call_uses_session_when_given():
    session = mock.Mock()
    session.post.return_value = _response(200, {"content": []})
    client = ModelClient(ModelConfig(api_key="k"), session=session)
    with mock.patch(_POST) as post:
        reply = client.call("p")
    post.assert_not_called()
    assert reply.text == ""
    assert reply.model == DEFAULT_MODEL


def test_non_2xx_raises_upstream_error_with_status():
    with mock.patch(_POST, return_value=_response(529, {"error": "overloaded"}, reason="Overloaded")):
        with pytest.raises(UpstreamError) as ei:
            _live().call("p")
    assert ei.value.status == 529
    assert "529" in str(ei.value)
    assert ei.value.retryable is True


def test_client_error_not_retryable():
    with mock.patch(_POST, return_value=_response(401, {}, reason="Unauthorized")):
        with pytest.raises(UpstreamError) as ei:
            _live().call("p")
    assert ei.value.status == 401
    assert ei.value.retryable is False


def test_timeout_raises_upstream_error_without_status():
    with mock.patch(_POST, side_effect=requests.Timeout("read timed out")):
        with pytest.raises(UpstreamError) as ei:
            _live(timeout=5).call("p")
    assert ei.value.status is None
    assert "timed out" in str(ei.value)


def test_connection_error_raises_upstream_error():
    with mock.patch(_POST, side_effect=requests.ConnectionError("refused")):
        with pytest.raises(UpstreamError) as ei:
            _live().call("p")
    assert ei.value.status is None


def test_non_json_body_raises_upstream_error():
    with mock.patch(_POST, return_value=_response(200, ValueError("bad json"))):
        with pytest.raises(UpstreamError):
            _live().call("p")
    with mock.patch(_POST, return_value=_response(200, ["not", "a", "dict"])):
        with pytest.raises(UpstreamError):
            _live().call("p")
