"""Tests for bridge.endpoint_failover."""

from __future__ import annotations

import http.client
import io
import json
import urllib.error

import pytest

from bridge.endpoint_failover import (
    EmptyReplyError,
    EndpointError,
    EndpointFailover,
    extract_text,
)


def _reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class _FakeResponse(io.BytesIO):
    def __init__(self, payload, status: int = 200):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        super().__init__(raw)
        self.status = status


def _install(monkeypatch, outcomes: dict) -> list[str]:
    """Route urlopen by model name to a payload, an HTTP status, or an exception."""
    calls: list[str] = []

    def fake_urlopen(req, timeout=None):
        url = req.full_url
        model = url.split("/models/", 1)[1].split(":", 1)[0].split("?", 1)[0]
        calls.append(model)
        outcome = outcomes[model]
        if isinstance(outcome, int):
            raise urllib.error.HTTPError(url, outcome, "err", None, None)
        if isinstance(outcome, Exception):
            raise outcome
        return _FakeResponse(outcome)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    return calls


class TestExtractText:
    def test_happy_path(self):
        assert extract_text(_reply("  hey there \n")) == "hey there"

    def test_no_candidates(self):
        with pytest.raises(EmptyReplyError, match="SAFETY"):
            extract_text({"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}})

    def test_missing_parts(self):
        with pytest.raises(EmptyReplyError):
            extract_text({"candidates": [{"finishReason": "SAFETY"}]})

    def test_blank_text(self):
        with pytest.raises(EmptyReplyError):
            extract_text(_reply("   "))


class TestAttemptOrder:
    def test_requires_models(self):
        with pytest.raises(ValueError):
            EndpointFailover([])

    def test_preferred_first(self):
        fo = EndpointFailover(["a", "b", "c"])
        assert fo.attempt_order() == ["a", "b", "c"]
        fo.set_preferred("c")
        assert fo.attempt_order() == ["c", "a", "b"]

    def test_urls(self):
        fo = EndpointFailover(["m1"], base_url="https://api.test/v1beta/")
        assert fo.generate_url("m1", "k y") == "https://api.test/v1beta/models/m1:generateContent?key=k%20y"
        assert fo.model_url("m1", "k") == "https://api.test/v1beta/models/m1?key=k"


class TestGenerate:
    def test_failover_promotes_first_success(self, monkeypatch):
        calls = _install(monkeypatch, {"a": 503, "b": _reply("from b"), "c": _reply("from c")})
        fo = EndpointFailover(["a", "b", "c"])

        assert fo.generate("key", {"contents": []}) == "from b"
        assert calls == ["a", "b"]
        assert fo.preferred == "b"

        assert fo.generate("key", {"contents": []}) == "from b"
        assert calls == ["a", "b", "b"]

    def test_empty_candidates_moves_on(self, monkeypatch):
        calls = _install(monkeypatch, {"a": {"candidates": []}, "b": _reply("ok")})
        fo = EndpointFailover(["a", "b"])
        assert fo.generate("key", {}) == "ok"
        assert calls == ["a", "b"]

    def test_network_error_moves_on(self, monkeypatch):
        _install(monkeypatch, {"a": urllib.error.URLError("down"), "b": TimeoutError(), "c": _reply("c")})
        fo = EndpointFailover(["a", "b", "c"])
        assert fo.generate("key", {}) == "c"
        assert fo.preferred == "c"

    def test_truncated_body_moves_on(self, monkeypatch):
        calls = _install(monkeypatch, {"a": http.client.IncompleteRead(b"{\"cand"), "b": _reply("from b")})
        fo = EndpointFailover(["a", "b"])
        assert fo.generate("key", {}) == "from b"
        assert calls == ["a", "b"]
        assert fo.preferred == "b"

    def test_bad_status_line_ends_in_endpoint_error(self, monkeypatch):
        _install(monkeypatch, {"a": http.client.BadStatusLine("garbage")})
        with pytest.raises(EndpointError) as info:
            EndpointFailover(["a"]).generate("key", {})
        assert isinstance(info.value.__cause__, http.client.BadStatusLine)

    def test_invalid_json_moves_on(self, monkeypatch):
        _install(monkeypatch, {"a": b"<html>", "b": _reply("b")})
        assert EndpointFailover(["a", "b"]).generate("key", {}) == "b"

    def test_all_fail(self, monkeypatch):
        calls = _install(monkeypatch, {"a": 500, "b": 429, "c": {"candidates": []}})
        fo = EndpointFailover(["a", "b", "c"])
        with pytest.raises(EndpointError) as info:
            fo.generate("key", {})
        assert isinstance(info.value.__cause__, EmptyReplyError)
        assert calls == ["a", "b", "c"]
        assert fo.preferred == "a"

    def test_request_body_is_json(self, monkeypatch):
        seen = {}

        def fake_urlopen(req, timeout=None):
            seen["body"] = json.loads(req.data.decode())
            seen["method"] = req.get_method()
            seen["timeout"] = timeout
            return _FakeResponse(_reply("ok"))

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
        EndpointFailover(["a"], timeout=7).generate("key", {"contents": [1]})
        assert seen == {"body": {"contents": [1]}, "method": "POST", "timeout": 7}


class TestProbe:
    def test_empty_key(self):
        assert EndpointFailover(["a"]).probe("  ") is False

    def test_ok(self, monkeypatch):
        _install(monkeypatch, {"a": {"name": "models/a"}})
        assert EndpointFailover(["a"]).probe("key") is True

    @pytest.mark.parametrize("code", [400, 401, 403])
    def test_rejected(self, monkeypatch, code):
        calls = _install(monkeypatch, {"a": code, "b": {"name": "b"}})
        assert EndpointFailover(["a", "b"]).probe("key") is False
        assert calls == ["a"]

    def test_rate_limited_counts_as_valid(self, monkeypatch):
        _install(monkeypatch, {"a": 429})
        assert EndpointFailover(["a"]).probe("key") is True

    def test_server_error_tries_next(self, monkeypatch):
        calls = _install(monkeypatch, {"a": 500, "b": {"name": "b"}})
        assert EndpointFailover(["a", "b"]).probe("key") is True
        assert calls == ["a", "b"]

    def test_protocol_error_tries_next(self, monkeypatch):
        calls = _install(monkeypatch, {"a": http.client.RemoteDisconnected("closed"), "b": {"name": "b"}})
        assert EndpointFailover(["a", "b"]).probe("key") is True
        assert calls == ["a", "b"]

    def test_unreachable(self, monkeypatch):
        _install(monkeypatch, {"a": urllib.error.URLError("down")})
        assert EndpointFailover(["a"]).probe("key") is False

    def test_does_not_touch_preferred(self, monkeypatch):
        _install(monkeypatch, {"a": 500, "b": {"name": "b"}})
        fo = EndpointFailover(["a", "b"])
        fo.probe("key")
        assert fo.preferred == "a"
