"""
Tests for the ReqDash proxy relay.

Outbound calls go to the local origin fixture from ``conftest.py``.
"""

import json
import threading
import time
from unittest.mock import patch

import pytest
import requests

from reqdash.config import RelayConfig
from reqdash.core.models import RequestDescriptor
from reqdash.core.relay import (
    CancelToken,
    RelayCancelled,
    RelayEngine,
    RelayErrorKind,
    RelayResult,
    decode_body,
    get_relay_engine,
    relay,
    reset_relay_engine,
)


@pytest.fixture
def engine():
    return RelayEngine(RelayConfig(connect_timeout=2, read_timeout=5, total_timeout=10))


# ── Validation ───────────────────────────────────────────────────────────────


class TestValidation:
    def test_empty_mapping(self, engine):
        result = engine.relay({})
        assert result.status_code == 400
        assert result.payload == {"error": "URL is required"}
        assert result.error_kind is RelayErrorKind.VALIDATION

    def test_none_descriptor(self, engine):
        assert engine.relay(None).status_code == 400

    def test_blank_url(self, engine):
        assert engine.relay(RequestDescriptor(url="")).status_code == 400

    @patch("reqdash.core.relay.requests.Session")
    def test_no_outbound_call_on_validation_error(self, mock_session, engine):
        engine.relay({"method": "POST", "data": {"a": 1}})
        mock_session.assert_not_called()


# ── Success Paths ────────────────────────────────────────────────────────────


class TestSuccess:
    def test_json_body_parsed(self, engine, origin):
        result = engine.relay({"url": origin.url("/json")})
        assert result.status_code == 200
        assert result.ok
        assert result.payload["status"] == 200
        assert result.payload["statusText"] == "OK"
        assert result.payload["data"] == {"ok": True}
        assert result.payload["headers"]["content-type"] == "application/json"

    def test_text_body_verbatim(self, engine, origin):
        result = engine.relay({"url": origin.url("/text")})
        assert result.payload["data"] == "hello"

    def test_declared_charset(self, engine, origin):
        result = engine.relay({"url": origin.url("/latin1")})
        assert result.payload["data"] == "café"

    def test_remote_error_status_carried_inside(self, engine, origin):
        result = engine.relay({"url": origin.url("/missing")})
        assert result.status_code == 200
        assert result.payload["status"] == 404
        assert result.payload["statusText"] == "Not Found"
        assert result.payload["data"] == {"error": "missing"}

    def test_duplicate_response_headers_kept(self, engine, origin):
        result = engine.relay({"url": origin.url("/cookies")})
        assert result.response.headers.get_all("set-cookie") == ["a=1", "b=2"]
        assert result.payload["headers"]["set-cookie"] == "b=2"

    def test_head_request(self, engine, origin):
        result = engine.relay({"url": origin.url("/json"), "method": "HEAD"})
        assert result.payload["status"] == 200
        assert result.payload["data"] is None

    def test_duration_recorded(self, engine, origin):
        assert engine.relay({"url": origin.url("/text")}).duration_ms >= 0


# ── Outbound Construction ────────────────────────────────────────────────────


class TestOutbound:
    def test_get_never_sends_body(self, engine, origin):
        engine.relay({"url": origin.url("/echo"), "method": "GET", "data": {"secret": 1}})
        assert origin.last["method"] == "GET"
        assert origin.last["body"] == b""

    def test_missing_method_defaults_to_get_without_body(self, engine, origin):
        engine.relay({"url": origin.url("/echo"), "data": {"secret": 1}})
        assert origin.last["method"] == "GET"
        assert origin.last["body"] == b""

    def test_post_json_body(self, engine, origin):
        result = engine.relay({
            "url": origin.url("/echo"), "method": "POST", "data": {"name": "Bob"},
        })
        assert json.loads(origin.last["body"]) == {"name": "Bob"}
        assert result.payload["data"]["method"] == "POST"

    def test_no_default_content_type(self, engine, origin):
        engine.relay({"url": origin.url("/echo"), "method": "POST", "data": {"a": 1}})
        assert "Content-Type" not in origin.last["headers"]

    def test_string_payload_sent_as_json_text(self, engine, origin):
        engine.relay({"url": origin.url("/echo"), "method": "PUT", "data": "a=1&b=2"})
        assert origin.last["method"] == "PUT"
        assert origin.last["body"] == b'"a=1&b=2"'

    def test_plain_string_payload_quoted(self, engine, origin):
        engine.relay({"url": origin.url("/echo"), "method": "POST", "data": "hello"})
        assert origin.last["body"] == b'"hello"'

    def test_headers_passed_through(self, engine, origin):
        engine.relay({
            "url": origin.url("/echo"),
            "headers": {"X-Custom": "yes", "Content-Type": "application/json"},
        })
        assert origin.last["headers"]["X-Custom"] == "yes"
        assert origin.last["headers"]["Content-Type"] == "application/json"

    def test_repeated_request_headers_folded(self, engine, origin):
        engine.relay(RequestDescriptor(
            url=origin.url("/echo"),
            headers=[("X-Tag", "a"), ("X-Tag", "b"), ("Cookie", "c=1"), ("Cookie", "d=2")],
        ))
        assert origin.last["headers"]["X-Tag"] == "a, b"
        assert origin.last["headers"]["Cookie"] == "c=1; d=2"

    def test_custom_method_passed_through(self, engine, origin):
        engine.relay({"url": origin.url("/echo"), "method": "patch", "data": [1]})
        assert origin.last["method"] == "PATCH"
        assert json.loads(origin.last["body"]) == [1]


# ── Failures ─────────────────────────────────────────────────────────────────


class TestFailures:
    def test_unreachable_host(self, engine, unreachable_url):
        result = engine.relay({"url": unreachable_url})
        assert result.status_code == 500
        assert isinstance(result.payload["error"], str)
        assert result.payload["error"]
        assert result.error_kind is RelayErrorKind.CONNECTION

    def test_malformed_url(self, engine):
        result = engine.relay({"url": "not a url"})
        assert result.status_code == 500
        assert result.payload["error"]

    def test_invalid_json_body(self, engine, origin):
        result = engine.relay({"url": origin.url("/bad-json")})
        assert result.status_code == 500
        assert result.error_kind is RelayErrorKind.DECODE

    def test_read_timeout(self, engine, origin):
        result = engine.relay({"url": origin.url("/stall")}, timeout=0.3)
        assert result.status_code == 500
        assert result.error_kind is RelayErrorKind.TIMEOUT

    def test_total_deadline(self, origin):
        engine = RelayEngine(RelayConfig(total_timeout=0.3))
        start = time.monotonic()
        result = engine.relay({"url": origin.url("/slow")})
        assert result.error_kind is RelayErrorKind.TIMEOUT
        assert "deadline" in result.payload["error"]
        assert time.monotonic() - start < 3

    def test_body_limit(self, origin):
        engine = RelayEngine(RelayConfig(max_body_bytes=1000))
        result = engine.relay({"url": origin.url("/large")})
        assert result.status_code == 500
        assert result.error_kind is RelayErrorKind.TOO_LARGE

    @pytest.mark.parametrize("headers", [5, "abc", [["only-name"]]])
    def test_malformed_headers_become_failure(self, engine, headers):
        result = engine.relay({"url": "https://example.com", "headers": headers})
        assert result.status_code == 500
        assert result.payload["error"]
        assert result.error_kind is RelayErrorKind.VALIDATION

    def test_non_object_descriptor_becomes_failure(self, engine):
        result = engine.relay(["https://example.com"])
        assert result.status_code == 500
        assert result.payload["error"]

    def test_non_finite_payload_not_sent(self, engine, origin):
        seen = len(origin.received)
        result = engine.relay({
            "url": origin.url("/echo"), "method": "POST", "data": {"x": float("inf")},
        })
        assert result.status_code == 500
        assert len(origin.received) == seen

    @patch("reqdash.core.relay.requests.Session")
    def test_exception_without_message_gets_generic_error(self, mock_session, engine):
        mock_session.return_value.__enter__.return_value.request.side_effect = requests.RequestException()
        result = engine.relay({"url": "https://example.com"})
        assert result.status_code == 500
        assert result.payload == {"error": "Internal server error"}
        assert result.error_kind is RelayErrorKind.UPSTREAM


# ── Cancellation ─────────────────────────────────────────────────────────────


class TestCancellation:
    def test_token_basics(self):
        token = CancelToken()
        assert not token.cancelled
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(RelayCancelled):
            token.raise_if_cancelled()

    def test_callbacks_run_once(self):
        token = CancelToken()
        calls = []
        token.on_cancel(lambda: calls.append(1))
        token.cancel()
        token.cancel()
        assert calls == [1]

    def test_callback_after_cancel_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls = []
        token.on_cancel(lambda: calls.append(1))
        assert calls == [1]

    def test_callback_error_ignored(self):
        token = CancelToken()

        def boom():
            raise RuntimeError("boom")

        token.on_cancel(boom)
        token.cancel()
        assert token.cancelled

    def test_pre_cancelled_skips_outbound(self, engine, origin):
        seen = len(origin.received)
        token = CancelToken()
        token.cancel()
        result = engine.relay({"url": origin.url("/json")}, cancel=token)
        assert result.status_code == 500
        assert result.payload == {"error": "Request cancelled"}
        assert result.error_kind is RelayErrorKind.CANCELLED
        assert len(origin.received) == seen

    def test_cancel_in_flight(self, engine, origin):
        token = CancelToken()
        results = []
        worker = threading.Thread(
            target=lambda: results.append(engine.relay({"url": origin.url("/slow")}, cancel=token)),
        )
        start = time.monotonic()
        worker.start()
        time.sleep(0.4)
        token.cancel()
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert results[0].error_kind is RelayErrorKind.CANCELLED
        assert time.monotonic() - start < 3

    def test_cancel_before_response_headers(self, engine, origin):
        token = CancelToken()
        results = []
        worker = threading.Thread(
            target=lambda: results.append(engine.relay({"url": origin.url("/stall")}, cancel=token)),
        )
        worker.start()
        time.sleep(0.2)
        cancelled_at = time.monotonic()
        token.cancel()
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert time.monotonic() - cancelled_at < 0.8
        assert results[0].status_code == 500
        assert results[0].payload == {"error": "Request cancelled"}
        assert results[0].error_kind is RelayErrorKind.CANCELLED

    def test_token_without_cancel_completes(self, engine, origin):
        result = engine.relay({"url": origin.url("/json")}, cancel=CancelToken())
        assert result.ok
        assert result.payload["data"] == {"ok": True}

    def test_worker_error_propagates(self, engine, unreachable_url):
        result = engine.relay({"url": unreachable_url}, cancel=CancelToken())
        assert result.error_kind is RelayErrorKind.CONNECTION


# ── Helpers ──────────────────────────────────────────────────────────────────


class TestDecodeBody:
    def test_json(self):
        assert decode_body("application/json", b'{"a":[1]}') == {"a": [1]}

    def test_json_with_charset(self):
        assert decode_body("application/json; charset=utf-8", b'"x"') == "x"

    def test_empty_json_is_none(self):
        assert decode_body("application/json", b"") is None

    def test_text(self):
        assert decode_body("text/html", b"<p>hi</p>") == "<p>hi</p>"

    def test_missing_content_type_is_text(self):
        assert decode_body("", b'{"a":1}') == '{"a":1}'

    def test_unknown_charset_falls_back(self):
        assert decode_body("text/plain; charset=bogus-9", b"abc") == "abc"

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            decode_body("application/json", b"{nope")

    @pytest.mark.parametrize("raw", [b"NaN", b"Infinity", b'{"a": -Infinity}'])
    def test_non_finite_constants_rejected(self, raw):
        with pytest.raises(ValueError):
            decode_body("application/json", raw)


class TestRelayResult:
    def test_failure_defaults_message(self):
        result = RelayResult.failure(500, "", RelayErrorKind.UPSTREAM)
        assert result.payload == {"error": "Internal server error"}
        assert result.error == "Internal server error"
        assert not result.ok


class TestSingleton:
    def setup_method(self):
        reset_relay_engine()

    def teardown_method(self):
        reset_relay_engine()

    def test_get_relay_engine_returns_same(self):
        assert get_relay_engine() is get_relay_engine()

    def test_reset_with_config(self):
        reset_relay_engine(RelayConfig(read_timeout=1))
        assert get_relay_engine().config.read_timeout == 1

    def test_module_relay(self, origin):
        result = relay({"url": origin.url("/text")})
        assert result.payload["data"] == "hello"
