from __future__ import annotations

import datetime as dt
import json
import threading
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from alertnotify.config import DingTalkConfig
from alertnotify.context import Context
from alertnotify.httpclient import HTTPClient
from alertnotify.models import Alert
from alertnotify.notifiers import (
    DingTalkNotifier,
    DingTalkResponse,
    HTTPStatusError,
    ProviderError,
    RequestBuildError,
    ResponseFormatError,
    TransportError,
)
from alertnotify.notifiers.dingtalk import sign_request
from alertnotify.templating import Template, TemplateError

TOKEN = "tok-supersecret-123"


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, *, body: Optional[bytes] = None) -> None:
        self.status_code = status_code
        if body is None:
            body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        self._body = body
        self.consumed = False
        self.closed = False

    @property
    def content(self) -> bytes:
        self.consumed = True
        return self._body

    def iter_content(self, chunk_size: int = 1):
        self.consumed = True
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False
        self._lock = threading.Lock()

    def send(self, request, **kwargs):
        with self._lock:
            self.calls.append({"request": request, "kwargs": kwargs})
            response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def _alert(name: str = "HighCPU", *, resolved: bool = False, **labels: str) -> Alert:
    now = dt.datetime.now(dt.timezone.utc)
    return Alert(
        labels={"alertname": name, "severity": "critical", **labels},
        annotations={"summary": f"{name} is happening"},
        starts_at=now - dt.timedelta(minutes=5),
        ends_at=now - dt.timedelta(minutes=1) if resolved else None,
        generator_url="http://prometheus.local/graph",
    )


def _notifier(session: FakeSession, **overrides: Any) -> DingTalkNotifier:
    conf = DingTalkConfig(access_token=TOKEN, **overrides)
    client = HTTPClient(conf.http, session=session)
    return DingTalkNotifier(conf, Template(external_url="http://alertmanager.local"), client=client)


def _sent_payload(session: FakeSession, index: int = 0) -> Dict[str, Any]:
    return json.loads(session.calls[index]["request"].body)


def test_success_envelope_returns_no_error() -> None:
    session = FakeSession([FakeResponse(200, {"errcode": 0, "errmsg": "ok"})])
    notifier = _notifier(session)

    retryable, error = notifier.notify(Context(receiver="ops"), _alert())

    assert (retryable, error) == (False, None)
    assert len(session.calls) == 1
    request = session.calls[0]["request"]
    assert request.method == "POST"
    assert request.url.startswith("https://oapi.dingtalk.com/robot/send?")
    assert parse_qs(urlsplit(request.url).query)["access_token"] == [TOKEN]
    assert session.calls[0]["kwargs"]["stream"] is True


def test_markdown_payload_contains_rendered_alerts() -> None:
    session = FakeSession([FakeResponse(200, {"errcode": 0, "errmsg": "ok"})])
    notifier = _notifier(session)

    notifier.notify(Context(receiver="ops", group_labels={"alertname": "HighCPU"}), _alert(), _alert(resolved=True))

    payload = _sent_payload(session)
    assert payload["msgtype"] == "markdown"
    assert payload["markdown"]["title"].startswith("[FIRING:1]")
    text = payload["markdown"]["text"]
    assert "alertname=HighCPU" in text
    assert "[FIRING] HighCPU: HighCPU is happening" in text
    assert "[RESOLVED] HighCPU" in text
    assert "http://alertmanager.local" in text
    assert payload["at"] == {"atMobiles": [], "isAtAll": False}


def test_text_payload_and_mentions() -> None:
    session = FakeSession([FakeResponse(200, {"errcode": 0})])
    notifier = _notifier(
        session,
        message_type="text",
        message="{status}: {alerts_count} alerts",
        at_mobiles=("13800000000",),
    )

    notifier.notify(Context(), _alert())

    payload = _sent_payload(session)
    assert payload["msgtype"] == "text"
    assert payload["text"]["content"] == "firing: 1 alerts\n\n@13800000000"
    assert payload["at"]["atMobiles"] == ["13800000000"]


def test_signing_secret_adds_timestamp_and_sign(monkeypatch) -> None:
    monkeypatch.setattr("alertnotify.notifiers.dingtalk.time.time", lambda: 1700000000.0)
    session = FakeSession([FakeResponse(200, {"errcode": 0})])
    notifier = _notifier(session, secret="SECabc")

    notifier.notify(Context(), _alert())

    query = parse_qs(urlsplit(session.calls[0]["request"].url).query)
    assert query["timestamp"] == ["1700000000000"]
    assert query["sign"] == [sign_request("SECabc", 1700000000000)]


def test_provider_error_is_not_retried() -> None:
    session = FakeSession([FakeResponse(200, {"errcode": 1, "errmsg": "token invalid"})])
    notifier = _notifier(session)

    retryable, error = notifier.notify(Context(), _alert())

    assert retryable is False
    assert isinstance(error, ProviderError)
    assert str(error) == "token invalid"
    assert error.code == 1


def test_provider_error_without_message_mentions_code() -> None:
    session = FakeSession([FakeResponse(200, {"errcode": 310000})])

    retryable, error = _notifier(session).notify(Context(), _alert())

    assert retryable is False
    assert "310000" in str(error)


def test_template_error_skips_request() -> None:
    session = FakeSession([])
    notifier = _notifier(session, message="{unclosed")

    retryable, error = notifier.notify(Context(), _alert())

    assert retryable is False
    assert isinstance(error, TemplateError)
    assert session.calls == []


def test_unpreparable_request_is_retried_without_sending() -> None:
    session = FakeSession([])
    notifier = _notifier(session, url="http://")

    retryable, error = notifier.notify(Context(), _alert())

    assert retryable is True
    assert isinstance(error, RequestBuildError)
    assert TOKEN not in str(error)
    assert session.calls == []


def test_http_error_status_is_not_retried_and_drained() -> None:
    response = FakeResponse(500, body=b"internal error")
    session = FakeSession([response])

    retryable, error = _notifier(session).notify(Context(), _alert())

    assert retryable is False
    assert isinstance(error, HTTPStatusError)
    assert error.status_code == 500
    assert "500" in str(error)
    assert response.consumed and response.closed


def test_malformed_body_is_retried() -> None:
    response = FakeResponse(200, body=b"<html>gateway</html>")
    session = FakeSession([response])

    retryable, error = _notifier(session).notify(Context(), _alert())

    assert retryable is True
    assert isinstance(error, ResponseFormatError)
    assert response.closed


def test_missing_errcode_is_not_treated_as_success() -> None:
    session = FakeSession([FakeResponse(200, {"errmsg": "ok"})])

    retryable, error = _notifier(session).notify(Context(), _alert())

    assert retryable is True
    assert isinstance(error, ResponseFormatError)


def test_transport_error_is_retried_and_redacted() -> None:
    failure = requests.ConnectionError(
        "HTTPSConnectionPool(host='oapi.dingtalk.com', port=443): Max retries exceeded with url: "
        f"/robot/send?access_token={TOKEN} (Caused by NewConnectionError('Connection refused'))"
    )
    session = FakeSession([failure])

    retryable, error = _notifier(session).notify(Context(), _alert())

    assert retryable is True
    assert isinstance(error, TransportError)
    assert TOKEN not in str(error)
    assert "<redacted>" in str(error)


def test_cancelled_context_returns_promptly() -> None:
    release = threading.Event()
    late_response = FakeResponse(200, {"errcode": 0})

    class BlockingSession(FakeSession):
        def send(self, request, **kwargs):
            self.calls.append({"request": request, "kwargs": kwargs})
            release.wait(5)
            return late_response

    session = BlockingSession()
    notifier = _notifier(session)
    ctx = Context()
    timer = threading.Timer(0.1, ctx.cancel)
    timer.start()

    started = time.monotonic()
    retryable, error = notifier.notify(ctx, _alert())
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert retryable is True
    assert isinstance(error, TransportError)
    assert "canceled" in str(error)

    release.set()
    deadline = time.monotonic() + 2
    while not late_response.closed and time.monotonic() < deadline:
        time.sleep(0.01)
    assert late_response.closed
    notifier.close()


def test_expired_deadline_is_retryable_without_request() -> None:
    session = FakeSession([])
    ctx = Context.with_deadline_in(0)

    retryable, error = _notifier(session).notify(ctx, _alert())

    assert retryable is True
    assert "deadline exceeded" in str(error)
    assert session.calls == []


def test_concurrent_calls_do_not_interfere() -> None:
    class EchoSession(FakeSession):
        def send(self, request, **kwargs):
            text = json.loads(request.body)["text"]["content"]
            if "fail" in text:
                return FakeResponse(200, {"errcode": 7, "errmsg": text})
            return FakeResponse(200, {"errcode": 0})

    notifier = _notifier(EchoSession(), message_type="text", message="{common_labels[alertname]}")
    results: Dict[str, Any] = {}

    def worker(name: str) -> None:
        results[name] = notifier.notify(Context(), _alert(name))

    names = [f"ok-{i}" if i % 2 else f"fail-{i}" for i in range(20)]
    threads = [threading.Thread(target=worker, args=(name,)) for name in names]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for name in names:
        retryable, error = results[name]
        assert retryable is False
        if name.startswith("fail"):
            assert str(error) == name
        else:
            assert error is None


def test_close_releases_session() -> None:
    session = FakeSession()
    notifier = _notifier(session)
    with notifier:
        pass
    assert session.closed


class TestDingTalkResponse:
    def test_parse_explicit_zero(self) -> None:
        envelope = DingTalkResponse.parse(b'{"errcode": 0, "errmsg": "ok"}')
        assert envelope.code == 0
        assert envelope.ok

    def test_parse_absent_code(self) -> None:
        envelope = DingTalkResponse.parse(b'{"errmsg": "ok"}')
        assert envelope.code is None
        assert not envelope.ok

    @pytest.mark.parametrize("body", [b"", b"[]", b'{"errcode": "0"}', b'{"errcode": true}'])
    def test_parse_rejects_bad_bodies(self, body: bytes) -> None:
        with pytest.raises(ResponseFormatError):
            DingTalkResponse.parse(body)
