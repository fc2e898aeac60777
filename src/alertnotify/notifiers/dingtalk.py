from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.exceptions import RequestException

from ..config import DingTalkConfig
from ..context import Context, ContextCancelled
from ..httpclient import HTTPClient, drain, redact
from ..models import Alert
from ..templating import Template, TemplateError, build_template_data
from .types import (
    HTTPStatusError,
    Notifier,
    NotifyResult,
    ProviderError,
    RequestBuildError,
    ResponseFormatError,
    TransportError,
)
from .utils import _excerpt_body, _trim

LOGGER = logging.getLogger(__name__)

# DingTalk rejects robot messages above roughly 20k characters.
MAX_MESSAGE_LENGTH = 20000


@dataclass(frozen=True)
class DingTalkResponse:
    """Envelope returned by the robot endpoint.

    ``code`` is ``None`` when ``errcode`` is absent, which is not the same as
    an explicit ``0``.
    """

    code: Optional[int]
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.code == 0

    @classmethod
    def parse(cls, body: bytes) -> "DingTalkResponse":
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ResponseFormatError(f"invalid DingTalk response: {_excerpt_body(body)}") from exc
        if not isinstance(payload, dict):
            raise ResponseFormatError(f"unexpected DingTalk response: {_excerpt_body(body)}")

        code = payload.get("errcode")
        if code is not None and (isinstance(code, bool) or not isinstance(code, int)):
            raise ResponseFormatError(f"DingTalk errcode is not an integer: {code!r}")
        message = payload.get("errmsg")
        return cls(code=code, message="" if message is None else str(message))


def sign_request(secret: str, timestamp_ms: int) -> str:
    """Signature for robots with the "additional signature" security setting."""
    string_to_sign = f"{timestamp_ms}\n{secret}"
    digest = hmac.new(secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class DingTalkNotifier(Notifier):
    """DingTalk group robot notifier.

    One ``notify`` call renders the configured title/message templates, posts
    a single robot message and classifies the outcome into ``(retryable,
    error)``:

    - template errors are not retried
    - request preparation and transport failures are retried
    - non-200 statuses and provider error codes are not retried
    - an unparseable body is retried
    """

    name = "dingtalk"

    def __init__(
        self,
        conf: DingTalkConfig,
        template: Template,
        logger: logging.Logger | None = None,
        *,
        client: HTTPClient | None = None,
    ) -> None:
        self._conf = conf
        self._template = template
        self._logger = logger or LOGGER
        self._client = client if client is not None else HTTPClient(conf.http)

    @property
    def config(self) -> DingTalkConfig:
        return self._conf

    def notify(self, ctx: Context, *alerts: Alert) -> NotifyResult:
        data = build_template_data(ctx, self._template, alerts, self._logger)
        try:
            title = self._template.render_text(self._conf.title, data)
            text = self._template.render_text(self._conf.message, data)
        except TemplateError as exc:
            return False, exc

        try:
            request = self._build_request(title, text)
        except (RequestException, ValueError, TypeError) as exc:
            return True, RequestBuildError(self._redact(f"failed to build DingTalk request: {exc}"))

        try:
            response = self._client.send(ctx, request)
        except (RequestException, ContextCancelled) as exc:
            return True, TransportError(self._redact(f"DingTalk request failed: {exc}", request.url))

        try:
            return self._handle_response(response)
        finally:
            drain(response)

    def close(self) -> None:
        self._client.close()

    def _handle_response(self, response: requests.Response) -> NotifyResult:
        if response.status_code != 200:
            return False, HTTPStatusError(
                f"DingTalk responded with status code {response.status_code}",
                response.status_code,
            )

        body = response.content or b""
        self._logger.debug("DingTalk response: %s", body.decode("utf-8", errors="replace"))

        try:
            envelope = DingTalkResponse.parse(body)
        except ResponseFormatError as exc:
            return True, exc
        if envelope.code is None:
            return True, ResponseFormatError(f"DingTalk response has no errcode: {_excerpt_body(body)}")

        if envelope.ok:
            return False, None
        return False, ProviderError(envelope.message or f"DingTalk error code {envelope.code}", envelope.code)

    def _build_request(self, title: str, text: str) -> requests.PreparedRequest:
        params: dict[str, Any] = {"access_token": self._conf.access_token}
        if self._conf.secret:
            timestamp_ms = int(time.time() * 1000)
            params["timestamp"] = str(timestamp_ms)
            params["sign"] = sign_request(self._conf.secret, timestamp_ms)

        request = requests.Request(
            "POST",
            self._conf.url,
            params=params,
            json=self._build_payload(title, text),
            headers={"Content-Type": "application/json; charset=utf-8", "Accept": "application/json"},
        )
        return request.prepare()

    def _build_payload(self, title: str, text: str) -> dict[str, Any]:
        message_text = _trim(self._decorate_text(text), MAX_MESSAGE_LENGTH) or "-"
        payload: dict[str, Any] = {"msgtype": self._conf.message_type}
        if self._conf.message_type == "markdown":
            payload["markdown"] = {"title": _trim(title, 256) or "-", "text": message_text}
        else:
            payload["text"] = {"content": message_text}
        payload["at"] = {"atMobiles": list(self._conf.at_mobiles), "isAtAll": self._conf.at_all}
        return payload

    def _decorate_text(self, text: str) -> str:
        # Mentions only highlight when "@<mobile>" also appears in the text.
        missing = [f"@{mobile}" for mobile in self._conf.at_mobiles if f"@{mobile}" not in text]
        if not missing:
            return text
        return f"{text.rstrip()}\n\n{' '.join(missing)}"

    def _redact(self, message: str, url: Optional[str] = None) -> str:
        urls = [self._conf.url]
        if url:
            urls.append(url)
        return redact(message, urls, self._conf.secrets())
