from __future__ import annotations

import logging
from typing import Any

import requests
from requests.exceptions import RequestException

from ..config import WebhookConfig
from ..context import Context, ContextCancelled
from ..httpclient import HTTPClient, drain, redact
from ..models import Alert
from ..templating import Template, TemplateData, build_template_data
from .types import HTTPStatusError, Notifier, NotifyResult, RequestBuildError, TransportError
from .utils import _excerpt_body

LOGGER = logging.getLogger(__name__)

PAYLOAD_VERSION = "4"
RETRYABLE_STATUS_CODES = frozenset({429})


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


class WebhookNotifier(Notifier):
    """Generic JSON webhook posting the whole template view of the batch."""

    name = "webhook"

    def __init__(
        self,
        conf: WebhookConfig,
        template: Template,
        logger: logging.Logger | None = None,
        *,
        client: HTTPClient | None = None,
    ) -> None:
        self._conf = conf
        self._template = template
        self._logger = logger or LOGGER
        self._client = client if client is not None else HTTPClient(conf.http)

    def notify(self, ctx: Context, *alerts: Alert) -> NotifyResult:
        data = build_template_data(ctx, self._template, alerts, self._logger)
        try:
            request = requests.Request(
                "POST",
                self._conf.url,
                json=self._build_payload(ctx, data),
                headers={"Content-Type": "application/json", **dict(self._conf.headers)},
            ).prepare()
        except (RequestException, ValueError, TypeError) as exc:
            return True, RequestBuildError(redact(f"failed to build webhook request: {exc}", [self._conf.url]))

        try:
            response = self._client.send(ctx, request)
        except (RequestException, ContextCancelled) as exc:
            return True, TransportError(redact(f"webhook request failed: {exc}", [self._conf.url]))

        try:
            if 200 <= response.status_code < 300:
                return False, None
            try:
                excerpt = _excerpt_body(response.content or b"")
            except RequestException:
                excerpt = "<unreadable body>"
            self._logger.debug("Webhook responded with %s: %s", response.status_code, excerpt)
            return is_retryable_status(response.status_code), HTTPStatusError(
                f"webhook responded with status code {response.status_code}: {excerpt}",
                response.status_code,
            )
        finally:
            drain(response)

    def close(self) -> None:
        self._client.close()

    def _build_payload(self, ctx: Context, data: TemplateData) -> dict[str, Any]:
        alerts = data.alerts
        truncated = 0
        if self._conf.max_alerts and len(alerts) > self._conf.max_alerts:
            truncated = len(alerts) - self._conf.max_alerts
            alerts = alerts[: self._conf.max_alerts]
        return {
            "version": PAYLOAD_VERSION,
            "groupKey": ctx.group_key,
            "truncatedAlerts": truncated,
            "status": data.status,
            "receiver": data.receiver,
            "groupLabels": data.group_labels,
            "commonLabels": data.common_labels,
            "commonAnnotations": data.common_annotations,
            "externalURL": data.external_url,
            "alerts": alerts,
        }
