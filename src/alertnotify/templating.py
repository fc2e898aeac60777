from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .context import Context
from .models import STATUS_FIRING, STATUS_RESOLVED, Alert, common_pairs

LOGGER = logging.getLogger(__name__)

DEFAULT_TEMPLATES: Dict[str, str] = {
    "dingtalk.default.title": "[{status_upper}{firing_suffix}] {common_labels_text}",
    "dingtalk.default.message": (
        "#### [{status_upper}{firing_suffix}] {group_labels_text}\n\n"
        "{alerts_markdown}\n\n"
        "[Alertmanager]({external_url})"
    ),
    "email.default.subject": "[{status_upper}{firing_suffix}] {common_labels_text}",
    "email.default.body": "{alerts_text}\n\nSource: {external_url}",
}


class TemplateError(ValueError):
    """Raised when a template cannot be rendered against the supplied data."""


class TemplateDict(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_template(template: str, context: dict[str, Any]) -> str:
    enriched = TemplateDict(context)
    return template.format_map(enriched)


@dataclass(frozen=True)
class TemplateData:
    """Derived, read-only view of an alert batch used for rendering."""

    receiver: str
    status: str
    alerts: List[Dict[str, Any]]
    group_labels: Dict[str, str]
    common_labels: Dict[str, str]
    common_annotations: Dict[str, str]
    external_url: str
    firing_count: int = 0
    resolved_count: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_context(self) -> Dict[str, Any]:
        firing_suffix = f":{self.firing_count}" if self.status == STATUS_FIRING else ""
        context: Dict[str, Any] = {
            "receiver": self.receiver,
            "status": self.status,
            "status_upper": self.status.upper(),
            "firing_suffix": firing_suffix,
            "alerts": self.alerts,
            "alerts_count": len(self.alerts),
            "firing_count": self.firing_count,
            "resolved_count": self.resolved_count,
            "group_labels": self.group_labels,
            "common_labels": self.common_labels,
            "common_annotations": self.common_annotations,
            "external_url": self.external_url,
            "group_labels_text": _labels_text(self.group_labels),
            "common_labels_text": _labels_text(self.common_labels),
            "alerts_text": _alerts_text(self.alerts),
            "alerts_markdown": _alerts_markdown(self.alerts),
        }
        context.update(self.extra)
        return context


def _labels_text(labels: Mapping[str, str]) -> str:
    if not labels:
        return ""
    return " ".join(f"{key}={labels[key]}" for key in sorted(labels))


def _alert_line(alert: Mapping[str, Any]) -> str:
    labels = alert.get("labels") or {}
    annotations = alert.get("annotations") or {}
    summary = annotations.get("summary") or annotations.get("description") or ""
    name = labels.get("alertname") or "alert"
    line = f"[{alert.get('status', '').upper()}] {name}"
    if summary:
        line += f": {summary}"
    return line


def _alerts_text(alerts: Sequence[Mapping[str, Any]]) -> str:
    return "\n".join(_alert_line(alert) for alert in alerts)


def _alerts_markdown(alerts: Sequence[Mapping[str, Any]]) -> str:
    lines: List[str] = []
    for alert in alerts:
        lines.append(f"- {_alert_line(alert)}")
        starts_at = alert.get("startsAt")
        if starts_at:
            lines.append(f"  - started: {starts_at}")
        generator_url = alert.get("generatorURL")
        if generator_url:
            lines.append(f"  - [source]({generator_url})")
    return "\n".join(lines)


class Template:
    """Shared, stateless text template engine.

    Templates use ``str.format`` syntax with attribute and index access
    (``{common_labels[severity]}``). Unknown top-level names render as
    literal ``{name}``. A template string equal to a registered template name
    is replaced by the registered text before rendering.
    """

    def __init__(
        self,
        templates: Optional[Mapping[str, str]] = None,
        *,
        external_url: str = "",
    ) -> None:
        merged = dict(DEFAULT_TEMPLATES)
        merged.update({str(name): str(text) for name, text in (templates or {}).items()})
        self._templates = merged
        self.external_url = external_url

    def names(self) -> List[str]:
        return sorted(self._templates)

    def resolve(self, text: str) -> str:
        return self._templates.get(text, text)

    def render_text(self, text: str, data: TemplateData | Mapping[str, Any]) -> str:
        source = self.resolve(text)
        context = data.as_context() if isinstance(data, TemplateData) else dict(data)
        try:
            return render_template(source, context)
        except (ValueError, KeyError, IndexError, AttributeError, TypeError) as exc:
            raise TemplateError(f"failed to render template {text!r}: {exc}") from exc


def build_template_data(
    ctx: Context,
    template: Template,
    alerts: Sequence[Alert],
    logger: Optional[logging.Logger] = None,
    *,
    now: Optional[dt.datetime] = None,
) -> TemplateData:
    """Derive the template view of an alert batch.

    Group values come from the context; common labels and annotations are
    the pairs shared by every alert in the batch.
    """
    log = logger or LOGGER
    moment = now or dt.datetime.now(dt.timezone.utc)
    rendered = [alert.to_dict(moment) for alert in alerts]
    firing = sum(1 for alert in rendered if alert["status"] == STATUS_FIRING)
    resolved = len(rendered) - firing
    status = STATUS_FIRING if firing else STATUS_RESOLVED

    if not ctx.receiver:
        log.debug("Building template data without a receiver name in context")

    return TemplateData(
        receiver=ctx.receiver,
        status=status,
        alerts=rendered,
        group_labels=dict(ctx.group_labels),
        common_labels=common_pairs(alert.labels for alert in alerts),
        common_annotations=common_pairs(alert.annotations for alert in alerts),
        external_url=template.external_url,
        firing_count=firing,
        resolved_count=resolved,
    )
