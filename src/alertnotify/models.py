from __future__ import annotations

import datetime as dt
import hashlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

STATUS_FIRING = "firing"
STATUS_RESOLVED = "resolved"


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def parse_timestamp(value: Any, *, field_name: str) -> Optional[dt.datetime]:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Empty values and Go's zero time (``0001-01-01T00:00:00Z``) map to ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = dt.datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"'{field_name}' is not a valid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed.astimezone(dt.timezone.utc)


def _string_map(value: Any, *, field_name: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{field_name}' must be a mapping of strings")
    return {str(key): "" if raw is None else str(raw) for key, raw in value.items()}


def label_fingerprint(labels: Mapping[str, str]) -> str:
    """Stable hex digest over the sorted label set."""
    digest = hashlib.sha256()
    for key in sorted(labels):
        digest.update(key.encode("utf-8"))
        digest.update(b"\xff")
        digest.update(labels[key].encode("utf-8"))
        digest.update(b"\xff")
    return digest.hexdigest()[:16]


@dataclass(frozen=True)
class Alert:
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    starts_at: Optional[dt.datetime] = None
    ends_at: Optional[dt.datetime] = None
    generator_url: str = ""
    fingerprint: str = ""

    @property
    def name(self) -> str:
        return self.labels.get("alertname", "")

    def resolved_at(self, now: dt.datetime) -> bool:
        return self.ends_at is not None and self.ends_at <= now

    def status_at(self, now: dt.datetime) -> str:
        return STATUS_RESOLVED if self.resolved_at(now) else STATUS_FIRING

    @property
    def status(self) -> str:
        return self.status_at(_utc_now())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Alert":
        """Build an alert from an Alertmanager-style JSON object."""
        if not isinstance(data, Mapping):
            raise ValueError("Each alert must be a mapping")
        labels = _string_map(data.get("labels"), field_name="labels")
        annotations = _string_map(data.get("annotations"), field_name="annotations")
        fingerprint = str(data.get("fingerprint") or "") or label_fingerprint(labels)
        return cls(
            labels=labels,
            annotations=annotations,
            starts_at=parse_timestamp(data.get("startsAt"), field_name="startsAt"),
            ends_at=parse_timestamp(data.get("endsAt"), field_name="endsAt"),
            generator_url=str(data.get("generatorURL") or ""),
            fingerprint=fingerprint,
        )

    def to_dict(self, now: Optional[dt.datetime] = None) -> Dict[str, Any]:
        moment = now or _utc_now()
        return {
            "status": self.status_at(moment),
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "startsAt": self.starts_at.isoformat() if self.starts_at else "",
            "endsAt": self.ends_at.isoformat() if self.ends_at else "",
            "generatorURL": self.generator_url,
            "fingerprint": self.fingerprint,
        }


def alerts_from_payload(payload: Any) -> list[Alert]:
    """Accept either a bare list of alerts or a webhook body with an ``alerts`` key."""
    if isinstance(payload, Mapping):
        payload = payload.get("alerts")
    if not isinstance(payload, list):
        raise ValueError("Alert payload must be a list or an object with an 'alerts' list")
    return [Alert.from_dict(entry) for entry in payload]


def common_pairs(maps: Iterable[Mapping[str, str]]) -> Dict[str, str]:
    """Return the key/value pairs shared by every mapping."""
    iterator = iter(maps)
    try:
        first = next(iterator)
    except StopIteration:
        return {}
    shared = dict(first)
    for mapping in iterator:
        for key in list(shared):
            if mapping.get(key) != shared[key]:
                del shared[key]
    return shared
