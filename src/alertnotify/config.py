from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .utils import load_yaml_file, parse_bool, validate_url

DEFAULT_DINGTALK_URL = "https://oapi.dingtalk.com/robot/send"
MESSAGE_TYPES = ("markdown", "text")


class ConfigError(ValueError):
    """Raised when configuration values are missing or invalid."""


@dataclass(frozen=True)
class TLSConfig:
    ca_file: str | None = None
    cert_file: str | None = None
    key_file: str | None = None
    insecure_skip_verify: bool = False


@dataclass(frozen=True)
class HTTPClientConfig:
    tls: TLSConfig = field(default_factory=TLSConfig)
    proxy_url: str | None = None
    timeout: float = 10.0
    follow_redirects: bool = True
    pool_maxsize: int = 10


@dataclass(frozen=True)
class DingTalkConfig:
    access_token: str
    secret: str | None = None
    url: str = DEFAULT_DINGTALK_URL
    message_type: str = "markdown"
    title: str = "dingtalk.default.title"
    message: str = "dingtalk.default.message"
    at_mobiles: tuple[str, ...] = ()
    at_all: bool = False
    http: HTTPClientConfig = field(default_factory=HTTPClientConfig)

    def secrets(self) -> tuple[str, ...]:
        return tuple(value for value in (self.access_token, self.secret) if value)


@dataclass(frozen=True)
class WebhookConfig:
    url: str
    headers: tuple[tuple[str, str], ...] = ()
    max_alerts: int = 0
    http: HTTPClientConfig = field(default_factory=HTTPClientConfig)


@dataclass(frozen=True)
class EmailConfig:
    to: tuple[str, ...]
    from_addr: str
    smarthost: str
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    subject: str = "email.default.subject"
    body: str = "email.default.body"
    timeout: float = 10.0


@dataclass(frozen=True)
class ReceiverConfig:
    name: str
    dingtalk_configs: tuple[DingTalkConfig, ...] = ()
    webhook_configs: tuple[WebhookConfig, ...] = ()
    email_configs: tuple[EmailConfig, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    receivers: tuple[ReceiverConfig, ...] = ()
    templates: dict[str, str] = field(default_factory=dict)
    external_url: str = ""

    def receiver(self, name: str) -> ReceiverConfig:
        for receiver in self.receivers:
            if receiver.name == name:
                return receiver
        raise ConfigError(f"Unknown receiver '{name}'")


def _mapping(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{field_name}' must be provided as a mapping when specified")
    return value


def _list(value: Any, field_name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{field_name}' must be provided as a list when specified")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive_float(value: Any, field_name: str, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{field_name}' must be a number") from exc
    if number <= 0:
        raise ConfigError(f"'{field_name}' must be greater than zero")
    return number


def _int(value: Any, field_name: str, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{field_name}' must be an integer") from exc


def _build_tls_config(data: dict[str, Any]) -> TLSConfig:
    return TLSConfig(
        ca_file=_optional_str(data.get("ca_file")),
        cert_file=_optional_str(data.get("cert_file")),
        key_file=_optional_str(data.get("key_file")),
        insecure_skip_verify=parse_bool(data.get("insecure_skip_verify"), default=False),
    )


def _build_http_config(
    data: Any,
    field_prefix: str,
    defaults: HTTPClientConfig | None = None,
) -> HTTPClientConfig:
    base = defaults or HTTPClientConfig()
    raw = _mapping(data, field_prefix)
    if not raw:
        return base

    tls = base.tls
    if "tls_config" in raw:
        tls = _build_tls_config(_mapping(raw.get("tls_config"), f"{field_prefix}.tls_config"))

    proxy_url = _optional_str(raw.get("proxy_url")) if "proxy_url" in raw else base.proxy_url
    pool_maxsize = _int(raw.get("pool_maxsize"), f"{field_prefix}.pool_maxsize", base.pool_maxsize)
    if pool_maxsize < 1:
        raise ConfigError(f"'{field_prefix}.pool_maxsize' must be at least 1")
    return HTTPClientConfig(
        tls=tls,
        proxy_url=proxy_url,
        timeout=_positive_float(raw.get("timeout"), f"{field_prefix}.timeout", base.timeout),
        follow_redirects=parse_bool(raw.get("follow_redirects"), default=base.follow_redirects),
        pool_maxsize=pool_maxsize,
    )


def _build_dingtalk_config(data: Any, field_prefix: str, http_defaults: HTTPClientConfig) -> DingTalkConfig:
    raw = _mapping(data, field_prefix)
    access_token = _optional_str(raw.get("access_token"))
    if not access_token:
        raise ConfigError(f"'{field_prefix}.access_token' is required")

    url = _optional_str(raw.get("url")) or DEFAULT_DINGTALK_URL
    if not validate_url(url):
        raise ConfigError(f"'{field_prefix}.url' must be an http(s) URL")

    message_type = str(raw.get("message_type") or "markdown").strip().lower()
    if message_type not in MESSAGE_TYPES:
        raise ConfigError(f"'{field_prefix}.message_type' must be one of: {', '.join(MESSAGE_TYPES)}")

    at_mobiles = _list(raw.get("at_mobiles"), f"{field_prefix}.at_mobiles")
    return DingTalkConfig(
        access_token=access_token,
        secret=_optional_str(raw.get("secret")),
        url=url,
        message_type=message_type,
        title=str(raw.get("title") or "dingtalk.default.title"),
        message=str(raw.get("message") or "dingtalk.default.message"),
        at_mobiles=tuple(str(mobile).strip() for mobile in at_mobiles if str(mobile).strip()),
        at_all=parse_bool(raw.get("at_all"), default=False),
        http=_build_http_config(raw.get("http_config"), f"{field_prefix}.http_config", http_defaults),
    )


def _build_webhook_config(data: Any, field_prefix: str, http_defaults: HTTPClientConfig) -> WebhookConfig:
    raw = _mapping(data, field_prefix)
    url = _optional_str(raw.get("url"))
    if not validate_url(url):
        raise ConfigError(f"'{field_prefix}.url' must be an http(s) URL")
    headers = _mapping(raw.get("headers"), f"{field_prefix}.headers")
    max_alerts = _int(raw.get("max_alerts"), f"{field_prefix}.max_alerts", 0)
    if max_alerts < 0:
        raise ConfigError(f"'{field_prefix}.max_alerts' must not be negative")
    return WebhookConfig(
        url=url,
        headers=tuple((str(key), str(value)) for key, value in headers.items()),
        max_alerts=max_alerts,
        http=_build_http_config(raw.get("http_config"), f"{field_prefix}.http_config", http_defaults),
    )


def _build_email_config(data: Any, field_prefix: str) -> EmailConfig:
    raw = _mapping(data, field_prefix)
    recipients = raw.get("to") or []
    if isinstance(recipients, str):
        recipients = [recipients]
    recipients = [str(addr).strip() for addr in _list(recipients, f"{field_prefix}.to") if addr]
    if not recipients:
        raise ConfigError(f"'{field_prefix}.to' must list at least one address")

    sender = _optional_str(raw.get("from"))
    if not sender:
        raise ConfigError(f"'{field_prefix}.from' is required")

    smarthost = _optional_str(raw.get("smarthost"))
    if not smarthost:
        raise ConfigError(f"'{field_prefix}.smarthost' is required")
    host, _, port_text = smarthost.rpartition(":")
    if host and port_text.isdigit():
        port = int(port_text)
    else:
        host, port = smarthost, _int(raw.get("port"), f"{field_prefix}.port", 587)

    return EmailConfig(
        to=tuple(recipients),
        from_addr=sender,
        smarthost=host,
        port=port,
        username=_optional_str(raw.get("auth_username")),
        password=_optional_str(raw.get("auth_password")),
        use_tls=parse_bool(raw.get("require_tls"), default=True),
        subject=str(raw.get("subject") or "email.default.subject"),
        body=str(raw.get("body") or "email.default.body"),
        timeout=_positive_float(raw.get("timeout"), f"{field_prefix}.timeout", 10.0),
    )


def _build_receiver(data: Any, index: int, http_defaults: HTTPClientConfig) -> ReceiverConfig:
    field_prefix = f"receivers[{index}]"
    raw = _mapping(data, field_prefix)
    name = _optional_str(raw.get("name"))
    if not name:
        raise ConfigError(f"'{field_prefix}.name' is required")

    dingtalk = tuple(
        _build_dingtalk_config(entry, f"{field_prefix}.dingtalk_configs[{i}]", http_defaults)
        for i, entry in enumerate(_list(raw.get("dingtalk_configs"), f"{field_prefix}.dingtalk_configs"))
    )
    webhooks = tuple(
        _build_webhook_config(entry, f"{field_prefix}.webhook_configs[{i}]", http_defaults)
        for i, entry in enumerate(_list(raw.get("webhook_configs"), f"{field_prefix}.webhook_configs"))
    )
    emails = tuple(
        _build_email_config(entry, f"{field_prefix}.email_configs[{i}]")
        for i, entry in enumerate(_list(raw.get("email_configs"), f"{field_prefix}.email_configs"))
    )
    return ReceiverConfig(name=name, dingtalk_configs=dingtalk, webhook_configs=webhooks, email_configs=emails)


def build_config(data: dict[str, Any]) -> AppConfig:
    global_raw = _mapping(data.get("global"), "global")
    http_defaults = _build_http_config(global_raw.get("http_config"), "global.http_config")

    templates_raw = _mapping(data.get("templates"), "templates")
    templates = {str(name): str(text) for name, text in templates_raw.items() if text is not None}

    receivers = tuple(
        _build_receiver(entry, index, http_defaults)
        for index, entry in enumerate(_list(data.get("receivers"), "receivers"))
    )
    names = [receiver.name for receiver in receivers]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate receiver names: {', '.join(duplicates)}")

    return AppConfig(
        receivers=receivers,
        templates=templates,
        external_url=str(global_raw.get("external_url") or ""),
    )


def load_config(path: Path) -> AppConfig:
    try:
        data = load_yaml_file(path)
    except (ValueError, yaml.YAMLError) as exc:
        raise ConfigError(str(exc)) from exc
    return build_config(data)
