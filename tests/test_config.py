from __future__ import annotations

from pathlib import Path

import pytest

from alertnotify.config import DEFAULT_DINGTALK_URL, ConfigError, build_config, load_config


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_with_env_expansion(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("DINGTALK_TOKEN", "tok-from-env")
    config_path = _write(
        tmp_path / "alertnotify.yaml",
        """
global:
  external_url: https://alertmanager.example.com
  http_config:
    timeout: 5
templates:
  ops.title: "{receiver} alert"
receivers:
  - name: ops
    dingtalk_configs:
      - access_token: ${DINGTALK_TOKEN}
        secret: SECxyz
        message_type: text
        title: ops.title
        at_mobiles: ["13800000000", 13900000000]
        at_all: "yes"
    webhook_configs:
      - url: https://hooks.example.com/alerts
        headers:
          X-Token: abc
        max_alerts: 10
        http_config:
          timeout: 2
    email_configs:
      - to: oncall@example.com
        from: alertnotify@example.com
        smarthost: smtp.example.com:2525
""",
    )

    config = load_config(config_path)

    assert config.external_url == "https://alertmanager.example.com"
    assert config.templates == {"ops.title": "{receiver} alert"}
    receiver = config.receiver("ops")
    dingtalk = receiver.dingtalk_configs[0]
    assert dingtalk.access_token == "tok-from-env"
    assert dingtalk.url == DEFAULT_DINGTALK_URL
    assert dingtalk.message_type == "text"
    assert dingtalk.at_mobiles == ("13800000000", "13900000000")
    assert dingtalk.at_all is True
    assert dingtalk.http.timeout == 5
    assert dingtalk.secrets() == ("tok-from-env", "SECxyz")

    webhook = receiver.webhook_configs[0]
    assert webhook.headers == (("X-Token", "abc"),)
    assert webhook.max_alerts == 10
    assert webhook.http.timeout == 2

    email = receiver.email_configs[0]
    assert email.to == ("oncall@example.com",)
    assert (email.smarthost, email.port) == ("smtp.example.com", 2525)


def test_unknown_receiver() -> None:
    config = build_config({"receivers": [{"name": "ops"}]})
    with pytest.raises(ConfigError, match="Unknown receiver"):
        config.receiver("dev")


@pytest.mark.parametrize(
    ("data", "message"),
    [
        ({"receivers": {"name": "ops"}}, "'receivers' must be provided as a list"),
        ({"receivers": [{}]}, r"receivers\[0\].name"),
        ({"receivers": [{"name": "a"}, {"name": "a"}]}, "Duplicate receiver names: a"),
        ({"receivers": [{"name": "a", "dingtalk_configs": [{}]}]}, "access_token' is required"),
        (
            {"receivers": [{"name": "a", "dingtalk_configs": [{"access_token": "t", "message_type": "card"}]}]},
            "message_type",
        ),
        (
            {"receivers": [{"name": "a", "dingtalk_configs": [{"access_token": "t", "url": "ftp://x"}]}]},
            "must be an http",
        ),
        ({"receivers": [{"name": "a", "webhook_configs": [{"url": "not a url"}]}]}, "must be an http"),
        (
            {"global": {"http_config": {"timeout": 0}}},
            "'global.http_config.timeout' must be greater than zero",
        ),
        (
            {"global": {"http_config": {"pool_maxsize": 0}}},
            "'global.http_config.pool_maxsize' must be at least 1",
        ),
        ({"receivers": [{"name": "a", "email_configs": [{"to": [], "from": "x", "smarthost": "h"}]}]}, "to"),
    ],
)
def test_invalid_configs(data, message) -> None:
    with pytest.raises(ConfigError, match=message):
        build_config(data)


def test_invalid_yaml_raises_config_error(tmp_path) -> None:
    config_path = _write(tmp_path / "bad.yaml", "receivers: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_top_level_must_be_mapping(tmp_path) -> None:
    config_path = _write(tmp_path / "list.yaml", "- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_path)
