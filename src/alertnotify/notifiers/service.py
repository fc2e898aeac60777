from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..config import ReceiverConfig
from ..context import Context
from ..models import Alert
from ..templating import Template
from .dingtalk import DingTalkNotifier
from .email import EmailNotifier
from .types import Notifier
from .webhook import WebhookNotifier

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    notifier: str
    index: int
    retryable: bool
    error: Optional[Exception]

    @property
    def ok(self) -> bool:
        return self.error is None


def build_notifiers(
    receiver: ReceiverConfig,
    template: Template,
    logger: logging.Logger | None = None,
) -> list[Notifier]:
    """Instantiate one notifier per configured integration of a receiver.

    Any construction error closes the notifiers built so far and propagates.
    """
    notifiers: list[Notifier] = []
    try:
        for conf in receiver.dingtalk_configs:
            notifiers.append(DingTalkNotifier(conf, template, logger))
        for conf in receiver.webhook_configs:
            notifiers.append(WebhookNotifier(conf, template, logger))
        for conf in receiver.email_configs:
            notifiers.append(EmailNotifier(conf, template, logger))
    except Exception:
        for notifier in notifiers:
            notifier.close()
        raise
    return notifiers


class NotificationService:
    """Fans one alert batch out to every notifier of a receiver.

    The service makes exactly one attempt per notifier; retry scheduling stays
    with the caller, which decides from each outcome's ``retryable`` flag.
    """

    def __init__(self, receiver_name: str, notifiers: Sequence[Notifier]) -> None:
        self.receiver_name = receiver_name
        self._notifiers = list(notifiers)

    @classmethod
    def from_config(
        cls,
        receiver: ReceiverConfig,
        template: Template,
        logger: logging.Logger | None = None,
    ) -> "NotificationService":
        return cls(receiver.name, build_notifiers(receiver, template, logger))

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    def notify(self, ctx: Context, alerts: Sequence[Alert]) -> list[DeliveryOutcome]:
        if not alerts:
            raise ValueError("notify requires at least one alert")
        if not ctx.receiver:
            ctx = ctx.with_values(receiver=self.receiver_name)

        outcomes: list[DeliveryOutcome] = []
        counters: dict[str, int] = {}
        for notifier in self._notifiers:
            index = counters.get(notifier.name, 0)
            counters[notifier.name] = index + 1
            retryable, error = notifier.notify(ctx, *alerts)
            if error is None:
                LOGGER.debug("Notify success | receiver=%s integration=%s[%d]", self.receiver_name, notifier.name, index)
            else:
                LOGGER.warning(
                    "Notify failed | receiver=%s integration=%s[%d] retryable=%s error=%s",
                    self.receiver_name,
                    notifier.name,
                    index,
                    retryable,
                    error,
                )
            outcomes.append(DeliveryOutcome(notifier.name, index, retryable, error))
        return outcomes

    def close(self) -> None:
        for notifier in self._notifiers:
            notifier.close()

    def __enter__(self) -> "NotificationService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
