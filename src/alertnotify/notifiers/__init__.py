"""
Notification backends for alertnotify.

Every backend implements :class:`Notifier` with the same
``notify(ctx, *alerts) -> (retryable, error)`` operation so a dispatch
framework can hold a list of notifiers without switching on their type.

Public API:
    - Notifier: Base class for notification backends
    - DingTalkNotifier: DingTalk group robot backend
    - WebhookNotifier: Generic JSON webhook backend
    - EmailNotifier: SMTP email backend
    - NotificationService: Sends one batch through every notifier of a receiver
    - build_notifiers: Builds notifiers from a receiver configuration
"""

from __future__ import annotations

# Core types and base classes
from .types import (
    HTTPStatusError,
    Notifier,
    NotifyError,
    NotifyResult,
    ProviderError,
    RequestBuildError,
    ResponseFormatError,
    TransportError,
)

# Backends
from .dingtalk import DingTalkNotifier, DingTalkResponse
from .email import EmailNotifier
from .webhook import WebhookNotifier

# Service
from .service import DeliveryOutcome, NotificationService, build_notifiers

__all__ = [
    # Core types
    "Notifier",
    "NotifyResult",
    # Errors
    "NotifyError",
    "RequestBuildError",
    "TransportError",
    "HTTPStatusError",
    "ResponseFormatError",
    "ProviderError",
    # Backends
    "DingTalkNotifier",
    "DingTalkResponse",
    "WebhookNotifier",
    "EmailNotifier",
    # Service
    "DeliveryOutcome",
    "NotificationService",
    "build_notifiers",
]
