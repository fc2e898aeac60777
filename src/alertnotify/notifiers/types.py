from __future__ import annotations

from typing import Optional, Tuple

from ..context import Context
from ..models import Alert

# (retryable, error) as returned by every notifier.
NotifyResult = Tuple[bool, Optional[Exception]]


class NotifyError(RuntimeError):
    """Base class for delivery failures reported by a notifier."""


class RequestBuildError(NotifyError):
    """The outbound request could not be prepared."""


class TransportError(NotifyError):
    """The request never produced a response (connection, timeout, cancellation)."""


class HTTPStatusError(NotifyError):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseFormatError(NotifyError):
    """The endpoint answered with a body that does not match its protocol."""


class ProviderError(NotifyError):
    """The provider accepted the request but reported an application error."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class Notifier:
    """A delivery backend. Every backend exposes the same ``notify`` signature."""

    name: str = "notifier"

    def notify(self, ctx: Context, *alerts: Alert) -> NotifyResult:
        raise NotImplementedError

    def close(self) -> None:
        return None

    def __enter__(self) -> "Notifier":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
