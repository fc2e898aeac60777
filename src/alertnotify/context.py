"""Cancellable per-call execution context.

A :class:`Context` carries a cancellation flag, an optional deadline and the
group values the dispatch framework attaches to a notification (receiver
name, group key and group labels). Contexts derived with
:meth:`Context.with_timeout` are cancelled when their parent is.
"""

from __future__ import annotations

import threading
import time
import weakref
from typing import Dict, Mapping, Optional


class ContextCancelled(Exception):
    """The caller cancelled the context."""


class DeadlineExceeded(ContextCancelled):
    """The context deadline passed before the work finished."""


class Context:
    def __init__(
        self,
        *,
        deadline: Optional[float] = None,
        receiver: str = "",
        group_key: str = "",
        group_labels: Optional[Mapping[str, str]] = None,
        parent: Optional["Context"] = None,
    ) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[ContextCancelled] = None
        self._deadline = deadline
        self.receiver = receiver
        self.group_key = group_key
        self.group_labels: Dict[str, str] = dict(group_labels or {})
        self._parent = parent
        # Held weakly: a child lives only as long as its caller references it.
        self._children: "weakref.WeakSet[Context]" = weakref.WeakSet()
        if parent is not None:
            if parent._deadline is not None and (deadline is None or parent._deadline < deadline):
                self._deadline = parent._deadline
            with parent._lock:
                parent._children.add(self)
                parent_done = parent.cancelled
            if parent_done:
                self.cancel(parent._reason)

    @classmethod
    def background(cls, **values) -> "Context":
        return cls(**values)

    @classmethod
    def with_deadline_in(cls, seconds: float, **values) -> "Context":
        return cls(deadline=time.monotonic() + seconds, **values)

    def with_timeout(self, seconds: float) -> "Context":
        return Context(
            deadline=time.monotonic() + seconds,
            receiver=self.receiver,
            group_key=self.group_key,
            group_labels=self.group_labels,
            parent=self,
        )

    def with_values(
        self,
        *,
        receiver: Optional[str] = None,
        group_key: Optional[str] = None,
        group_labels: Optional[Mapping[str, str]] = None,
    ) -> "Context":
        return Context(
            deadline=self._deadline,
            receiver=self.receiver if receiver is None else receiver,
            group_key=self.group_key if group_key is None else group_key,
            group_labels=self.group_labels if group_labels is None else group_labels,
            parent=self,
        )

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[ContextCancelled] = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason or ContextCancelled("context canceled")
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(self._reason)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def done(self) -> bool:
        if self._event.is_set():
            return True
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            self.cancel(DeadlineExceeded("context deadline exceeded"))
            return True
        return False

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the context is done or ``timeout`` elapses.

        Returns ``True`` when the context is done.
        """
        remaining = self.remaining()
        if remaining is not None and (timeout is None or remaining < timeout):
            timeout = remaining
        self._event.wait(timeout)
        return self.done()

    def error(self) -> Optional[ContextCancelled]:
        if not self.done():
            return None
        return self._reason
