"""alertnotify core package.

- **notifiers**: delivery backends (DingTalk robot, generic webhook, email)
  sharing the ``notify(ctx, *alerts) -> (retryable, error)`` operation
- **templating**: template data derived from an alert batch and the text
  template engine
- **httpclient**: requests session construction, cancellable sends and URL
  redaction
- **config**: YAML receiver configuration
- **context**: cancellable per-call execution context
"""

from .context import Context
from .models import Alert
from .notifiers import DingTalkNotifier, Notifier
from .templating import Template
from .version import __version__

__all__ = [
    "__version__",
    "Alert",
    "Context",
    "DingTalkNotifier",
    "Notifier",
    "Template",
]
