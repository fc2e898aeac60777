from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from ..config import EmailConfig
from ..context import Context
from ..models import Alert
from ..templating import Template, TemplateError, build_template_data
from .types import Notifier, NotifyResult, TransportError

LOGGER = logging.getLogger(__name__)


class EmailNotifier(Notifier):
    """Email notification over SMTP with optional STARTTLS and login."""

    name = "email"

    def __init__(self, conf: EmailConfig, template: Template, logger: logging.Logger | None = None) -> None:
        self._conf = conf
        self._template = template
        self._logger = logger or LOGGER

    def notify(self, ctx: Context, *alerts: Alert) -> NotifyResult:
        data = build_template_data(ctx, self._template, alerts, self._logger)
        try:
            subject = self._template.render_text(self._conf.subject, data)
            body = self._template.render_text(self._conf.body, data)
        except TemplateError as exc:
            return False, exc

        if ctx.done():
            return True, TransportError(f"email not sent: {ctx.error()}")

        message = EmailMessage()
        message["From"] = self._conf.from_addr
        message["To"] = ", ".join(self._conf.to)
        message["Subject"] = subject.splitlines()[0] if subject else ""
        message.set_content(body)

        timeout = self._conf.timeout
        remaining = ctx.remaining()
        if remaining is not None:
            timeout = max(0.1, min(timeout, remaining))

        try:
            with smtplib.SMTP(self._conf.smarthost, self._conf.port, timeout=timeout) as server:
                if self._conf.use_tls:
                    server.starttls()
                if self._conf.username and self._conf.password:
                    server.login(self._conf.username, self._conf.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            return True, TransportError(
                f"failed to send email via {self._conf.smarthost}:{self._conf.port}: {exc}"
            )

        self._logger.debug("Email sent to %s", ", ".join(self._conf.to))
        return False, None
