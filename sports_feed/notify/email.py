"""SMTP email notifier."""

from __future__ import annotations

import asyncio
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import smtplib
import ssl

from ..errors import ConfigError
from ..logging_utils import log_event
from .base import Notification, Notifier


class EmailNotifier(Notifier):
    """Sends notifications through an SMTP server.

    ``smtplib`` is blocking, so each send runs in a worker thread.
    """

    name = "email"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str | None,
        recipients: list[str],
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 15.0,
    ):
        if not sender or not recipients:
            raise ConfigError("Email notifier needs a sender and at least one recipient")
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = recipients
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.logger = logging.getLogger("sports_feed.notify.email")

    def build_message(self, message: Notification) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.attach(MIMEText(message.body, "plain"))
        if message.html:
            msg.attach(MIMEText(message.html, "html"))
        return msg

    def _send(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.sender, self.recipients, msg.as_string())

    async def notify(self, message: Notification) -> None:
        await asyncio.to_thread(self._send, self.build_message(message))
        log_event(
            self.logger,
            "Email notification sent",
            event="notify_sent",
            sink=self.name,
            recipients=len(self.recipients),
        )
