"""
auth/mailer.py -- Outbound email channel for second-factor codes.

The login flow only needs one operation: send(recipient, subject, body) ->
bool. False (or an exception) means the code did not go out; the
orchestrator turns that into UnexpectedError and issues no session.

Backends:
  MockEmailClient  records every message in .sent and logs a redacted line.
                   Default for development and tests. fail=True simulates
                   a delivery outage.
  SMTPEmailClient  smtplib with STARTTLS (or implicit TLS) in a worker
                   thread -- smtplib is blocking.

Recipient addresses are redacted in log lines to keep PII out of logs.

Layer rule: no imports from api/, cache/, or core/.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from auth.models import Email

logger = logging.getLogger("authgate.auth.mailer")


class EmailClient(Protocol):
    async def send(self, recipient: Email, subject: str, body: str) -> bool: ...


@dataclass
class SentEmail:
    recipient: Email
    subject: str
    body: str


class MockEmailClient:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[SentEmail] = []

    async def send(self, recipient: Email, subject: str, body: str) -> bool:
        if self.fail:
            logger.warning("Mock email delivery failure to %s", recipient.redacted())
            return False
        self.sent.append(SentEmail(recipient=recipient, subject=subject, body=body))
        logger.info("Mock email to %s: %s", recipient.redacted(), subject)
        return True

    def last_to(self, recipient: Email) -> SentEmail | None:
        """Most recent message sent to recipient, or None."""
        for message in reversed(self.sent):
            if message.recipient == recipient:
                return message
        return None


class SMTPEmailClient:
    def __init__(
        self,
        host: str,
        from_addr: str,
        *,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.from_addr = from_addr
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _deliver(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)

    async def send(self, recipient: Email, subject: str, body: str) -> bool:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = recipient.value
        msg.set_content(body)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s failed: %s", recipient.redacted(), exc)
            return False
        logger.info("Email sent to %s: %s", recipient.redacted(), subject)
        return True
