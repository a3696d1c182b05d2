from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from inbox_responder.config.settings import Settings
from inbox_responder.models import SendError

logger = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


def build_reply(
    from_address: str, to_address: str, subject: str, body: str, in_reply_to: Optional[str] = None
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = from_address
    msg["To"] = to_address
    msg["Subject"] = subject
    if in_reply_to:
        msg["In-Reply-To"] = in_reply_to
        msg["References"] = in_reply_to
    msg.set_content(body)
    return msg


class SmtpTransport:
    def __init__(self, host: str, port: int, user: str, password: str, *, timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpTransport":
        return cls(
            host=settings.smtp_host or "",
            port=settings.smtp_port,
            user=settings.email_address,
            password=settings.email_password or "",
            timeout=settings.timing.send_timeout,
        )

    def send(self, to_address: str, subject: str, body: str, in_reply_to: Optional[str] = None) -> None:
        msg = build_reply(self.user, to_address, subject, body, in_reply_to)
        context = ssl.create_default_context()
        try:
            if self.port == IMPLICIT_TLS_PORT:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context) as server:
                    server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    server.login(self.user, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"Error sending email: {exc}")
            raise SendError(f"SMTP send to {to_address} failed: {exc}") from exc
        logger.info(f"Sent reply to {to_address}")
