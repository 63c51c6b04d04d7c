# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Digest email delivery via SendGrid, or log-only when no API key is set."""

import asyncio
import logging
from collections import deque

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Bcc, Cc, Mail

from .config import Config

logger = logging.getLogger(__name__)


class EmailSendError(Exception):
    """Raised when the provider rejects a message."""


class SendGridEmailSender:
    def __init__(self, api_key: str, from_address: str, client=None):
        self._from_address = from_address
        self._client = client or SendGridAPIClient(api_key)

    def build_message(self, to: list[str], subject: str, html_body: str,
                      cc: list[str] | None = None,
                      bcc: list[str] | None = None) -> Mail:
        message = Mail(
            from_email=self._from_address,
            to_emails=to,
            subject=subject,
            html_content=html_body,
        )
        for address in cc or []:
            message.add_cc(Cc(address))
        for address in bcc or []:
            message.add_bcc(Bcc(address))
        return message

    async def send(self, to: list[str], subject: str, html_body: str,
                   cc: list[str] | None = None, bcc: list[str] | None = None) -> None:
        message = self.build_message(to, subject, html_body, cc, bcc)
        # The SendGrid client is blocking
        response = await asyncio.to_thread(self._client.send, message)
        if response.status_code not in (200, 201, 202):
            raise EmailSendError(f"SendGrid returned status {response.status_code}")
        logger.info("Email sent to %s (cc=%d, bcc=%d), message_id: %s",
                    ", ".join(to), len(cc or []), len(bcc or []),
                    response.headers.get("X-Message-Id", "unknown"))


class LogEmailSender:
    """Logs messages instead of sending them. Used when SendGrid is not configured."""

    def __init__(self):
        self.sent: deque[dict] = deque(maxlen=100)

    async def send(self, to: list[str], subject: str, html_body: str,
                   cc: list[str] | None = None, bcc: list[str] | None = None) -> None:
        self.sent.append({"to": to, "subject": subject, "cc": cc, "bcc": bcc})
        logger.info("[LOG EMAIL] To: %s, Subject: %s, Body length: %d chars",
                    ", ".join(to), subject, len(html_body))


def create_sender(config: Config):
    if config.sendgrid_api_key and config.email_from_address:
        logger.info("Email delivery via SendGrid from %s", config.email_from_address)
        return SendGridEmailSender(config.sendgrid_api_key, config.email_from_address)
    logger.warning("SENDGRID_API_KEY or EMAIL_FROM_ADDRESS not set, digests will only be logged")
    return LogEmailSender()
