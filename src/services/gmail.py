"""Gmail adapter: sends plain-text mail as the linked account."""

from __future__ import annotations

import base64
import logging
from email.message import EmailMessage
from typing import Any

from src.config import GMAIL_BASE_URL
from src.models import AccountRef
from src.ports import MailPort
from src.services.http import RetryingHTTPClient

logger = logging.getLogger(__name__)


def build_raw_message(to: str, subject: str, body: str) -> str:
    """RFC 2822 message, base64url-encoded the way ``messages.send`` expects."""
    message = EmailMessage()
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


class GmailClient(RetryingHTTPClient, MailPort):
    service = "gmail"

    def __init__(self, base_url: str | None = None, **kwargs: Any):
        super().__init__(base_url or GMAIL_BASE_URL, **kwargs)

    def send(self, account: AccountRef, to: str, subject: str, body: str) -> str:
        data = self._request(
            "POST",
            "/users/me/messages/send",
            json_body={"raw": build_raw_message(to, subject, body)},
            headers={"Authorization": f"Bearer {account.credential_handle}"},
        )
        logger.info("Sent email from %s to %s (id=%s)", account.id, to, data.get("id"))
        return data.get("id", "")
