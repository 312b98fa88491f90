"""Contact lookup, email and progress-update tools."""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from src.errors import PortTransportError
from src.progress import ProgressSink
from src.tools.registry import ToolContext, ToolName, ToolSpec, error_result

logger = logging.getLogger(__name__)

# Loose RFC 5322 shape; the mail provider does the real validation
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


class FindContactParams(BaseModel):
    name: str = Field(..., min_length=1, description="Contact name as the user said it")
    account_id: str | None = None


class SendEmailParams(BaseModel):
    to: str = Field(..., min_length=1, description="Recipient email address or contact name")
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    account_id: str | None = Field(None, description="Account to send from; defaults to the primary account")


class ProgressUpdateParams(BaseModel):
    message: str = Field(..., min_length=1, description="Short status line to show the user")


def find_contact_email(args: FindContactParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    account = context.session.account(args.account_id)
    if account is None:
        return error_result("No account is linked to this session.")
    progress.update(f"Looking up {args.name} in your contacts...")
    try:
        email = context.services.contacts.find_email_by_name(account, args.name)
    except PortTransportError as exc:
        logger.error("Contact lookup for %r failed: %s", args.name, exc)
        return error_result(f"I couldn't search your contacts: {exc}")
    if not email:
        return {"success": False, "message": f"No contact named {args.name} was found."}
    return {"success": True, "name": args.name, "email": email}


def send_email(args: SendEmailParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    account = context.session.account(args.account_id)
    if account is None:
        return error_result("No account is linked to this session.")

    recipient = args.to.strip()
    try:
        if "@" not in recipient:
            found = context.services.contacts.find_email_by_name(account, recipient)
            if not found:
                return error_result(f"I couldn't find an email address for {recipient}.")
            recipient = found
        if not _EMAIL_RE.match(recipient):
            return error_result(f'"{recipient}" does not look like a valid email address.')

        progress.update(f"Sending email to {recipient}...")
        message_id = context.services.mail.send(account, recipient, args.subject, args.body)
    except PortTransportError as exc:
        logger.error("send_email to %s failed: %s", recipient, exc)
        return error_result(f"I couldn't send the email: {exc}")
    return {"success": True, "to": recipient, "message_id": message_id, "message": f"Email sent to {recipient}."}


def send_progress_update(args: ProgressUpdateParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    progress.update(args.message)
    return {"success": True}


COMMS_TOOLS = [
    ToolSpec(
        ToolName.FIND_CONTACT_EMAIL,
        "Find a contact's email address by name.",
        FindContactParams,
        find_contact_email,
    ),
    ToolSpec(
        ToolName.SEND_EMAIL,
        "Send an email from one of the user's accounts. The recipient may be a contact name.",
        SendEmailParams,
        send_email,
        mutating=True,
    ),
    ToolSpec(
        ToolName.SEND_PROGRESS_UPDATE,
        "Show the user a short status line while you keep working. Not a substitute for a final answer.",
        ProgressUpdateParams,
        send_progress_update,
    ),
]
