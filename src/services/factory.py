"""Wires the concrete adapters together from configuration.

Voice calls and web search are optional: when their API keys are not
configured the matching port is ``None`` and the tools report that the
feature is unavailable instead of failing at startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.config import MODEL_NAME, PLANNER_MODEL_NAME, TAVILY_API_KEY, VAPI_API_KEY
from src.ports import (
    CalendarPort,
    CompletionPort,
    ContactsPort,
    MailPort,
    VoiceCallPort,
    WebSearchPort,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    calendar: CalendarPort
    contacts: ContactsPort
    mail: MailPort
    completion: CompletionPort
    voice: VoiceCallPort | None = None
    web: WebSearchPort | None = None
    # Cheap model for the planning step; falls back to ``completion``
    planner: CompletionPort | None = None


def build_services() -> Services:
    from src.services.anthropic_completion import AnthropicCompletion
    from src.services.gmail import GmailClient
    from src.services.google_calendar import GoogleCalendarClient
    from src.services.google_contacts import GoogleContactsClient
    from src.services.tavily_client import TavilyClient
    from src.services.vapi_client import VapiClient

    voice = VapiClient() if VAPI_API_KEY else None
    web = TavilyClient() if TAVILY_API_KEY else None
    if voice is None:
        logger.warning("VAPI_API_KEY not set: phone calls and bookings are disabled")
    if web is None:
        logger.warning("TAVILY_API_KEY not set: web search is disabled")

    return Services(
        calendar=GoogleCalendarClient(),
        contacts=GoogleContactsClient(),
        mail=GmailClient(),
        completion=AnthropicCompletion(MODEL_NAME),
        voice=voice,
        web=web,
        planner=AnthropicCompletion(PLANNER_MODEL_NAME, temperature=0.0, max_tokens=300, operation="plan"),
    )
