"""Google Calendar v3 adapter.

Every linked account carries its own OAuth access token in
``AccountRef.credential_handle``; it is sent as a Bearer token on each
request, so one client instance serves all accounts.

API docs: https://developers.google.com/calendar/api/v3/reference
"""

from __future__ import annotations

import logging
from datetime import datetime, time, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from src.config import DEFAULT_TIMEZONE, GOOGLE_CALENDAR_BASE_URL
from src.models import AccountRef, BusyWindow, CalendarEvent, EventDraft, EventPatch
from src.ports import CalendarPort
from src.services.http import RetryingHTTPClient

logger = logging.getLogger(__name__)

_EVENTS_PATH = "/calendars/primary/events"


def _auth(account: AccountRef) -> dict[str, str]:
    return {"Authorization": f"Bearer {account.credential_handle}"}


def _parse_when(value: dict[str, str], tz: tzinfo) -> datetime:
    """Turn a Google ``{dateTime}`` / ``{date}`` object into an aware datetime."""
    if "dateTime" in value:
        parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)
    # All-day events start at local midnight
    return datetime.combine(datetime.fromisoformat(value["date"]).date(), time.min, tzinfo=tz)


class GoogleCalendarClient(RetryingHTTPClient, CalendarPort):
    service = "google_calendar"

    def __init__(self, base_url: str | None = None, *, timezone: str | None = None, **kwargs: Any):
        super().__init__(base_url or GOOGLE_CALENDAR_BASE_URL, **kwargs)
        self._tz_name = timezone or DEFAULT_TIMEZONE
        self._tz = ZoneInfo(self._tz_name)

    # ── Mapping ──────────────────────────────────────────────────────

    def _to_event(self, account: AccountRef, raw: dict[str, Any]) -> CalendarEvent:
        return CalendarEvent(
            id=raw.get("id"),
            account_id=account.id,
            summary=raw.get("summary") or "(no title)",
            start=_parse_when(raw["start"], self._tz),
            end=_parse_when(raw["end"], self._tz),
            attendees=[a["email"] for a in raw.get("attendees", []) if a.get("email")],
            description=raw.get("description"),
            calendar_email=(raw.get("organizer") or {}).get("email"),
        )

    def _when(self, dt: datetime) -> dict[str, str]:
        return {"dateTime": dt.isoformat(), "timeZone": self._tz_name}

    # ── CalendarPort ─────────────────────────────────────────────────

    def list_events(self, account: AccountRef, start: datetime, end: datetime) -> list[CalendarEvent]:
        events: list[CalendarEvent] = []
        params: dict[str, Any] = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": 250,
        }
        while True:
            data = self._request("GET", _EVENTS_PATH, params=params, headers=_auth(account))
            for raw in data.get("items", []):
                if raw.get("status") == "cancelled" or "start" not in raw:
                    continue
                events.append(self._to_event(account, raw))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}
        logger.debug("Listed %d events on account %s", len(events), account.id)
        return events

    def create_event(self, account: AccountRef, draft: EventDraft) -> CalendarEvent:
        body: dict[str, Any] = {
            "summary": draft.summary,
            "start": self._when(draft.start),
            "end": self._when(draft.end),
        }
        if draft.description:
            body["description"] = draft.description
        if draft.attendees:
            body["attendees"] = [{"email": email} for email in draft.attendees]
        params = {"sendUpdates": "all"} if draft.attendees else None
        raw = self._request("POST", _EVENTS_PATH, params=params, json_body=body, headers=_auth(account))
        logger.info("Created event %s on account %s", raw.get("id"), account.id)
        return self._to_event(account, raw)

    def update_event(self, account: AccountRef, event_id: str, patch: EventPatch) -> CalendarEvent:
        body: dict[str, Any] = {}
        if patch.summary is not None:
            body["summary"] = patch.summary
        if patch.start is not None:
            body["start"] = self._when(patch.start)
        if patch.end is not None:
            body["end"] = self._when(patch.end)
        if patch.attendees is not None:
            body["attendees"] = [{"email": email} for email in patch.attendees]
        raw = self._request(
            "PATCH", f"{_EVENTS_PATH}/{event_id}", params={"sendUpdates": "all"},
            json_body=body, headers=_auth(account),
        )
        logger.info("Updated event %s on account %s", event_id, account.id)
        return self._to_event(account, raw)

    def delete_event(self, account: AccountRef, event_id: str) -> None:
        self._request("DELETE", f"{_EVENTS_PATH}/{event_id}", headers=_auth(account))
        logger.info("Deleted event %s on account %s", event_id, account.id)

    def get_free_busy(
        self, accounts: list[AccountRef], start: datetime, end: datetime,
    ) -> dict[str, list[BusyWindow]]:
        # One query per account: each account has its own token
        busy: dict[str, list[BusyWindow]] = {}
        for account in accounts:
            data = self._request(
                "POST",
                "/freeBusy",
                json_body={
                    "timeMin": start.isoformat(),
                    "timeMax": end.isoformat(),
                    "timeZone": self._tz_name,
                    "items": [{"id": "primary"}],
                },
                headers=_auth(account),
            )
            windows = data.get("calendars", {}).get("primary", {}).get("busy", [])
            busy[account.id] = [
                BusyWindow(
                    start=datetime.fromisoformat(w["start"].replace("Z", "+00:00")),
                    end=datetime.fromisoformat(w["end"].replace("Z", "+00:00")),
                )
                for w in windows
            ]
        return busy
