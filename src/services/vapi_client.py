"""Vapi outbound-call adapter.

A call is started with ``POST /call`` and then polled with
``GET /call/{id}`` until its status is ``ended``; polling itself lives in
:func:`src.booking.wait_for_call`.

API docs: https://docs.vapi.ai/api-reference/calls/create
"""

from __future__ import annotations

import logging
from typing import Any

from src.config import (
    USER_DISPLAY_NAME,
    VAPI_API_KEY,
    VAPI_ASSISTANT_ID,
    VAPI_BASE_URL,
    VAPI_PHONE_NUMBER_ID,
)
from src.errors import PortTransportError
from src.models import CallStatus
from src.ports import VoiceCallPort
from src.services.http import RetryingHTTPClient

logger = logging.getLogger(__name__)

VOICE = {"provider": "vapi", "voiceId": "Paige"}
CALL_MODEL = {"provider": "openai", "model": "gpt-4o"}


class VapiClient(RetryingHTTPClient, VoiceCallPort):
    service = "vapi"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        phone_number_id: str | None = None,
        assistant_id: str | None = None,
        caller_name: str = USER_DISPLAY_NAME,
        **kwargs: Any,
    ):
        super().__init__(
            base_url or VAPI_BASE_URL,
            headers={"Authorization": f"Bearer {api_key or VAPI_API_KEY}"},
            **kwargs,
        )
        self._phone_number_id = phone_number_id or VAPI_PHONE_NUMBER_ID
        self._assistant_id = assistant_id or VAPI_ASSISTANT_ID
        self._caller_name = caller_name

    def _payload(self, target: str, script: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "outboundPhoneCall",
            "phoneNumberId": self._phone_number_id,
            "customer": {"number": target},
            "assistant": {
                "voice": VOICE,
                "firstMessage": f"Hi, I'm calling on behalf of {self._caller_name}.",
                "model": {
                    **CALL_MODEL,
                    "messages": [
                        {
                            "role": "system",
                            "content": (
                                "You are a polite personal assistant making a phone call for "
                                f"{self._caller_name}. Keep the call short and natural.\n\n{script}"
                            ),
                        }
                    ],
                },
            },
        }
        if self._assistant_id:
            payload["assistantId"] = self._assistant_id
        return payload

    def place_call(self, target: str, script: str) -> str:
        data = self._request("POST", "/call", json_body=self._payload(target, script))
        call_id = data.get("id")
        if not call_id:
            raise PortTransportError("Vapi did not return a call id", service=self.service)
        logger.info("Placed call %s to %s (status=%s)", call_id, target, data.get("status"))
        return call_id

    def poll_status(self, call_id: str) -> CallStatus:
        data = self._request("GET", f"/call/{call_id}")
        analysis = data.get("analysis") or {}
        return CallStatus(
            status=data.get("status", ""),
            transcript=data.get("transcript") or "",
            summary=data.get("summary") or analysis.get("summary") or "",
            ended_reason=data.get("endedReason"),
        )
