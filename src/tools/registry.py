"""Tool catalog and dispatch.

A tool is a :class:`ToolSpec`: its :class:`ToolName`, a natural-language
description, a pydantic model describing its parameters, and the handler
that runs it.  The registry validates every call against that model before
dispatching, and always hands back a plain dict; failures become
``{"error": True, "message": ...}`` so the loop can keep reasoning.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from src.errors import AgentError, SchemaValidationError, ToolNotFoundError
from src.models import ToolCall
from src.progress import ProgressSink
from src.session import ConversationState

if TYPE_CHECKING:
    from src.booking import BookingFlow
    from src.conflicts import ConflictEngine
    from src.services.factory import Services

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    GET_EVENTS = "get_events"
    CREATE_EVENT = "create_event"
    UPDATE_EVENT = "update_event"
    DELETE_EVENT = "delete_event"
    DELETE_MULTIPLE_EVENTS = "delete_multiple_events"
    CHECK_AVAILABILITY = "check_availability"
    FIND_ALTERNATIVE_SLOTS = "find_alternative_slots"
    PROPOSE_RESCHEDULE_OPTIONS = "propose_reschedule_options"
    RESCHEDULE_EVENT = "reschedule_event"
    SELECT_ALTERNATIVE = "select_alternative"
    FIND_CONTACT_EMAIL = "find_contact_email"
    SEND_EMAIL = "send_email"
    SEND_PROGRESS_UPDATE = "send_progress_update"
    PLACE_CALL = "place_call"
    BOOK_APPOINTMENT = "book_appointment"
    WEB_SEARCH = "web_search"
    WEB_GET = "web_get"


@dataclass
class ToolContext:
    """Everything a handler may touch during one turn."""

    session: ConversationState
    services: Services
    engine: ConflictEngine
    booking: BookingFlow
    tz: tzinfo
    cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def accounts(self):
        return self.session.accounts

    def localize(self, dt: datetime) -> datetime:
        """Attach the default timezone to naive datetimes from the model."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=self.tz)
        return dt


Handler = Callable[[Any, ToolContext, ProgressSink], dict[str, Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    params: type[BaseModel]
    handler: Handler
    # Changes something the user can see (counts for success claims)
    mutating: bool = False
    # "reschedule" / "delete": needs explicit user confirmation
    confirmation: str | None = None

    def catalog_entry(self) -> dict[str, Any]:
        schema = self.params.model_json_schema()
        schema.pop("title", None)
        return {"name": self.name.value, "description": self.description, "input_schema": schema}


def error_result(message: str, **extra: Any) -> dict[str, Any]:
    return {"error": True, "message": message, **extra}


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        self._specs: dict[ToolName, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Tool {spec.name.value} registered twice")
            self._specs[spec.name] = spec

    def __len__(self) -> int:
        return len(self._specs)

    def missing(self) -> set[ToolName]:
        """Tool names without a registered handler."""
        return set(ToolName) - set(self._specs)

    def catalog(self) -> list[dict[str, Any]]:
        return [spec.catalog_entry() for spec in self._specs.values()]

    def get(self, name: str) -> ToolSpec:
        try:
            return self._specs[ToolName(name)]
        except (ValueError, KeyError) as exc:
            raise ToolNotFoundError(f"Unknown tool: {name}") from exc

    @staticmethod
    def validate(spec: ToolSpec, arguments: dict[str, Any]) -> BaseModel:
        try:
            return spec.params.model_validate(arguments or {})
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in exc.errors()
            )
            raise SchemaValidationError(f"Invalid arguments for {spec.name.value}: {problems}") from exc

    def dispatch(self, call: ToolCall, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
        """Validate and run one tool call.  Never raises."""
        try:
            spec = self.get(call.name)
        except ToolNotFoundError as exc:
            # Catalog / prompt drift: worth noticing in the logs
            logger.warning("Model requested unregistered tool %r", call.name)
            return error_result(str(exc))

        try:
            args = self.validate(spec, call.arguments)
        except SchemaValidationError as exc:
            logger.info("%s", exc)
            return error_result(str(exc))

        t0 = time.perf_counter()
        try:
            result = spec.handler(args, context, progress)
        except AgentError as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return error_result(str(exc))
        except Exception:
            logger.exception("Tool %s raised unexpectedly", call.name)
            return error_result(f"{call.name} failed unexpectedly. Please try again.")
        logger.debug("Tool %s finished in %.0fms", call.name, (time.perf_counter() - t0) * 1000)
        return result
