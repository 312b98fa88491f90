"""Error taxonomy for the calendar assistant.

Everything raised by ports, tool handlers and the orchestration loop
derives from :class:`AgentError`.  Tool dispatch turns these into
structured ``{"error": True, "message": ...}`` results, so none of them is
expected to reach the HTTP layer.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for every recoverable assistant error."""


class SchemaValidationError(AgentError):
    """Tool arguments did not match the tool's declared parameter schema."""


class ToolNotFoundError(AgentError):
    """The model asked for a tool name that is not registered."""


class PortTransportError(AgentError):
    """An external API call failed (network, auth, rate limit, 5xx...)."""

    def __init__(self, message: str, *, service: str = "", status_code: int | None = None):
        self.service = service
        self.status_code = status_code
        super().__init__(message)


class ConflictRevalidationFailure(AgentError):
    """The selected slot was taken between proposal and commit."""


class CallNotConfirmed(AgentError):
    """A booking call ended without an affirmative signal."""


class IterationCapExceeded(AgentError):
    """The orchestration loop ran out of reasoning cycles."""

    def __init__(self, cycles: int):
        self.cycles = cycles
        super().__init__(f"Reasoning cap of {cycles} cycles reached")


class SessionBusyError(AgentError):
    """Another turn for the same session is still running."""


class TurnCancelled(AgentError):
    """The caller cancelled the turn (e.g. the client disconnected)."""
