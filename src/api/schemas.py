"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.models import AccountRef, SlotOption, TurnResult


class AccountIn(BaseModel):
    """A calendar account linked by the client for this conversation."""

    id: str = Field(..., min_length=1, max_length=100)
    title: str = Field("", max_length=200, description="Human label, e.g. 'Work'")
    credential_handle: str = Field(..., min_length=1, description="OAuth access token for the account")
    primary: bool = False

    def to_ref(self) -> AccountRef:
        return AccountRef(id=self.id, title=self.title or self.id, credential_handle=self.credential_handle, primary=self.primary)


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique session identifier for conversation continuity",
    )
    accounts: list[AccountIn] = Field(
        default_factory=list,
        description="Linked accounts; when omitted the accounts from earlier turns are kept",
    )

    def account_refs(self) -> list[AccountRef]:
        return [account.to_ref() for account in self.accounts]


class SlotOptionOut(BaseModel):
    label: str
    start: str
    end: str
    display: str

    @classmethod
    def from_option(cls, option: SlotOption) -> SlotOptionOut:
        return cls(**option.to_dict())


class ChatResponse(BaseModel):
    """Response from the agent."""

    content: str = Field(..., description="The assistant's reply")
    session_id: str = Field(..., description="The session ID for this conversation")
    alternatives: list[SlotOptionOut] | None = Field(
        None, description="Options offered this turn when a conflict was found",
    )
    conflict: bool = False

    @classmethod
    def from_result(cls, result: TurnResult, session_id: str) -> ChatResponse:
        return cls(
            content=result.content,
            session_id=session_id,
            alternatives=[SlotOptionOut.from_option(o) for o in result.alternatives] if result.alternatives else None,
            conflict=result.conflict,
        )


class MessageOut(BaseModel):
    role: str
    content: str


class ConversationResponse(BaseModel):
    """What the server remembers about a conversation."""

    session_id: str
    turns: int
    messages: list[MessageOut]
    pending_proposal: str | None = Field(None, description="Kind of proposal awaiting a choice, if any")
    alternatives: list[SlotOptionOut] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "calendar-assistant"
