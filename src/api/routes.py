"""FastAPI route definitions for the calendar assistant API."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from langchain_core.messages import AIMessage, HumanMessage

from src.api.schemas import (
    ChatRequest,
    ChatResponse,
    ConversationResponse,
    HealthResponse,
    MessageOut,
    SlotOptionOut,
)
from src.errors import SessionBusyError
from src.guardrails import message_text
from src.models import ProgressEvent
from src.progress import ProgressSink

logger = logging.getLogger(__name__)

router = APIRouter()

BUSY_DETAIL = "This conversation is still working on a previous message. Please wait and try again."
INTERNAL_DETAIL = "An internal error occurred. Please try again."


def _get_agent(request: Request):
    """Retrieve the calendar agent from app state (set up in the lifespan)."""
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return agent


def _sse(event: ProgressEvent) -> str:
    return f"data: {json.dumps(event.to_dict(), default=str)}\n\n"


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message to the assistant and get its reply.

    ``run_turn`` blocks on the model and calendar APIs, so it runs in a
    worker thread via ``asyncio.to_thread``.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await asyncio.to_thread(
            agent.run_turn, request.message, request.session_id, request.account_refs(),
        )
    except SessionBusyError as e:
        logger.info("[%s] Session %s busy", request_id, request.session_id)
        raise HTTPException(status_code=409, detail=BUSY_DETAIL) from e
    except Exception as e:
        # Full traceback in the logs only
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(status_code=500, detail=INTERNAL_DETAIL) from e

    return ChatResponse.from_result(result, request.session_id)


@router.post("/chat/stream")
async def chat_stream(request: ChatRequest, http_request: Request):
    """Same as ``/chat`` but streams progress as Server-Sent Events.

    Events are ``{type, content, data?}`` with ``type`` one of
    ``progress``, ``error``, ``response`` and ``complete``; ``complete``
    is always last.  Closing the connection cancels the turn.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    return StreamingResponse(
        _event_stream(agent, request, request_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _event_stream(agent, request: ChatRequest, request_id: str) -> AsyncIterator[str]:
    loop = asyncio.get_running_loop()
    events: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
    cancel = threading.Event()
    progress = ProgressSink(lambda event: loop.call_soon_threadsafe(events.put_nowait, event))

    def run():
        try:
            return agent.run_turn(
                request.message, request.session_id, request.account_refs(),
                progress=progress, cancel=cancel,
            )
        finally:
            loop.call_soon_threadsafe(events.put_nowait, None)

    task = asyncio.ensure_future(asyncio.to_thread(run))
    try:
        while True:
            event = await events.get()
            if event is None:
                break
            yield _sse(event)

        try:
            result = await task
        except SessionBusyError:
            yield _sse(ProgressEvent("error", BUSY_DETAIL))
        except Exception:
            logger.exception("[%s] Error processing streamed chat request", request_id)
            yield _sse(ProgressEvent("error", INTERNAL_DETAIL))
        else:
            response = ChatResponse.from_result(result, request.session_id)
            yield _sse(ProgressEvent("response", result.content, response.model_dump(exclude={"content"})))
        yield _sse(ProgressEvent("complete", ""))
    finally:
        if not task.done():
            logger.info("[%s] Client disconnected; cancelling turn", request_id)
            cancel.set()


@router.get("/conversation/{session_id}", response_model=ConversationResponse)
async def get_conversation(session_id: str, http_request: Request):
    """Return the visible history of a conversation and any pending choice."""
    agent = _get_agent(http_request)
    state = agent.conversation(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Conversation not found.")

    messages = []
    for msg in state.history:
        if isinstance(msg, HumanMessage):
            messages.append(MessageOut(role="user", content=message_text(msg)))
        elif isinstance(msg, AIMessage) and message_text(msg):
            messages.append(MessageOut(role="assistant", content=message_text(msg)))

    pending = state.pending_conflict
    return ConversationResponse(
        session_id=session_id,
        turns=state.turns,
        messages=messages,
        pending_proposal=pending.kind.value if pending else None,
        alternatives=[SlotOptionOut.from_option(o) for o in pending.alternatives] if pending else [],
    )
