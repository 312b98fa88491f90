"""LangGraph orchestration loop for the calendar assistant.

Architecture:
  Each inbound message runs one pass of a LangGraph ``StateGraph``:

    1. **plan**   — cheap best-effort outline of the tool calls needed;
                    any failure is ignored
    2. **reason** — the main model, given the system prompt, the plan and
                    the whole conversation, answers or asks for tools
    3. **tools**  — runs the requested tool calls in order, applying the
                    reschedule/delete confirmation gate
    4. **guard**  — rejects final answers that claim an unverified change
                    or are only a status update, and sends the model back

  Routing:
    plan → reason → (tool calls?) → tools → reason (loop)
                  → (text?)       → guard → (accepted?) → END
                                          → (rejected?) → reason

  ``reason`` runs at most ``MAX_REASON_CYCLES`` times per message; the
  next attempt raises :class:`~src.errors.IterationCapExceeded` and the
  turn is aborted with the best partial answer.

  Appointment booking requests skip the graph entirely and go straight
  to :class:`~src.booking.BookingFlow`, as does a pick answering the
  booking alternatives offered on the previous turn.

  A pending proposal lives for one reply: anything other than a pick or
  a plain yes on the very next turn supersedes it.

  Memory:
    Conversation state lives in a :class:`~src.session.SessionStore`
    rather than a LangGraph checkpointer, so pending proposals and linked
    accounts travel with the message history.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Annotated, Any
from zoneinfo import ZoneInfo

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from src.booking import BookingFlow
from src.config import DEFAULT_TIMEZONE, SESSION_LOCK_TIMEOUT_SECONDS, SESSION_TTL_SECONDS
from src.conflicts import ConflictEngine
from src.errors import AgentError, IterationCapExceeded, PortTransportError, ToolNotFoundError, TurnCancelled
from src.guardrails import (
    claims_success,
    confirmation_granted,
    is_affirmative,
    is_progress_message,
    is_success_result,
    message_text,
)
from src.models import AccountRef, ProposalKind, ProposalState, ToolCall, TurnResult
from src.parsing import is_booking_request, is_pick
from src.progress import NULL_PROGRESS, ProgressSink
from src.prompts import (
    CANCELLED_REPLY,
    FALLBACK_REPLY,
    MODEL_ERROR_REPLY,
    PLAN_NOTE,
    PLAN_PROMPT,
    PROGRESS_ONLY_NOTE,
    UNVERIFIED_SUCCESS_NOTE,
    get_system_prompt,
)
from src.services.metrics import metrics
from src.session import ConversationState, InMemorySessionStore, SessionStore
from src.tools.calendar import CALENDAR_TOOLS
from src.tools.calls import CALL_TOOLS
from src.tools.comms import COMMS_TOOLS
from src.tools.conflicts import CONFLICT_TOOLS
from src.tools.registry import ToolContext, ToolRegistry
from src.tools.web import WEB_TOOLS

logger = logging.getLogger(__name__)

MAX_REASON_CYCLES = 5

ALL_TOOLS = [*CALENDAR_TOOLS, *CONFLICT_TOOLS, *COMMS_TOOLS, *CALL_TOOLS, *WEB_TOOLS]


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph for one inbound message.

    ``messages`` uses the ``add_messages`` reducer so nodes only return
    what they append.  ``cycles`` counts ``reason`` calls, ``succeeded``
    counts mutating tool calls that succeeded, and ``final`` is set by the
    guard once an answer is accepted.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    plan: str
    cycles: int
    succeeded: int
    final: str


@dataclass
class _Turn:
    """Per-message context handed to the nodes through ``configurable``."""

    context: ToolContext
    progress: ProgressSink
    # Whether a proposal was already waiting when the user spoke
    proposal_pending: bool

    def check_cancelled(self) -> None:
        if self.context.cancel.is_set():
            raise TurnCancelled("Turn cancelled by the client")


def _turn(config: RunnableConfig) -> _Turn:
    return config["configurable"]["turn"]


def _recent_transcript(messages: list[AnyMessage], max_turns: int = 3) -> str:
    """Plain-text view of the last few exchanges, without tool traffic."""
    lines = []
    for msg in messages:
        if isinstance(msg, HumanMessage):
            lines.append(f"User: {message_text(msg)[:300]}")
        elif isinstance(msg, AIMessage) and not msg.tool_calls and message_text(msg):
            lines.append(f"Assistant: {message_text(msg)[:300]}")
    return "\n".join(lines[-(max_turns * 2 + 1):])


def _best_partial(messages: list[AnyMessage], succeeded: int) -> str | None:
    """The last assistant text of this turn that the guard would accept."""
    for msg in reversed(messages):
        if isinstance(msg, HumanMessage):
            break
        if not isinstance(msg, AIMessage):
            continue
        text = message_text(msg).strip()
        if text and not is_progress_message(text) and (succeeded or not claims_success(text)):
            return text
    return None


def _close_dangling_tool_calls(messages: list[AnyMessage]) -> list[AnyMessage]:
    """Answer tool calls left unanswered by an aborted turn.

    The model API rejects a history where a tool call has no result.
    """
    if not messages or not isinstance(messages[-1], AIMessage) or not messages[-1].tool_calls:
        return messages
    closing = [
        ToolMessage(
            content=json.dumps({"skipped": True, "reason": "The turn was aborted before this tool ran."}),
            tool_call_id=call["id"],
            name=call["name"],
        )
        for call in messages[-1].tool_calls
    ]
    return [*messages, *closing]


def _retire_unanswered_proposal(session: ConversationState, message: str) -> None:
    """Drop a pending proposal that *message* does not answer.

    Only the turn right after the alternatives were offered may answer
    them, and only with a pick or a plain yes.  ``session.turns`` already
    counts the current message.
    """
    pending = session.pending_conflict
    if pending is None:
        return
    fresh = pending.turn == session.turns - 1
    if fresh and (is_pick(message) or is_affirmative(message)):
        return
    logger.info(
        "Session %s: %s proposal from turn %d superseded", session.session_id, pending.kind.value, pending.turn,
    )
    session.clear_conflict()


class CalendarAgent:
    """Runs conversation turns against the linked accounts."""

    def __init__(
        self,
        services,
        store: SessionStore | None = None,
        *,
        timezone: str = DEFAULT_TIMEZONE,
        max_cycles: int = MAX_REASON_CYCLES,
    ) -> None:
        self.services = services
        self.store = store or InMemorySessionStore(SESSION_TTL_SECONDS, SESSION_LOCK_TIMEOUT_SECONDS)
        self.tz = ZoneInfo(timezone)
        self.max_cycles = max_cycles
        self.engine = ConflictEngine(services.calendar, self.tz)
        self.booking = BookingFlow(services.calendar, services.voice, self.engine, self.tz)
        self.registry = ToolRegistry(ALL_TOOLS)
        missing = self.registry.missing()
        if missing:
            raise RuntimeError(f"Tools without handlers: {sorted(m.value for m in missing)}")
        self._catalog = self.registry.catalog()
        self.graph = self._build_graph()

    # ── Nodes ────────────────────────────────────────────────────────

    def _plan_node(self, state: AgentState, config: RunnableConfig) -> dict:
        turn = _turn(config)
        planner = self.services.planner or self.services.completion
        tools = ", ".join(entry["name"] for entry in self._catalog)
        try:
            reply = planner.complete(
                [
                    SystemMessage(content=PLAN_PROMPT.format(tools=tools)),
                    HumanMessage(content=_recent_transcript(state["messages"])),
                ],
                [],
            )
        except Exception as exc:
            # Planning is advisory: reason works fine without it
            logger.warning("Planner failed, continuing without a plan: %s", exc)
            return {"plan": ""}
        plan = reply.text.strip()
        logger.debug("Plan for session %s: %s", turn.context.session.session_id, plan.replace("\n", " | "))
        return {"plan": plan}

    def _reason_node(self, state: AgentState, config: RunnableConfig) -> dict:
        turn = _turn(config)
        turn.check_cancelled()
        if state["cycles"] >= self.max_cycles:
            raise IterationCapExceeded(state["cycles"])

        system = get_system_prompt(turn.context.accounts, self.tz)
        if state.get("plan"):
            system += "\n\n" + PLAN_NOTE.format(plan=state["plan"])
        reply = self.services.completion.complete(
            [SystemMessage(content=system), *state["messages"]], self._catalog,
        )
        logger.debug(
            "Reason cycle %d: %s", state["cycles"] + 1,
            ", ".join(c.name for c in reply.tool_calls) if reply.tool_calls else "final text",
        )
        return {"messages": [reply.to_message()], "cycles": state["cycles"] + 1}

    def _tools_node(self, state: AgentState, config: RunnableConfig) -> dict:
        turn = _turn(config)
        request = state["messages"][-1]
        results: list[ToolMessage] = []
        succeeded = state["succeeded"]

        for raw in request.tool_calls:
            turn.check_cancelled()
            call = ToolCall(id=raw["id"], name=raw["name"], arguments=raw.get("args") or {})
            try:
                spec = self.registry.get(call.name)
            except ToolNotFoundError:
                spec = None

            if spec is not None and spec.confirmation and not confirmation_granted(
                spec.confirmation, state["messages"], proposal_pending=turn.proposal_pending,
            ):
                logger.info("Skipped %s: user has not confirmed the %s", call.name, spec.confirmation)
                metrics.record_count("Agent/ConfirmationSkipped", Tool=call.name)
                result: dict[str, Any] = {
                    "skipped": True,
                    "reason": (
                        f"The user has not explicitly asked for or confirmed this {spec.confirmation}. "
                        "Ask them to confirm before trying again."
                    ),
                }
            else:
                result = self.registry.dispatch(call, turn.context, turn.progress)
                if spec is not None and spec.mutating and is_success_result(result):
                    succeeded += 1

            results.append(
                ToolMessage(content=json.dumps(result, default=str), tool_call_id=call.id, name=call.name)
            )
        return {"messages": results, "succeeded": succeeded}

    def _guard_node(self, state: AgentState, config: RunnableConfig) -> dict:
        text = message_text(state["messages"][-1]).strip()
        if is_progress_message(text):
            note, reason = PROGRESS_ONLY_NOTE, "progress"
        elif claims_success(text) and not state["succeeded"]:
            note, reason = UNVERIFIED_SUCCESS_NOTE, "unverified_success"
        else:
            return {"final": text}
        logger.info("Guard rejected reply (%s): %r", reason, text[:120])
        metrics.record_count("Agent/GuardRejection", Reason=reason)
        return {"messages": [SystemMessage(content=note)]}

    # ── Conditional edges ────────────────────────────────────────────

    @staticmethod
    def _after_reason(state: AgentState) -> str:
        last = state["messages"][-1]
        if isinstance(last, AIMessage) and last.tool_calls:
            return "tools"
        return "guard"

    @staticmethod
    def _after_guard(state: AgentState) -> str:
        return END if state.get("final") else "reason"

    def _build_graph(self):
        graph = StateGraph(AgentState)
        graph.add_node("plan", self._plan_node)
        graph.add_node("reason", self._reason_node)
        graph.add_node("tools", self._tools_node)
        graph.add_node("guard", self._guard_node)

        graph.set_entry_point("plan")
        graph.add_edge("plan", "reason")
        graph.add_conditional_edges("reason", self._after_reason, {"tools": "tools", "guard": "guard"})
        graph.add_edge("tools", "reason")
        graph.add_conditional_edges("guard", self._after_guard, {"reason": "reason", END: END})

        compiled = graph.compile()
        logger.debug("Calendar agent compiled: %d tools, cap %d cycles", len(self._catalog), self.max_cycles)
        return compiled

    # ── Turns ────────────────────────────────────────────────────────

    def run_turn(
        self,
        message: str,
        session_id: str,
        accounts: list[AccountRef] | None = None,
        *,
        progress: ProgressSink | None = None,
        cancel: threading.Event | None = None,
    ) -> TurnResult:
        """Handle one inbound user message for *session_id*.

        Raises :class:`~src.errors.SessionBusyError` if another message for
        the same session is still being handled after the lock timeout.
        """
        progress = progress or NULL_PROGRESS
        cancel = cancel or threading.Event()
        with self.store.lock(session_id):
            session = self.store.load_or_create(session_id, accounts)
            session.turns += 1
            _retire_unanswered_proposal(session, message)
            context = ToolContext(session, self.services, self.engine, self.booking, self.tz, cancel)
            try:
                if is_booking_request(message, booking_pending=session.pending(ProposalKind.BOOKING) is not None):
                    return self._booking_turn(message, context, progress)
                return self._graph_turn(message, context, progress)
            finally:
                self.store.put(session)

    def _booking_turn(self, message: str, context: ToolContext, progress: ProgressSink) -> TurnResult:
        session = context.session
        session.history.append(HumanMessage(content=message))
        try:
            result = self.booking.handle_message(message, context, progress)
        except TurnCancelled:
            result = TurnResult(content=CANCELLED_REPLY, status="aborted")
        except AgentError as exc:
            logger.error("Booking turn for session %s failed: %s", session.session_id, exc)
            progress.error(str(exc))
            result = TurnResult(content=f"Sorry, I couldn't complete the booking: {exc}", status="aborted")
        session.history.append(AIMessage(content=result.content))
        return result

    def _graph_turn(self, message: str, context: ToolContext, progress: ProgressSink) -> TurnResult:
        session = context.session
        session.history.append(HumanMessage(content=message))
        turn = _Turn(context, progress, proposal_pending=session.pending_conflict is not None)
        inputs: AgentState = {"messages": list(session.history), "plan": "", "cycles": 0, "succeeded": 0, "final": ""}
        config: RunnableConfig = {"configurable": {"turn": turn}, "recursion_limit": 4 * self.max_cycles + 10}

        last: dict[str, Any] | None = None
        status, content = "final", ""
        try:
            for last in self.graph.stream(inputs, config, stream_mode="values"):
                pass
            content = last["final"]
        except IterationCapExceeded as exc:
            logger.warning("Session %s: %s; returning best partial answer", session.session_id, exc)
            metrics.record_count("Agent/IterationCapExceeded")
            status = "aborted"
            content = _best_partial(last["messages"], last["succeeded"]) if last else None
            content = content or FALLBACK_REPLY
        except TurnCancelled:
            logger.info("Session %s: turn cancelled", session.session_id)
            status, content = "aborted", CANCELLED_REPLY
        except PortTransportError as exc:
            logger.error("Session %s: model call failed: %s", session.session_id, exc)
            progress.error("The assistant is temporarily unavailable.")
            status, content = "aborted", MODEL_ERROR_REPLY

        if last is not None:
            session.history = list(last["messages"])
        if status == "aborted":
            session.history = _close_dangling_tool_calls(session.history)
            session.history.append(AIMessage(content=content))
        return self._result(session, content, status)

    @staticmethod
    def _result(session: ConversationState, content: str, status: str) -> TurnResult:
        pending = session.pending_conflict
        if pending is not None and pending.turn == session.turns and pending.state == ProposalState.PROPOSED:
            return TurnResult(content=content, status=status, alternatives=list(pending.alternatives), conflict=True)
        return TurnResult(content=content, status=status)

    def conversation(self, session_id: str) -> ConversationState | None:
        return self.store.get(session_id)


def create_calendar_agent(services=None, store: SessionStore | None = None) -> CalendarAgent:
    """Build the agent with the configured adapters unless *services* is given."""
    if services is None:
        from src.services.factory import build_services

        services = build_services()
    return CalendarAgent(services, store)
