"""CompletionPort backed by Claude through ``langchain-anthropic``."""

from __future__ import annotations

import logging
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage

from src.config import ANTHROPIC_API_KEY, MODEL_NAME
from src.errors import PortTransportError
from src.models import AssistantTurn, ToolCall
from src.ports import CompletionPort
from src.services.metrics import metrics

logger = logging.getLogger(__name__)


def _text_of(message: AIMessage) -> str:
    """Concatenate the text blocks of a (possibly multi-block) reply."""
    if isinstance(message.content, str):
        return message.content
    parts = []
    for block in message.content:
        if isinstance(block, str):
            parts.append(block)
        elif block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def prepare_messages(messages: list[AnyMessage]) -> list[AnyMessage]:
    """Anthropic only accepts one system prompt, at the very start.

    Instructions injected later in the conversation (guard corrections,
    turn reminders) are re-sent as user-side notes instead.
    """
    prepared: list[AnyMessage] = []
    for index, message in enumerate(messages):
        if isinstance(message, SystemMessage) and index > 0:
            prepared.append(HumanMessage(content=f"[System instruction] {message.content}"))
        else:
            prepared.append(message)
    return prepared


class AnthropicCompletion(CompletionPort):
    """Chat completion with tool use.

    One ``ChatAnthropic`` instance is kept per tool catalog, so the
    binding is done once rather than on every reasoning cycle.
    """

    def __init__(
        self,
        model: str = MODEL_NAME,
        *,
        temperature: float = 0.1,
        max_tokens: int = 2048,
        operation: str = "llm_invoke",
        llm: ChatAnthropic | None = None,
    ):
        self._model = model
        self._operation = operation
        self._llm = llm or ChatAnthropic(
            model=model,
            api_key=ANTHROPIC_API_KEY,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        self._bound: dict[tuple[str, ...], Any] = {}

    def _runnable(self, tool_catalog: list[dict[str, Any]]):
        if not tool_catalog:
            return self._llm
        key = tuple(tool["name"] for tool in tool_catalog)
        if key not in self._bound:
            self._bound[key] = self._llm.bind_tools(tool_catalog)
        return self._bound[key]

    def complete(self, messages: list[AnyMessage], tool_catalog: list[dict[str, Any]]) -> AssistantTurn:
        try:
            with metrics.timed("anthropic", self._operation):
                response = self._runnable(tool_catalog).invoke(prepare_messages(messages))
        except Exception as exc:
            logger.error("%s completion failed: %s", self._model, exc)
            raise PortTransportError(f"Model call failed: {exc}", service="anthropic") from exc

        calls = [
            ToolCall(id=call.get("id") or f"call_{i}", name=call["name"], arguments=call.get("args") or {})
            for i, call in enumerate(getattr(response, "tool_calls", None) or [])
        ]
        logger.debug("%s returned %d tool call(s)", self._model, len(calls))
        return AssistantTurn(text=_text_of(response), tool_calls=calls)
