"""Heuristics the orchestration loop uses to police the model.

* :func:`confirmation_granted` — may a reschedule/delete tool run now?
* :func:`claims_success` — does a reply say a change was made?
* :func:`is_progress_message` — is a reply only an interim status update?

They are deliberately simple regexes and can be swapped for a classifier
without touching the loop.
"""

from __future__ import annotations

import re
from typing import Any

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage

from src.parsing import parse_selection

RESCHEDULE = "reschedule"
DELETE = "delete"

_INTENT_RES = {
    RESCHEDULE: re.compile(
        r"\b(re-?schedul\w*|move|moving|push(?:ed)? (?:it |this |that )?back|postpone\w*|"
        r"shift|bump|change the time|different time|another time|alternative\w*)\b",
        re.IGNORECASE,
    ),
    DELETE: re.compile(
        r"\b(delete\w*|cancel\w*|remove\w*|clear (?:out )?(?:my|the|all)|get rid of|drop)\b",
        re.IGNORECASE,
    ),
}

_AFFIRMATIVE_RE = re.compile(
    r"^\s*(yes|yeah|yep|yup|sure|ok(?:ay)?|confirm(?:ed)?|correct|absolutely|definitely|"
    r"go ahead|please do|do it|sounds good|that works|works for me|perfect|let'?s do (?:it|that))\b",
    re.IGNORECASE,
)

_CHANGE_RE = re.compile(
    r"\b(moved|rescheduled|updated|created|booked|deleted|removed|cancell?ed|added|changed)\b",
    re.IGNORECASE,
)
_DONE_RE = re.compile(
    r"\b(success\w*|done|complete[d]?|all set|has been|have been|is now|are now)\b",
    re.IGNORECASE,
)
_PROGRESS_RE = re.compile(
    r"^\s*(checking|let me (?:check|look|see|find)|one moment|just a moment|give me a (?:moment|sec\w*)|"
    r"please wait|hold on|working on (?:it|that)|i'?ll (?:check|look|get back)|looking (?:into|up)|"
    r"i'?m (?:checking|looking|working))\b",
    re.IGNORECASE,
)


def message_text(message: AnyMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    return " ".join(
        block.get("text", "") for block in content if isinstance(block, dict)
    )


def _last_exchange(messages: list[AnyMessage]) -> tuple[str, str]:
    """Return (current user message, the exchange right before it)."""
    human_idx = [i for i, m in enumerate(messages) if isinstance(m, HumanMessage)]
    if not human_idx:
        return "", ""
    current = message_text(messages[human_idx[-1]])
    start = human_idx[-2] if len(human_idx) > 1 else human_idx[-1]
    previous = " ".join(
        message_text(m) for m in messages[start:human_idx[-1]]
        if isinstance(m, (HumanMessage, AIMessage))
    )
    return current, previous


def confirmation_granted(
    intent: str,
    messages: list[AnyMessage],
    *,
    proposal_pending: bool = False,
) -> bool:
    """Whether a tool with a *intent* side effect may be dispatched.

    Allowed when the current user message asks for it outright, or when
    it is a plain yes and the immediately preceding exchange raised that
    action.  A pending set of alternatives only vouches for rescheduling:
    a yes or a pick answers the offered slots, never a delete.
    """
    current, previous = _last_exchange(messages)
    intent_re = _INTENT_RES[intent]
    if intent_re.search(current):
        return True

    answers_proposal = proposal_pending and intent == RESCHEDULE
    agreed = is_affirmative(current)
    if answers_proposal and parse_selection(current) is not None:
        agreed = True
    if not agreed:
        return False
    return answers_proposal or bool(intent_re.search(previous))


def is_affirmative(text: str) -> bool:
    return bool(_AFFIRMATIVE_RE.search(text))


def claims_success(text: str) -> bool:
    """True when *text* says a calendar change was completed."""
    return bool(_CHANGE_RE.search(text) and _DONE_RE.search(text))


def is_progress_message(text: str) -> bool:
    """True when *text* is an interim status update, not an answer."""
    stripped = text.strip()
    if not stripped:
        return True
    if _PROGRESS_RE.search(stripped):
        return True
    # Short text trailing off ("Searching your calendar...") is still working
    return len(stripped) < 80 and stripped.endswith(("...", "…"))


def is_success_result(result: dict[str, Any]) -> bool:
    """A tool result counts as a success when nothing flagged it otherwise."""
    if result.get("error") or result.get("skipped") or result.get("conflict"):
        return False
    return result.get("success", True) is not False
