"""Calendar Assistant: a conversational backend for calendars, contacts, email and calls.

Architecture Overview
=====================

Each user message runs through a **LangGraph** state machine
(``src/agent.py``): a best-effort **plan**, then up to five **reason**
cycles in which Claude either answers or asks for tools, the **tools**
themselves, and a **guard** that refuses answers claiming changes no tool
made.  Appointment bookings bypass the graph and run the phone booking
flow (``src/booking.py``) directly.

Key Design Decisions
--------------------
- **Ports and adapters**: the loop only sees the abstract ports in
  ``src/ports.py``; Google Calendar, People, Gmail, Vapi, Tavily and
  Anthropic adapters live in ``src/services/``.
- **Cross-turn state**: conflicts produce a ``ConflictProposal`` kept on
  the session; the user's pick is re-validated before anything is written.
- **Guardrails**: rescheduling and deleting need explicit confirmation;
  success claims need a successful mutating tool call in the same turn.
- **Resilience**: every REST adapter retries timeouts and 5xx responses
  with exponential backoff; tool failures come back to the model as
  structured errors instead of exceptions.
- **Dual Interface**: FastAPI server with SSE streaming + CLI chat loop.

Package Structure
-----------------
- ``src/agent.py`` — LangGraph orchestration loop
- ``src/booking.py`` — phone booking flow
- ``src/conflicts.py`` — conflict detection and the reschedule proposal flow
- ``src/slots.py`` / ``src/parsing.py`` / ``src/guardrails.py`` — pure helpers
- ``src/session.py`` — conversation state and session store
- ``src/tools/`` — tool registry and handlers
- ``src/services/`` — external API adapters, metrics and cache
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""
