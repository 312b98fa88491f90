"""Terminal chat with the calendar assistant, for development.

Uses a single Google account whose OAuth access token is read from
``GOOGLE_ACCESS_TOKEN``.  For anything else, run the FastAPI server
(``src/server.py``).

Usage:
    python -m src.main            # quiet
    python -m src.main --debug    # show API calls and graph steps
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from src.models import AccountRef, ProgressEvent
from src.progress import ProgressSink

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_event(event: ProgressEvent) -> None:
    if event.type == "progress":
        print(f"  … {event.content}")
    elif event.type == "error":
        print(f"  ! {event.content}")


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Calendar assistant CLI")
    parser.add_argument("--debug", action="store_true", help="Show all log messages including HTTP requests")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    # Config requires ANTHROPIC_API_KEY, so import after argument parsing
    from src.agent import create_calendar_agent
    from src.config import GOOGLE_ACCESS_TOKEN

    if not GOOGLE_ACCESS_TOKEN:
        print("Set GOOGLE_ACCESS_TOKEN to an OAuth token with Calendar, People and Gmail scopes.")
        return
    accounts = [AccountRef(id="personal", title="Personal", credential_handle=GOOGLE_ACCESS_TOKEN, primary=True)]

    print("\n" + "=" * 60)
    print("  Calendar Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    agent = create_calendar_agent()
    progress = ProgressSink(_print_event)
    session_id = str(uuid.uuid4())
    logger.info("Started new session: %s", session_id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break
        if user_input.lower() == "new":
            session_id = str(uuid.uuid4())
            print(f"\n>> New session started: {session_id[:8]}...\n")
            continue

        try:
            result = agent.run_turn(user_input, session_id, accounts, progress=progress)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nAssistant: Sorry, something went wrong: {e}")
            print("     Please try again or type 'new' to start a fresh session.\n")
            continue

        print(f"\nAssistant: {result.content}\n")
        for i, option in enumerate(result.alternatives or [], start=1):
            print(f"   {i}. {option.label}: {option.display}")


if __name__ == "__main__":
    main()
