"""CLI entry point for the Support Desk agent.

A terminal chat for testing and development.  The running history is
kept in memory and resent on every turn, exactly like the web client.
For production, use the FastAPI server (src/server.py).

Usage:
    uv run python -m src.main                  # router agent, quiet
    uv run python -m src.main --agent billing  # talk to one specialist
    uv run python -m src.main --debug          # show API calls
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from src.agent import create_support_agent, run_agent_sync
from src.db.session import init_db
from src.services.agents import AGENTS, DEFAULT_AGENT_ID, get_agent
from src.services.quota import QuotaExceededError

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Support Desk agent CLI")
    parser.add_argument(
        "--agent", default=DEFAULT_AGENT_ID, choices=[a.id for a in AGENTS],
        help="Which agent to chat with",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    info = get_agent(args.agent)
    print("\n" + "=" * 60)
    print(f"  Support Desk - {info.name}")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' to clear the history.")
    print("=" * 60 + "\n")

    init_db()
    agent = create_support_agent(args.agent)
    history: list[dict[str, str]] = []

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
            history.clear()
            print("\n>> History cleared.\n")
            continue

        history.append({"role": "user", "content": user_input})
        try:
            result = run_agent_sync(agent, history)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except QuotaExceededError as e:
            history.pop()
            print(f"\nAgent: {e}\n")
            continue
        except Exception as e:
            history.pop()
            logger.exception("Error processing message")
            print(f"\nAgent: I'm sorry, something went wrong: {e}")
            print("       Please try again or type 'new' to start over.\n")
            continue

        reply = result.text or "I'm sorry, I wasn't able to generate a response. Please try again."
        history.append({"role": "assistant", "content": reply})
        logger.debug("finish_reason=%s usage=%s", result.finish_reason, result.usage)
        print(f"\nAgent: {reply}\n")


if __name__ == "__main__":
    main()
