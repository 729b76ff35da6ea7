"""
Parley entry point.

This file handles startup concerns (arg-parsing, env setup, logging) and launches either the HTTP
API or a single question from the command line.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from parley.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stderr,
    )
    # Keep HTTP client chatter out of the way
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _ask(args: argparse.Namespace) -> int:
    # Lazy imports so `--mode api` does not build the CLI components
    from parley.agent.events import (  # pylint: disable=import-outside-toplevel
        ConsoleNotifier,
    )
    from parley.agent.factory import (  # pylint: disable=import-outside-toplevel
        build_answers_agent,
        build_run_poller,
    )
    from parley.common import (  # pylint: disable=import-outside-toplevel
        AnsiColors,
        colored_print,
    )
    from parley.tools import TOOL_REGISTRY  # pylint: disable=import-outside-toplevel

    question = " ".join(args.question).strip()
    if not question:
        logger.error("No question given")
        return 2

    sink = ConsoleNotifier(TOOL_REGISTRY, show_messages=True)
    if args.hosted:
        answer = build_run_poller(settings, sink).ask(question, continue_last=args.cont)
        print(answer)
        return 0

    agent = build_answers_agent(settings, sink)
    try:
        conversation_id, session = agent.ask(
            question,
            conversation_id=args.conversation,
            use_planner=not args.no_planner,
            include=args.include,
        )
    except (OSError, UnicodeDecodeError) as exc:
        logger.error("Could not read included file: %s", exc)
        return 1
    print(session.response)
    label, usage = session.context_window_usage()
    colored_print(f"{label}: {usage}", AnsiColors.YELLOW, file=sys.stderr)
    colored_print(f"Conversation saved: {conversation_id}", AnsiColors.YELLOW, file=sys.stderr)
    return 0


def _notes(args: argparse.Namespace) -> int:
    from parley.agent.factory import notes_store  # pylint: disable=import-outside-toplevel
    from parley.tools.notes import format_notes  # pylint: disable=import-outside-toplevel

    store = notes_store(settings)
    if args.reset:
        if not args.yes:
            reply = input("Delete all stored notes? This is irreversible! [y/N] ")
            if reply.strip().lower() not in ("y", "yes"):
                print("Aborted")
                return 1
        count = store.reset()
        print(f"Notes reset ({count} removed)")
        return 0

    notes = store.all()
    if not notes:
        print("No notes found", file=sys.stderr)
        return 0
    print(format_notes(notes))
    return 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the Parley application.

    This function sets up the command-line interface, initializes logging, and then starts the API
    server, answers one question, or lists (or resets) the saved research notes.
    """
    if argv is None:
        argv = sys.argv[1:]

    # Ensure the data directory exists
    data_dir = Path(settings.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    # Ensure the data directory is writable
    if not data_dir.is_dir() or not os.access(data_dir, os.W_OK):
        logger.error("Data directory is not writable: %s", data_dir)
        sys.exit(1)

    parser = argparse.ArgumentParser(description="Run the Parley agent orchestrator")
    parser.add_argument(
        "--mode",
        choices=["api", "ask", "notes"],
        type=str.lower,
        default="ask",
        help="Serve the REST API, answer one question or list saved notes (default: ask)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument("question", nargs="*", help="Question to answer in ask mode")
    parser.add_argument("--conversation", help="Continue (or create) this stored conversation")
    parser.add_argument(
        "--hosted", action="store_true", help="Use the hosted thread/run protocol"
    )
    parser.add_argument(
        "--continue",
        dest="cont",
        action="store_true",
        help="Hosted protocol: continue the last thread",
    )
    parser.add_argument("--no-planner", action="store_true", help="Skip the planner agent")
    parser.add_argument(
        "--include",
        action="append",
        default=[],
        metavar="FILE",
        help="Attach FILE to the question (repeatable)",
    )
    parser.add_argument(
        "--reset", action="store_true", help="Notes mode: delete all stored notes"
    )
    parser.add_argument("--yes", action="store_true", help="Notes mode: skip the confirmation")
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting Parley [%s mode]", args.mode)
    logger.debug("Settings: %s", settings.model_dump(exclude={"OPENAI_API_KEY", "ANTHROPIC_API_KEY"}))

    if args.mode == "api":
        # Lazy import to avoid web dependencies if not needed
        from parley.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
    elif args.mode == "notes":
        sys.exit(_notes(args))
    else:
        sys.exit(_ask(args))


if __name__ == "__main__":
    main()
