# main.py
"""
Entry point: interactive release publication in the terminal.

Workflow:
1) Collect release data from the repository (latest tag, commits, README)
2) Requirement analysis (LLM when configured, deterministic fallback otherwise)
3) Human-in-the-loop: every pending store field is asked here, validated,
   and can be picked from the numbered suggestions
4) Publish (dry-run store: JSON payload under OUTPUT_DIR)
5) On failure, error recovery asks only for the fields to correct, or retries

Configuration comes from .env / environment (see relpub.config).
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from dotenv import load_dotenv

from relpub.collector import GitSourceCollector
from relpub.config import Settings, build_generator
from relpub.errors import ReleaseWorkflowError
from relpub.logging_utils import setup_logging
from relpub.models import DataCollectionRequest, SessionStatus
from relpub.publish import JsonFilePublisher
from relpub.render import render_request
from relpub.session import ReleaseAgent

load_dotenv()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish the latest tagged release of an Android app.")
    parser.add_argument("repo", help="git URL or local path of the project repository")
    parser.add_argument("--user-id", type=int, default=1)
    parser.add_argument("--chat-id", type=int, default=1)
    return parser.parse_args(argv)


def resolve_answer(raw: str, req: DataCollectionRequest) -> str:
    """A bare number picks the matching suggestion (numeric fields excepted)."""
    text = raw.strip()
    if req.validation_type != "numeric" and text.isdigit():
        idx = int(text) - 1
        if 0 <= idx < len(req.suggestions):
            return req.suggestions[idx]
    return text


def ask_pending(agent: ReleaseAgent, session_id: str) -> None:
    session = agent.get_session(session_id)
    for req in session.pending_requests:
        print()
        print(render_request(req))
        while True:
            answer = resolve_answer(input("> "), req)
            result = agent.process_user_response(session_id, req.field, answer)
            if result.valid:
                break
            print(f"  ! {result.error_message}")
            for s in result.suggestions:
                print(f"    - {s}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = Settings.from_env()
    setup_logging(level=settings.log_level, log_file=settings.log_file)

    agent = ReleaseAgent(
        collector=GitSourceCollector(settings.cache_dir),
        publisher=JsonFilePublisher(settings.output_dir),
        generator=build_generator(settings),
        max_auto_retries=settings.max_auto_retries,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        max_workers=settings.worker_threads,
        auto_fill=settings.auto_fill,
    )

    session = agent.start_session(args.user_id, args.chat_id, args.repo)
    print(f"Started session {session.id}, collecting release data...")
    try:
        while True:
            agent.wait(session.id)
            current = agent.get_session(session.id)
            if current.status.is_terminal:
                break
            if not current.pending_requests:
                print(f"\nSession stalled in status {current.status.value}.", file=sys.stderr)
                break
            if current.last_error:
                print(f"\nPublication failed: {current.last_error}")
                print("Please correct the following fields.")
            ask_pending(agent, session.id)
    except (KeyboardInterrupt, EOFError):
        if not agent.get_session(session.id).status.is_terminal:
            agent.cancel_session(session.id)
        print("\nCancelled.")
        return 1
    except ReleaseWorkflowError as e:
        print("\nERROR:", str(e), file=sys.stderr)
        return 1
    finally:
        agent.shutdown(wait=False)

    print()
    print(agent.session_summary(session.id))
    return 0 if current.status == SessionStatus.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
