# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Main entrypoint when running the agent defined in this directory with
`python -m coding_agent`.
"""

import sys
import json
import logging
import asyncio
import argparse

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .agent import Agent
from .src.config import load_settings
from .src.conversation import SessionCallbacks
from .src.errors import ConfigurationError

logging.captureWarnings(True)
logger = logging.getLogger(__name__)


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coding_agent")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Optional JSON settings file; environment variables override it",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log tool calls and workflow transitions"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("workflows", help="List the available workflows")

    run_parser = subparsers.add_parser("run", help="Execute a workflow")
    run_parser.add_argument("name", type=str, help="Workflow name")
    run_parser.add_argument("input", type=str, help="The workflow input value")
    run_parser.add_argument(
        "--events", type=Path, default=None, help="Write the run's events to this JSON file"
    )

    chat_parser = subparsers.add_parser("chat", help="Chat with a single persona")
    chat_parser.add_argument("--role", type=str, default="coder", help="Persona role")

    return parser


def list_workflows(agent: Agent) -> None:
    agent.load_workflows()
    metadata = agent.describe_workflows()
    if not metadata:
        print("No workflows found")
        return
    for meta in metadata:
        print(
            f"{meta['name']}: {meta['description']} "
            f"({meta['context_count']} contexts, {meta['agent_count']} agents, "
            f"{meta['state_count']} states)"
        )


async def run_workflow(
    agent: Agent, name: str, input: str, events_path: Optional[Path] = None
) -> int:
    agent.load_workflows()
    result = await agent.run_workflow(name, input)
    if events_path is not None:
        agent.event_bus.dump_events(events_path)
    print(json.dumps(result, indent=2, default=str))
    return 0 if result["success"] else 1


async def chat(agent: Agent, role: str) -> None:
    callbacks = SessionCallbacks(
        on_chain_of_thought=lambda text: print(f"\n[thinking] {text}\n"),
        on_content_display=lambda text: print(f"\n{text}\n"),
        on_error=lambda e: print(f"\n[error] {e}\n", file=sys.stderr),
    )
    session = agent.new_session(role, callbacks=callbacks)
    print(f"Chatting as '{role}' on {session.get_model()}. Empty line or Ctrl-D to exit.")

    while True:
        try:
            text = input("> ")
        except EOFError:
            break
        if not text.strip():
            break
        response = await session.send_user_message(text)
        if response is not None:
            print(f"\n{response}\n")

    print(json.dumps(agent.get_usage()))


def main() -> int:
    parser = setup_parser()
    args = parser.parse_args()

    load_dotenv()
    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        agent = Agent(settings=settings)
    except ConfigurationError as e:
        logger.error(f"Could not start agent: {e}")
        return 2
    if args.verbose:
        agent.watch_events()

    if args.command == "workflows":
        list_workflows(agent)
        return 0
    if args.command == "run":
        return asyncio.run(run_workflow(agent, args.name, args.input, args.events))
    if args.command == "chat":
        try:
            asyncio.run(chat(agent, args.role))
        except ConfigurationError as e:
            logger.error(f"Could not start chat: {e}")
            return 2
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
