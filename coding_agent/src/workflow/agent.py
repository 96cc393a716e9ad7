# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from __future__ import annotations

import json
import time
import random
import string
import logging

from typing import Any, Optional

from .context import SharedContext
from ..config import Settings
from ..conversation import ConversationSession, SessionCallbacks
from ..events import EventBus
from ..llm.backend import ModelBackend
from ..personas import PersonaRegistry
from ..tools.base_tool import ToolExecutor
from ..types.llm_types import AssistantMessage, Completion

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_agent_id(agent_role: str) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{agent_role}_{int(time.time() * 1000)}_{suffix}"


class WorkflowAgent:
    """A persona-backed participant in a shared context.

    Each agent owns a ConversationSession. Before every model call the
    session history is refreshed from the context view for this agent, so
    the agent always sees the transcript from its own perspective.
    """

    def __init__(
        self,
        agent_role: str,
        context: SharedContext,
        context_role: str,
        settings: Settings,
        personas: PersonaRegistry,
        backend: ModelBackend,
        tool_executor: ToolExecutor | None = None,
        tools: list[dict[str, Any]] | None = None,
        event_bus: EventBus | None = None,
    ):
        self.agent_role = agent_role
        self.context_role = context_role
        self.context = context
        self.id = generate_agent_id(agent_role)

        self.last_decision: Optional[dict[str, Any]] = None
        self.last_response_content: Optional[str] = None
        self.last_raw_response: Optional[dict[str, Any]] = None
        self.last_tool_calls: list[dict[str, Any]] = []
        self._recording = False
        self._parsing_tool_names: set[str] = set()

        callbacks = SessionCallbacks(
            on_response=self._on_response, on_message_push=self._on_message_push
        )
        self.session = ConversationSession(
            settings,
            personas,
            backend,
            tool_executor=tool_executor,
            event_bus=event_bus,
            callbacks=callbacks,
            session_id=self.id,
        )
        self.session.set_tools(tools or [])
        self.session.set_persona(agent_role)

        parsing_tools = personas.get_parsing_tools(agent_role)
        if parsing_tools:
            self._parsing_tool_names = set(personas.resolve(agent_role).parsing_tool_names)
            callbacks.on_parse_response = self._handle_parsing_response

        context.add_agent(self, context_role)
        logger.debug(
            f"Created agent {agent_role} ({context_role} in {context.name}) with "
            f"{self.session.get_filtered_tool_count()}/{self.session.get_total_tool_count()} tools"
        )

    # Turns ===================================================================

    async def send_message(self, message: Any) -> str:
        """Send `message` as this agent's user turn.

        The message goes into the context first, then every message the
        session produces during the turn (tool calls, tool results,
        reminders and the final answer) is written through to the context.
        A failed turn leaves what was written so far in place.

        Raises:
            ValueError: if `message` is None or blank
        """
        if message is None:
            raise ValueError(f"Message cannot be None for agent {self.agent_role}")
        text = str(message)
        if not text.strip():
            raise ValueError(f"Message cannot be empty for agent {self.agent_role}")

        self.context.add_message({"role": "user", "content": text}, from_agent=self)
        self._refresh_from_context()
        self._start_turn()
        self._recording = True
        try:
            content = await self.session.send_message(raise_errors=True) or ""
        finally:
            self._recording = False
        logger.debug(f"Agent {self.agent_role} received response: {content[:80]!r}")
        return content

    async def make_context_call(self) -> str:
        """Call the model on the current context view, without adding to it."""
        self._refresh_from_context()
        self._start_turn()
        content = await self.session.send_message(raise_errors=True) or ""
        logger.debug(f"Agent {self.agent_role} received response: {content[:80]!r}")
        return content

    def add_user_message(self, message: str) -> None:
        """Stage `message` in the context as input this agent will see as `user`."""
        role = "user" if self.context_role == "assistant" else "assistant"
        self.context.add_message({"role": role, "content": message})
        logger.debug(f"Agent {self.agent_role} added {role} message to context {self.context.name}")

    def clear_conversation(self) -> None:
        self.session.clear_conversation()
        self.last_decision = None

    def _refresh_from_context(self) -> None:
        messages = self.context.get_messages_for_agent(self.id)
        self.session.load_history(messages)
        logger.debug(f"Agent {self.agent_role} refreshed {len(messages)} messages from context")

    def _start_turn(self) -> None:
        self.last_response_content = None
        self.last_decision = None
        self.last_tool_calls = []

    # Session hooks ===========================================================

    def _on_message_push(self, message: dict[str, Any]) -> None:
        if message.get("tool_calls"):
            self.last_tool_calls.extend(message["tool_calls"])
        if not self._recording or message.get("role") == "system":
            return
        # A decision-only answer has no text to share
        if message.get("role") == "assistant" and not (
            message.get("content") or message.get("tool_calls")
        ):
            return
        self.context.add_message(message, from_agent=self)

    def _on_response(self, completion: Completion) -> None:
        self.last_raw_response = completion.to_raw()
        if completion.message.content:
            self.last_response_content = completion.message.content

    def _handle_parsing_response(self, message: AssistantMessage) -> None:
        calls = [c for c in message.tool_calls if c.function.name in self._parsing_tool_names]
        self.last_decision = None
        self.last_tool_calls.extend(c.to_dict() for c in calls)
        if len(calls) != 1:
            if calls:
                logger.warning(
                    f"Agent {self.agent_role} made {len(calls)} decision calls, expected one"
                )
            return

        call = calls[0]
        try:
            arguments = call.function.parsed_arguments()
        except ValueError as e:
            logger.warning(f"Agent {self.agent_role} sent unparseable decision arguments: {e}")
            return
        self.last_decision = {"function": {"name": call.function.name, "arguments": arguments}}
        logger.debug(f"Agent {self.agent_role} decided via {call.function.name}: {arguments}")

    # Accessors ===============================================================

    def get_last_decision(self) -> Optional[dict[str, Any]]:
        return self.last_decision

    def get_tool_calls(self) -> list[dict[str, Any]]:
        """Tool calls made during this agent's latest turn, decisions included."""
        return list(self.last_tool_calls)

    def get_parsing_tool_calls(self) -> list[dict[str, Any]]:
        if self.last_decision is not None:
            function = self.last_decision["function"]
            return [
                {
                    "type": "function",
                    "function": {
                        "name": function["name"],
                        "arguments": json.dumps(function["arguments"]),
                    },
                }
            ]
        return [
            c
            for c in self.get_tool_calls()
            if c.get("function", {}).get("name") in self._parsing_tool_names
        ]

    def get_last_response(self) -> Optional[str]:
        """Content of the newest assistant message in the shared context."""
        for message in reversed(self.context.get_messages()):
            if message.get("role") == "assistant" and message.get("content"):
                return message["content"]
        return None

    def get_last_raw_response(self) -> Optional[dict[str, Any]]:
        return self.last_raw_response

    def get_stats(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_role": self.agent_role,
            "context_role": self.context_role,
            "context_name": self.context.name,
            "model": self.session.get_model(),
            "tool_call_count": self.session.get_tool_call_count(),
            "has_decision": self.last_decision is not None,
        }

    def export(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_role": self.agent_role,
            "context_role": self.context_role,
            "context_name": self.context.name,
            "last_decision": self.last_decision,
            "last_response": self.last_response_content,
        }
