# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Shared conversational contexts.

A SharedContext owns the canonical transcript that several workflow agents
take part in. Agents never hold the list itself: they read a per-agent view
(with user/assistant swapped for agents participating as "user") and write
through `add_message`.
"""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any, Optional

from ..errors import InvalidMessageError

if TYPE_CHECKING:
    from .agent import WorkflowAgent

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Non-system messages always kept when trimming
MIN_RETAINED_MESSAGES = 10

_SWAPPED_ROLES = {"user": "assistant", "assistant": "user"}


def swap_perspective(message: dict[str, Any]) -> dict[str, Any]:
    """Copy of `message` with user and assistant exchanged."""
    swapped = dict(message)
    swapped["role"] = _SWAPPED_ROLES.get(message.get("role"), message.get("role"))
    return swapped


def _validate_message(message: Optional[dict[str, Any]]) -> None:
    if not message or not message.get("role"):
        raise InvalidMessageError()
    role = message["role"]
    if role == "tool":
        if not message.get("tool_call_id") or not isinstance(message.get("content"), str):
            raise InvalidMessageError("tool messages need tool_call_id and content")
        return
    if role == "assistant" and message.get("tool_calls"):
        return
    if not message.get("content"):
        raise InvalidMessageError()


def _drop_foreign_tool_calls(view: list[dict[str, Any]]) -> list[dict[str, Any]]:
    foreign_ids = set()
    readable = []
    for message in view:
        if message.get("tool_calls") and message.get("role") != "assistant":
            foreign_ids.update(c.get("id") for c in message["tool_calls"])
            message = {k: v for k, v in message.items() if k != "tool_calls"}
            if not message.get("content"):
                continue
        elif message.get("role") == "tool" and message.get("tool_call_id") in foreign_ids:
            continue
        readable.append(message)
    return readable


class SharedContext:
    def __init__(
        self,
        name: str,
        starting_messages: Optional[list[dict[str, Any]]] = None,
        max_length: int = 50000,
    ):
        self.name = name
        self.max_length = max_length
        self._messages: list[dict[str, Any]] = [dict(m) for m in starting_messages or []]
        self._agents: dict[str, dict[str, Any]] = {}
        logger.debug(f"Created context {name} (max length: {max_length})")

    # Participants ============================================================

    def add_agent(self, agent: "WorkflowAgent", role: str) -> None:
        self._agents[agent.id] = {"agent": agent, "role": role}
        logger.debug(f"Added agent {agent.agent_role} as {role} to context {self.name}")

    def remove_agent(self, agent: "WorkflowAgent") -> None:
        self._agents.pop(agent.id, None)
        logger.debug(f"Removed agent {agent.agent_role} from context {self.name}")

    def participation_role(self, agent_id: str) -> Optional[str]:
        entry = self._agents.get(agent_id)
        return entry["role"] if entry else None

    def get_agents(self) -> list[dict[str, Any]]:
        return [
            {"agent": e["agent"], "role": e["role"], "agent_role": e["agent"].agent_role}
            for e in self._agents.values()
        ]

    # Messages ================================================================

    def add_message(
        self, message: dict[str, Any], from_agent: Optional["WorkflowAgent"] = None
    ) -> None:
        """Append a message to the canonical transcript.

        Args:
            message: an OpenAI-style message. Assistant messages carrying
                `tool_calls` may have no content; `tool` messages need a
                `tool_call_id`; every other message needs non-empty content.
            from_agent: the agent that wrote the message from its own
                perspective. Messages from agents participating as "user"
                are swapped into the canonical perspective.

        Raises:
            InvalidMessageError: if the message is malformed
        """
        _validate_message(message)

        message = dict(message)
        if from_agent is not None and self.participation_role(from_agent.id) == "user":
            message = swap_perspective(message)

        self._messages.append(message)
        origin = f" from {from_agent.agent_role}" if from_agent is not None else ""
        logger.debug(f"Added {message['role']} message to context {self.name}{origin}")

        if self.get_length() > self.max_length:
            self._trim()

    def get_messages(self) -> list[dict[str, Any]]:
        return [dict(m) for m in self._messages]

    def get_messages_for_agent(self, agent_id: str) -> list[dict[str, Any]]:
        """The transcript as seen by `agent_id`. The canonical list is not modified.

        Tool calls are only meaningful to the agent that issued them: in the
        view they must sit on an assistant message, so calls that appear on
        a user message here (another participant's) are dropped together
        with their tool results.
        """
        if self.participation_role(agent_id) == "user":
            view = [swap_perspective(m) for m in self._messages]
        else:
            view = self.get_messages()
        return _drop_foreign_tool_calls(view)

    def get_last_message(self) -> Optional[dict[str, Any]]:
        return dict(self._messages[-1]) if self._messages else None

    def get_messages_by_role(self, role: str) -> list[dict[str, Any]]:
        return [dict(m) for m in self._messages if m.get("role") == role]

    def clear_messages(self) -> None:
        count = len(self._messages)
        self._messages.clear()
        logger.debug(f"Cleared {count} messages from context {self.name}")

    def has_messages(self) -> bool:
        return bool(self._messages)

    def get_length(self) -> int:
        """Total characters of string content in the transcript."""
        return sum(len(m["content"]) for m in self._messages if isinstance(m.get("content"), str))

    def _trim(self) -> None:
        original_count = len(self._messages)
        system = [m for m in self._messages if m.get("role") == "system"]
        others = [m for m in self._messages if m.get("role") != "system"]

        self._messages = system + others
        while self.get_length() > self.max_length and len(others) > MIN_RETAINED_MESSAGES:
            others.pop(0)
            self._messages = system + others

        removed = original_count - len(self._messages)
        if removed > 0:
            logger.debug(
                f"Trimmed {removed} messages from context {self.name} "
                f"(length: {self.get_length()}/{self.max_length})"
            )

    # Stats and persistence ===================================================

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "message_count": len(self._messages),
            "context_length": self.get_length(),
            "max_length": self.max_length,
            "agent_count": len(self._agents),
            "agents": [
                {"agent_role": e["agent"].agent_role, "context_role": e["role"]}
                for e in self._agents.values()
            ],
        }

    def export(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "messages": self.get_messages(),
            "max_length": self.max_length,
            "stats": self.get_stats(),
        }

    def import_data(self, data: dict[str, Any]) -> None:
        if data.get("name") != self.name:
            raise ValueError(f"Context name mismatch: expected {self.name}, got {data.get('name')}")
        self._messages = [dict(m) for m in data.get("messages") or []]
        if data.get("max_length"):
            self.max_length = data["max_length"]
        logger.debug(f"Imported {len(self._messages)} messages to context {self.name}")
