# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
A single persona's conversation with a model backend.

The session owns the message history and runs the bounded tool-calling loop:
request a completion, execute any requested tools in order, append their
results (and the persona reminder), and repeat until the model answers
without action tool calls.
"""

from __future__ import annotations

import copy
import logging

from uuid import uuid4
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .ordering import sort_messages_for_tool_calls
from ..config import ModelTier, Settings, TierSettings
from ..errors import (
    ConfigurationError,
    DecisionHandlerMissingError,
    MaxToolCallsExceededError,
    MixedToolCallsError,
    TurnError,
)
from ..events import EventBus
from ..llm.backend import ModelBackend
from ..personas import Persona, PersonaRegistry, tool_schema_name
from ..tools.base_tool import ToolExecutor
from ..types.event_types import Event, EventType
from ..types.llm_types import AssistantMessage, Completion, ToolCall

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


@dataclass
class SessionCallbacks:
    """Observer hooks. All are optional and called synchronously.

    `on_reminder` may return a replacement reminder text (or None to skip
    it). `on_parse_response` receives the assistant message whenever it
    carries decision tool calls.
    """

    on_chain_of_thought: Optional[Callable[[str], Any]] = None
    on_response: Optional[Callable[[Completion], Any]] = None
    on_tool_execution: Optional[Callable[[dict, dict], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None
    on_content_display: Optional[Callable[[str], Any]] = None
    on_message_push: Optional[Callable[[dict], Any]] = None
    on_reminder: Optional[Callable[[Optional[str]], Optional[str]]] = None
    on_parse_response: Optional[Callable[[AssistantMessage], Any]] = None


class ConversationSession:
    def __init__(
        self,
        settings: Settings,
        personas: PersonaRegistry,
        backend: ModelBackend,
        tool_executor: ToolExecutor | None = None,
        tools: list[dict[str, Any]] | None = None,
        event_bus: EventBus | None = None,
        callbacks: SessionCallbacks | None = None,
        session_id: str | None = None,
    ):
        self.settings = settings
        self.personas = personas
        self.backend = backend
        self.tool_executor = tool_executor
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.callbacks = callbacks or SessionCallbacks()
        self.id = session_id or f"session_{uuid4().hex[:8]}"

        self.role: Optional[str] = None
        self.persona: Optional[Persona] = None
        self.messages: list[dict[str, Any]] = []
        self.all_tools: list[dict[str, Any]] = list(tools or [])
        self.tools: list[dict[str, Any]] = list(self.all_tools)

        self.tool_call_count = 0
        self.max_tool_calls = settings.max_tool_calls
        self.last_api_call: dict[str, Any] = {
            "request": None,
            "response": None,
            "timestamp": None,
        }

        self.tier: ModelTier = ModelTier.BASE
        self.tier_settings: TierSettings = self._resolve_tier(ModelTier.BASE)

    # Persona, tools and model tier ===========================================

    def set_persona(self, role: str) -> None:
        """Apply the persona for `role`.

        Replaces the system message, re-filters the visible tools and
        switches to the persona's model tier.

        Raises:
            UnknownPersonaError: if `role` is not registered
        """
        persona = self.personas.resolve(role)
        self.role = role
        self.persona = persona

        self.messages = [m for m in self.messages if m.get("role") != "system"]
        self.messages.insert(0, {"role": "system", "content": persona.system_message})

        self._apply_tool_filtering()
        self._switch_tier(persona.level)
        logger.debug(
            f"Session {self.id} now '{role}' with {len(self.tools)}/{len(self.all_tools)} tools"
        )

    def set_tools(self, tools: list[dict[str, Any]]) -> None:
        self.all_tools = list(tools)
        self._apply_tool_filtering()

    def _apply_tool_filtering(self) -> None:
        if self.persona is None:
            self.tools = list(self.all_tools)
            return
        visible = [
            t for t in self.all_tools if self.persona.is_tool_included(tool_schema_name(t))
        ]
        self.tools = visible + list(self.persona.parsing_tools)

    def _resolve_tier(self, tier: ModelTier) -> TierSettings:
        tier_settings = self.settings.get_tier(tier)
        if tier_settings is not None:
            return tier_settings
        base = self.settings.get_tier(ModelTier.BASE)
        if base is None:
            raise ConfigurationError("No model configured for the base tier")
        return base

    def _switch_tier(self, tier: ModelTier) -> None:
        previous_model = self.tier_settings.model
        if self.settings.get_tier(tier) is None and tier != ModelTier.BASE:
            logger.warning(
                f"Model tier '{tier.value}' is not configured for role '{self.role}', "
                "falling back to base"
            )
            tier = ModelTier.BASE
        self.tier_settings = self._resolve_tier(tier)
        self.tier = tier
        if self.tier_settings.model != previous_model:
            logger.info(
                f"Switched to {tier.value} model ({self.tier_settings.model}) for role '{self.role}'"
            )

    # History =================================================================

    def add_user_message(self, text: str) -> None:
        self._push_message({"role": "user", "content": text})

    def add_message(self, message: dict[str, Any]) -> None:
        self._push_message(dict(message))

    def clear_conversation(self) -> None:
        self.messages = []
        self._ensure_system_message()

    def load_history(self, messages: list[dict[str, Any]]) -> None:
        """Replace the conversation with `messages`, keeping one system message.

        The persona's system message wins over any carried in `messages`;
        without a persona the first incoming system message is kept.
        """
        incoming = [dict(m) for m in messages]
        system = None
        if self.persona is not None:
            system = {"role": "system", "content": self.persona.system_message}
        else:
            system = next((m for m in incoming if m.get("role") == "system"), None)

        history = [m for m in incoming if m.get("role") != "system"]
        self.messages = ([system] if system else []) + history

    def _ensure_system_message(self) -> None:
        if self.persona is None:
            return
        if self.messages and self.messages[0].get("role") == "system":
            return
        self.messages.insert(0, {"role": "system", "content": self.persona.system_message})

    def _push_message(self, message: dict[str, Any]) -> None:
        self.messages.append(message)
        if self.callbacks.on_message_push:
            self.callbacks.on_message_push(message)

    # Turns ===================================================================

    async def send_user_message(self, text: str, raise_errors: bool = False) -> Optional[str]:
        """Append a user message and run the tool-calling loop.

        Returns:
            The final assistant content, or None if the turn failed and
            `raise_errors` is False. Failures are always reported through
            the error hook and an APPLICATION_ERROR event.
        """
        try:
            self._push_message({"role": "user", "content": text})
            return await self._process_message()
        except Exception as e:
            await self._report_error(e)
            if raise_errors:
                raise
            return None

    async def send_message(self, raise_errors: bool = False) -> Optional[str]:
        """Run the tool-calling loop over the existing history."""
        try:
            return await self._process_message()
        except Exception as e:
            await self._report_error(e)
            if raise_errors:
                raise
            return None

    async def _process_message(self) -> str:
        self.tool_call_count = 0
        self._ensure_system_message()

        while True:
            completion = await self._make_api_call()
            message = await self._strip_reasoning(completion.message)

            decision_names = set(self.persona.parsing_tool_names) if self.persona else set()
            decision_calls = [c for c in message.tool_calls if c.function.name in decision_names]
            action_calls = [c for c in message.tool_calls if c.function.name not in decision_names]

            if decision_calls and action_calls:
                raise MixedToolCallsError()

            if not action_calls:
                return await self._finalize(completion, message, decision_calls)

            if self.tool_call_count + len(action_calls) > self.max_tool_calls:
                raise MaxToolCallsExceededError(self.max_tool_calls)

            if message.content and self.callbacks.on_content_display:
                self.callbacks.on_content_display(message.content)

            self._push_message(message.to_history_dict())
            for tool_call in action_calls:
                await self._execute_tool_call(tool_call)

            self._inject_reminder()

    async def _strip_reasoning(self, message: AssistantMessage) -> AssistantMessage:
        if not message.reasoning_content:
            return message
        await self.event_bus.publish(
            Event(type=EventType.ASSISTANT_REASONING, content=message.reasoning_content),
            self.id,
        )
        if self.callbacks.on_chain_of_thought:
            self.callbacks.on_chain_of_thought(message.reasoning_content)
        return message.model_copy(update={"reasoning_content": None})

    async def _finalize(
        self,
        completion: Completion,
        message: AssistantMessage,
        decision_calls: list[ToolCall],
    ) -> str:
        if decision_calls:
            if self.callbacks.on_parse_response is None:
                raise DecisionHandlerMissingError()
            self.callbacks.on_parse_response(message)

        content = message.content or ""
        # Decision calls are never answered, so only the text is kept
        self._push_message({"role": "assistant", "content": content})

        await self.event_bus.publish(
            Event(
                type=EventType.ASSISTANT_MESSAGE,
                content=content,
                metadata={
                    "role": self.role,
                    "decisions": [c.function.name for c in decision_calls],
                },
            ),
            self.id,
        )
        if self.callbacks.on_response:
            self.callbacks.on_response(completion)
        return content

    async def _execute_tool_call(self, tool_call: ToolCall) -> None:
        if self.tool_executor is None:
            raise TurnError("No tool executor configured for this session")

        self.tool_call_count += 1
        call = tool_call.to_dict()
        await self.event_bus.publish(
            Event(
                type=EventType.TOOL_CALL,
                content=f"{tool_call.function.name}({tool_call.function.arguments})",
                metadata={"call_id": tool_call.id, "name": tool_call.function.name},
            ),
            self.id,
        )

        try:
            result = dict(await self.tool_executor(call))
            result.setdefault("role", "tool")
            result.setdefault("tool_call_id", tool_call.id)
            logger.debug(f"Tool call completed: {tool_call.function.name}")
        except Exception as e:
            logger.warning(f"Tool {tool_call.function.name} failed: {e}")
            result = {"role": "tool", "tool_call_id": tool_call.id, "content": f"Error: {e}"}

        self._push_message(result)
        await self.event_bus.publish(
            Event(
                type=EventType.TOOL_RESULT,
                content=str(result.get("content")),
                metadata={"call_id": tool_call.id, "name": tool_call.function.name},
            ),
            self.id,
        )
        if self.callbacks.on_tool_execution:
            self.callbacks.on_tool_execution(call, result)

    def _inject_reminder(self) -> None:
        if self.persona is None:
            return
        reminder = self.persona.reminder
        if self.callbacks.on_reminder:
            reminder = self.callbacks.on_reminder(reminder)
        if reminder:
            self._push_message({"role": "user", "content": reminder})

    def _request_tools(self) -> list[dict[str, Any]]:
        # `parsing_only` is a local flag, not part of the function schema
        return [{k: v for k, v in t.items() if k != "parsing_only"} for t in self.tools]

    async def _make_api_call(self) -> Completion:
        self.messages = sort_messages_for_tool_calls(self.messages)

        request: dict[str, Any] = {
            "model": self.tier_settings.model,
            "messages": copy.deepcopy(self.messages),
            "max_completion_tokens": self.settings.get_max_tokens(self.tier_settings.model),
        }
        tools = self._request_tools()
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
            forced = self.persona.parsing_only_tools if self.persona else []
            if len(forced) == 1:
                request["tool_choice"] = {
                    "type": "function",
                    "function": {"name": tool_schema_name(forced[0])},
                }
            elif len(forced) > 1:
                logger.warning(
                    f"Multiple parsing-only tools for role {self.role}, cannot force tool choice"
                )

        self.last_api_call = {
            "request": copy.deepcopy(request),
            "response": None,
            "timestamp": datetime.now().isoformat(),
        }
        completion = await self.backend.complete(request, self.tier_settings)
        self.last_api_call["response"] = completion.to_raw()
        return completion

    async def _report_error(self, error: Exception) -> None:
        logger.error(f"Session {self.id} ({self.role}) turn failed: {error}")
        await self.event_bus.publish(
            Event(
                type=EventType.APPLICATION_ERROR,
                content=str(error),
                metadata={"error_type": type(error).__name__, "role": self.role},
            ),
            self.id,
        )
        if self.callbacks.on_error:
            self.callbacks.on_error(error)

    # Accessors ===============================================================

    def get_messages(self) -> list[dict[str, Any]]:
        return [dict(m) for m in self.messages]

    def get_model(self) -> str:
        return self.tier_settings.model

    def get_visible_tools(self) -> list[dict[str, Any]]:
        return list(self.tools)

    def get_filtered_tool_count(self) -> int:
        return len(self.tools)

    def get_total_tool_count(self) -> int:
        return len(self.all_tools)

    def get_tool_call_count(self) -> int:
        return self.tool_call_count

    def get_max_tool_calls(self) -> int:
        return self.max_tool_calls

    def get_last_api_call(self) -> dict[str, Any]:
        return self.last_api_call
