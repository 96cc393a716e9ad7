# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Provider-neutral shapes for chat completions.

History messages themselves stay plain OpenAI-style dicts
(``{"role": ..., "content": ...}``) so that they can be shared between
sessions, contexts and workflow scripts without conversion.
"""

import json

from typing import Any, Optional
from pydantic import BaseModel, Field


class ToolCallFunction(BaseModel):
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict:
        """Decode the JSON argument string, raising ValueError if it is not an object."""
        args = json.loads(self.arguments or "{}")
        if not isinstance(args, dict):
            raise ValueError(f"Tool arguments for {self.name} are not a JSON object")
        return args


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    type: str = "function"
    function: ToolCallFunction

    def to_dict(self) -> dict:
        return self.model_dump()


class AssistantMessage(BaseModel):
    """The message part of a completion."""

    role: str = "assistant"
    content: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    reasoning_content: Optional[str] = None

    def to_history_dict(self) -> dict:
        """The form stored in conversation history (never includes reasoning)."""
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return message


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class Completion(BaseModel):
    """A completion response from a model backend."""

    id: str = ""
    model: str = ""
    message: AssistantMessage
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    raw_response: Optional[dict] = Field(default=None, exclude=True)

    def to_raw(self) -> dict:
        """The OpenAI-shaped response dict, as seen by workflow scripts."""
        if self.raw_response is not None:
            return self.raw_response
        message = self.message.to_history_dict()
        if self.message.reasoning_content:
            message["reasoning_content"] = self.message.reasoning_content
        return {
            "id": self.id,
            "model": self.model,
            "choices": [
                {"index": 0, "message": message, "finish_reason": self.finish_reason}
            ],
            "usage": self.usage.model_dump() if self.usage else None,
        }
