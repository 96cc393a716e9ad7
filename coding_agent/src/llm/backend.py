# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""OpenAI-compatible model backend."""

import logging

from typing import Any, Protocol
from datetime import datetime
from collections import defaultdict
from openai import AsyncOpenAI

from ..config import TierSettings
from ..types.llm_types import (
    AssistantMessage,
    Completion,
    TokenUsage,
    ToolCall,
    ToolCallFunction,
)

logger = logging.getLogger(__name__)


class ModelBackend(Protocol):
    """What a conversation session needs from a model provider.

    The request is the chat-completions payload (``model``, ``messages``,
    optional ``tools``/``tool_choice`` and ``max_completion_tokens``); the
    tier carries the endpoint and credential to send it to.
    """

    async def complete(self, request: dict[str, Any], tier: TierSettings) -> Completion: ...


class OpenAIBackend:
    """Sends chat completion requests through `AsyncOpenAI`.

    One client is kept per (endpoint, credential) pair, so sessions that
    switch tiers reuse connections.
    """

    def __init__(self):
        self._clients: dict[tuple[str, str | None], AsyncOpenAI] = {}
        self.token_meter: defaultdict[str, TokenUsage] = defaultdict(TokenUsage)
        self.call_count = 0

    def _client_for(self, tier: TierSettings) -> AsyncOpenAI:
        key = (tier.base_url, tier.api_key)
        if key not in self._clients:
            self._clients[key] = AsyncOpenAI(
                api_key=tier.api_key or "not-set",
                base_url=tier.base_url,
            )
        return self._clients[key]

    async def complete(self, request: dict[str, Any], tier: TierSettings) -> Completion:
        client = self._client_for(tier)
        start_time = datetime.now()

        response = await client.chat.completions.create(**request)

        duration = (datetime.now() - start_time).total_seconds()
        self.call_count += 1

        completion = self._to_completion(response)
        if completion.usage:
            self.token_meter[completion.model] += completion.usage
            logger.debug(
                f"{completion.model} usage: {completion.usage.total_tokens} tokens, "
                f"{completion.usage.prompt_tokens} prompt tokens, "
                f"{completion.usage.completion_tokens} completion tokens ({duration:.2f}s)"
            )
        return completion

    def get_total_usage(self) -> TokenUsage:
        usage = TokenUsage()
        for model_usage in self.token_meter.values():
            usage += model_usage
        return usage

    @staticmethod
    def _to_completion(response: Any) -> Completion:
        choice = response.choices[0]
        message = choice.message

        # Reasoning models expose chain-of-thought as a non-standard field
        extra = getattr(message, "model_extra", None) or {}
        reasoning = getattr(message, "reasoning_content", None) or extra.get(
            "reasoning_content"
        )

        tool_calls = [
            ToolCall(
                id=tc.id,
                type=tc.type or "function",
                function=ToolCallFunction(
                    name=tc.function.name,
                    arguments=tc.function.arguments or "{}",
                ),
            )
            for tc in (message.tool_calls or [])
        ]

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        else:
            logger.warning("Missing usage information from API response")

        return Completion(
            id=response.id or "",
            model=response.model or "",
            message=AssistantMessage(
                content=message.content,
                tool_calls=tool_calls,
                reasoning_content=reasoning,
            ),
            usage=usage,
            finish_reason=choice.finish_reason,
            raw_response=response.model_dump(),
        )
