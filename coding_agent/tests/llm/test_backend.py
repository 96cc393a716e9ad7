# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import pytest

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

from dotenv import load_dotenv

from src.config import ModelTier, TierSettings, load_settings
from src.llm import OpenAIBackend


def openai_response(content="hi", tool_calls=None, usage=(10, 5, 15), reasoning=None):
    message = SimpleNamespace(
        content=content,
        tool_calls=tool_calls,
        model_extra={"reasoning_content": reasoning} if reasoning else {},
    )
    return SimpleNamespace(
        id="chatcmpl-1",
        model="gpt-test",
        choices=[SimpleNamespace(message=message, finish_reason="stop")],
        usage=SimpleNamespace(
            prompt_tokens=usage[0], completion_tokens=usage[1], total_tokens=usage[2]
        )
        if usage
        else None,
        model_dump=lambda: {"id": "chatcmpl-1", "choices": []},
    )


def mock_client(response):
    client = Mock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


class TestOpenAIBackend:
    @pytest.mark.asyncio
    async def test_complete_converts_response(self):
        backend = OpenAIBackend()
        tool_call = SimpleNamespace(
            id="call_1",
            type="function",
            function=SimpleNamespace(name="calculate", arguments='{"expression": "1+1"}'),
        )
        client = mock_client(openai_response(content=None, tool_calls=[tool_call], reasoning="hmm"))
        tier = TierSettings(model="gpt-test")

        with patch.object(backend, "_client_for", return_value=client):
            completion = await backend.complete({"model": "gpt-test", "messages": []}, tier)

        client.chat.completions.create.assert_awaited_once_with(model="gpt-test", messages=[])
        assert completion.message.content is None
        assert completion.message.reasoning_content == "hmm"
        assert completion.message.tool_calls[0].function.parsed_arguments() == {"expression": "1+1"}
        assert completion.to_raw() == {"id": "chatcmpl-1", "choices": []}
        assert backend.call_count == 1

    @pytest.mark.asyncio
    async def test_usage_is_metered_per_model(self):
        backend = OpenAIBackend()
        client = mock_client(openai_response())

        with patch.object(backend, "_client_for", return_value=client):
            await backend.complete({"model": "gpt-test"}, TierSettings(model="gpt-test"))
            await backend.complete({"model": "gpt-test"}, TierSettings(model="gpt-test"))

        assert backend.token_meter["gpt-test"].total_tokens == 30
        assert backend.get_total_usage().prompt_tokens == 20

    @pytest.mark.asyncio
    async def test_missing_usage(self):
        backend = OpenAIBackend()
        client = mock_client(openai_response(usage=None))

        with patch.object(backend, "_client_for", return_value=client):
            completion = await backend.complete({}, TierSettings(model="gpt-test"))

        assert completion.usage is None
        assert backend.get_total_usage().total_tokens == 0

    def test_clients_are_shared_per_endpoint(self):
        backend = OpenAIBackend()
        a = backend._client_for(TierSettings(model="a", api_key="k"))
        b = backend._client_for(TierSettings(model="b", api_key="k"))
        c = backend._client_for(TierSettings(model="c", api_key="k", base_url="http://other/v1"))
        assert a is b
        assert a is not c

    def test_completion_to_raw_without_provider_response(self, completion, tool_call):
        raw = completion("text", tool_calls=[tool_call("calculate", call_id="x")]).to_raw()
        message = raw["choices"][0]["message"]
        assert message["content"] == "text"
        assert message["tool_calls"][0]["id"] == "x"
        assert raw["choices"][0]["finish_reason"] == "tool_calls"


@pytest.mark.uses_llm
@pytest.mark.asyncio
async def test_live_completion():
    """Round trip against the endpoint configured through CODING_AGENT_BASE_*."""
    load_dotenv()
    tier = load_settings().tiers[ModelTier.BASE]
    backend = OpenAIBackend()

    completion = await backend.complete(
        {
            "model": tier.model,
            "messages": [{"role": "user", "content": "Reply with the single word: pong"}],
            "max_completion_tokens": 256,
        },
        tier,
    )

    assert "pong" in (completion.message.content or "").lower()
    assert backend.call_count == 1
