# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Shared fixtures: a scripted model backend, settings, personas, tools and workflow files."""
import copy
import json
import itertools
import textwrap

import pytest

from src.config import ModelTier, Settings, TierSettings
from src.events import EventBus
from src.personas import PersonaRegistry
from src.types.llm_types import AssistantMessage, Completion, ToolCall, ToolCallFunction

_call_ids = itertools.count(1)


class FakeBackend:
    """Returns queued completions in order and records every request."""

    def __init__(self):
        self.responses = []
        self.requests = []
        self.tiers = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def complete(self, request, tier):
        self.requests.append(copy.deepcopy(request))
        self.tiers.append(tier)
        if not self.responses:
            raise RuntimeError("No scripted completion left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response


def make_tool_call(name, arguments=None, call_id=None):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments or {})
    return ToolCall(
        id=call_id or f"call_{next(_call_ids)}",
        function=ToolCallFunction(name=name, arguments=arguments),
    )


def make_completion(content=None, tool_calls=(), reasoning=None, model="base-model"):
    return Completion(
        id="cmpl-test",
        model=model,
        message=AssistantMessage(
            content=content, tool_calls=list(tool_calls), reasoning_content=reasoning
        ),
        finish_reason="tool_calls" if tool_calls else "stop",
    )


def function_schema(name, properties=None, parsing_only=False):
    schema = {
        "type": "function",
        "function": {
            "name": name,
            "description": f"The {name} tool",
            "parameters": {"type": "object", "properties": properties or {}},
        },
    }
    if parsing_only:
        schema["parsing_only"] = True
    return schema


PERSONAS = {
    "coder": {
        "system_message": "You are a coder.",
        "excluded_tools": ["*_file"],
        "reminder": "Stay focused on the task.",
    },
    "reviewer": {
        "system_message": "You are a reviewer.",
        "level": "smart",
        "parsing_tools": [
            function_schema(
                "review_decision", {"approved": {"type": "boolean"}}, parsing_only=True
            )
        ],
    },
    "copywriter": {
        "system_message": "You are a copywriter.",
        "parsing_tools": [
            function_schema("copywriter_decision", {"approved": {"type": "boolean"}})
        ],
    },
    "chief_editor": {
        "system_message": "You are the chief editor.",
        "level": "fast",
    },
    "customer": {
        "system_message": "You are a customer.",
        "included_tools": [],
    },
}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        tiers={
            ModelTier.BASE: TierSettings(model="base-model"),
            ModelTier.SMART: TierSettings(model="smart-model", base_url="http://smart.local/v1"),
        },
        max_tool_calls=5,
        workdir=tmp_path,
    )


@pytest.fixture
def personas():
    return PersonaRegistry.from_dict(copy.deepcopy(PERSONAS))


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def tools():
    return [
        function_schema("read_file"),
        function_schema("write_file"),
        function_schema("execute_terminal"),
        function_schema("calculate"),
    ]


@pytest.fixture
def completion():
    return make_completion


@pytest.fixture
def tool_call():
    return make_tool_call


@pytest.fixture
def recording_executor():
    """A tool executor that answers every call with `ran <name>`."""
    calls = []

    async def executor(call):
        calls.append(call)
        return {
            "role": "tool",
            "tool_call_id": call["id"],
            "content": f"ran {call['function']['name']}",
        }

    executor.calls = calls
    return executor


def make_workflow(name="review_flow", states=None, **fields):
    """A valid workflow document: the copywriter drafts, the reviewer decides."""
    data = {
        "workflow_name": name,
        "description": "Draft then review",
        "input": {"name": "draft", "type": "string", "description": "The draft"},
        "output": {"name": "final", "type": "string", "description": "The result"},
        "contexts": [{"name": "main"}],
        "agents": [
            {"agent_role": "copywriter", "context": "main", "role": "assistant"},
            {"agent_role": "reviewer", "context": "main", "role": "assistant"},
        ],
        "states": states
        or [
            {
                "name": "start",
                "agent": "copywriter",
                "input": "common_data.draft",
                "transition": [{"target": "review", "condition": "true"}],
            },
            {
                "name": "review",
                "agent": "reviewer",
                "input": "Review: {{common_data.draft}}",
                "transition": [
                    {
                        "target": "stop",
                        "condition": "function.review_decision.arguments.approved === true",
                    }
                ],
            },
        ],
    }
    data.update(fields)
    return data


@pytest.fixture
def workflow_data():
    return make_workflow


@pytest.fixture
def write_workflow(tmp_path):
    """Writes `<name>.json` (and optionally `<name>/script.py`) to a workflows dir."""
    directory = tmp_path / "workflows"
    directory.mkdir()

    def write(definition, script=None, filename=None):
        stem = filename or definition["workflow_name"]
        path = directory / f"{stem}.json"
        path.write_text(json.dumps(definition))
        if script is not None:
            (directory / stem).mkdir(exist_ok=True)
            (directory / stem / "script.py").write_text(textwrap.dedent(script))
        return path

    write.directory = directory
    return write
