# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for workflow execution with a scripted model backend."""
import pytest

from src.errors import WorkflowValidationError
from src.types.event_types import EventType
from src.workflow import WorkflowStateMachine


@pytest.fixture
def machine(settings, personas, backend, tools, recording_executor, event_bus):
    return WorkflowStateMachine(
        settings,
        personas,
        backend,
        tool_executor=recording_executor,
        tools=tools,
        event_bus=event_bus,
    )


@pytest.fixture
def load(machine, write_workflow):
    """Write a workflow (and optional script) and register it with the machine."""

    def loader(definition, script=None):
        machine.load_workflow(write_workflow(definition, script=script))
        return definition["workflow_name"]

    return loader


def approve(tool_call, approved=True, feedback="fine"):
    return [tool_call("review_decision", {"approved": approved, "feedback": feedback})]


class TestLoading:
    def test_load_directory_skips_invalid_and_duplicates(self, machine, write_workflow, workflow_data):
        write_workflow(workflow_data())
        write_workflow(workflow_data(), filename="zz_duplicate")
        write_workflow(workflow_data(name="broken", contexts=[]))
        (write_workflow.directory / "notes.txt").write_text("ignored")

        assert machine.load_workflow_configs(write_workflow.directory) == 1
        assert machine.get_available_workflows() == ["review_flow"]
        assert machine.get_workflow_metadata("review_flow")["state_count"] == 2
        assert machine.get_workflow_metadata("missing") is None

    def test_missing_directory(self, machine, tmp_path):
        assert machine.load_workflow_configs(tmp_path / "absent") == 0

    def test_load_single_workflow_errors(self, machine, tmp_path):
        with pytest.raises(WorkflowValidationError):
            machine.load_workflow(tmp_path / "absent.json")

    def test_load_single_workflow_rejects_duplicate_names(
        self, machine, write_workflow, workflow_data
    ):
        machine.load_workflow(write_workflow(workflow_data()))
        changed = workflow_data(description="Second version")
        duplicate = write_workflow(changed, filename="zz_duplicate")

        with pytest.raises(WorkflowValidationError, match="Duplicate workflow name 'review_flow'"):
            machine.load_workflow(duplicate)
        assert machine.get_workflow_metadata("review_flow")["description"] == "Draft then review"

        machine.load_workflow(duplicate, replace=True)
        assert machine.get_workflow_metadata("review_flow")["description"] == "Second version"


class TestExecution:
    @pytest.mark.asyncio
    async def test_draft_then_review(
        self, machine, load, workflow_data, backend, completion, tool_call, event_bus
    ):
        data = workflow_data()
        data["states"].append({"name": "stop", "input": "{{common_data.draft}} (approved)"})
        name = load(data)
        backend.queue(
            completion("Polished draft"),
            completion("Approved", tool_calls=approve(tool_call)),
        )

        result = await machine.execute_workflow(name, "draft text")

        assert result["success"] is True
        assert result["states_visited"] == ["start", "review"]
        assert result["final_state"] == "stop"
        assert result["output"] == "draft text (approved)"
        assert result["common_data"] == {"draft": "draft text"}
        assert result["execution_time"] >= 0
        assert "error" not in result

        # Both agents share one context, so the reviewer sees the drafting exchange
        assert backend.requests[0]["messages"][-1] == {"role": "user", "content": "draft text"}
        assert backend.requests[1]["model"] == "smart-model"
        assert [m["content"] for m in backend.requests[1]["messages"][1:]] == [
            "draft text",
            "Polished draft",
            "Review: draft text",
        ]

        assert machine.last_decision["function"]["arguments"]["approved"] is True
        assert [c["function"]["name"] for c in machine.get_tool_calls("reviewer")] == [
            "review_decision"
        ]
        assert machine.get_tool_calls("copywriter") == []
        assert machine.get_tool_calls("ghost") == []
        assert [e.content for e in event_bus.get_events_by_type(EventType.STATE_ENTERED)] == [
            "start",
            "review",
        ]
        transitions = event_bus.get_events_by_type(EventType.STATE_TRANSITION)
        assert [e.metadata["to"] for e in transitions] == ["review", "stop"]
        assert len(event_bus.get_events_by_type(EventType.WORKFLOW_STARTED)) == 1
        assert len(event_bus.get_events_by_type(EventType.WORKFLOW_COMPLETED)) == 1

    @pytest.mark.asyncio
    async def test_rejection_loops_back(
        self, machine, load, workflow_data, backend, completion, tool_call
    ):
        data = workflow_data(variables={"rounds": 0})
        data["states"][1]["transition"] = [
            {
                "target": "start",
                "condition": "function.review_decision.arguments.approved === false",
            },
            {"target": "stop", "condition": "true"},
        ]
        name = load(data)
        backend.queue(
            completion("v1"),
            completion("No", tool_calls=approve(tool_call, approved=False)),
            completion("v2"),
            completion("Yes", tool_calls=approve(tool_call)),
        )

        result = await machine.execute_workflow(name, "draft")

        assert result["states_visited"] == ["start", "review", "start", "review"]
        # Without a stop input, the output is read from common_data
        assert result["output"] is None

    @pytest.mark.asyncio
    async def test_common_data_is_reset_between_runs(self, machine, load, workflow_data):
        name = load(
            workflow_data(
                variables={"notes": {"count": 0}},
                states=[
                    {
                        "name": "start",
                        "pre_handler": "common_data.previous = common_data.notes.count; "
                        "common_data.notes.count = 5; common_data.final = common_data.draft",
                    }
                ],
            )
        )

        first = await machine.execute_workflow(name, "one")
        second = await machine.execute_workflow(name, "two")

        assert first["common_data"]["previous"] == 0
        assert second["common_data"]["previous"] == 0
        assert second["output"] == "two"
        assert second["common_data"]["draft"] == "two"
        definition = machine.workflow_configs[name].definition
        assert definition.variables == {"notes": {"count": 0}}

    @pytest.mark.asyncio
    async def test_agents_and_contexts_are_rebuilt(
        self, machine, load, workflow_data, backend, completion, tool_call
    ):
        name = load(workflow_data())
        for _ in range(2):
            backend.queue(completion("draft"), completion("ok", tool_calls=approve(tool_call)))

        await machine.execute_workflow(name, "first")
        first_agent = machine.get_agent("copywriter")
        await machine.execute_workflow(name, "second")

        assert machine.get_agent("copywriter") is not first_agent
        assert len(machine.get_context("main").get_messages()) == 4
        assert machine.get_stats() == {
            "loaded_workflows": 1,
            "active_contexts": 1,
            "active_agents": 2,
            "common_data_keys": 1,
        }

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, machine, event_bus):
        result = await machine.execute_workflow("nope", "x")

        assert result == {
            "success": False,
            "workflow_name": "nope",
            "error": "Workflow not found: nope",
            "execution_time": result["execution_time"],
            "states_visited": [],
        }
        assert event_bus.get_events_by_type(EventType.WORKFLOW_FAILED)[0].content == result["error"]

    @pytest.mark.asyncio
    async def test_unknown_state(self, machine, load, workflow_data, backend, completion):
        data = workflow_data()
        data["states"][0]["transition"] = [{"target": "nowhere", "condition": "true"}]
        name = load(data)
        backend.queue(completion("draft"))

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is False
        assert result["error"] == "Unknown state: nowhere"
        assert result["states_visited"] == ["start"]

    @pytest.mark.asyncio
    async def test_state_without_agent_or_handlers(self, machine, load, workflow_data):
        name = load(
            workflow_data(
                states=[{"name": "start", "transition": [{"target": "stop", "condition": "true"}]}]
            )
        )

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is False
        assert "must have an agent defined" in result["error"]

    @pytest.mark.asyncio
    async def test_agent_failure_fails_the_run(self, machine, load, workflow_data, backend):
        name = load(workflow_data())
        backend.queue(RuntimeError("service unavailable"))

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is False
        assert result["error"] == "service unavailable"
        assert result["states_visited"] == ["start"]

    @pytest.mark.asyncio
    async def test_no_matching_rule_stops(self, machine, load, workflow_data, backend, completion):
        name = load(workflow_data())
        backend.queue(completion("draft"), completion("Just a comment"))

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is True
        assert result["states_visited"] == ["start", "review"]


class TestTransitions:
    @pytest.mark.asyncio
    async def test_before_hook_runs_before_each_condition(self, machine, load, workflow_data):
        name = load(
            workflow_data(
                states=[
                    {
                        "name": "start",
                        "pre_handler": "common_data.checked = false",
                        "transition": [
                            {
                                "target": "unreachable",
                                "condition": "common_data.checked",
                                "before": "common_data.first_before = true",
                            },
                            {
                                "target": "second",
                                "condition": "common_data.checked",
                                "before": "common_data.checked = true",
                            },
                        ],
                    },
                    {"name": "second", "pre_handler": "common_data.final = 'reached'"},
                ]
            )
        )

        result = await machine.execute_workflow(name, "x")

        assert result["states_visited"] == ["start", "second"]
        assert result["output"] == "reached"
        assert result["common_data"]["first_before"] is True

    @pytest.mark.asyncio
    async def test_condition_errors_count_as_false(self, machine, load, workflow_data):
        name = load(
            workflow_data(
                variables={"count": 1},
                states=[
                    {
                        "name": "start",
                        "pre_handler": "common_data.final = 'ok'",
                        "transition": [
                            {"target": "broken", "condition": "common_data.count < 'many'"},
                            {"target": "broken", "condition": "no_such_function"},
                            {"target": "broken", "condition": "common_data.count ==="},
                            {"target": "next", "condition": "common_data.count === 1"},
                        ],
                    },
                    {"name": "next", "pre_handler": "common_data.visited_next = true"},
                ]
            )
        )

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is True
        assert result["states_visited"] == ["start", "next"]

    @pytest.mark.asyncio
    async def test_decision_condition_without_decision(
        self, machine, load, workflow_data, backend, completion
    ):
        data = workflow_data()
        data["states"][1]["transition"] = [
            {"target": "start", "condition": "function.review_decision.arguments.approved === false"},
        ]
        name = load(data)
        backend.queue(completion("draft"), completion("No tool call at all"))

        result = await machine.execute_workflow(name, "x")

        assert result["states_visited"] == ["start", "review"]


class TestScriptHandlers:
    SCRIPT = """
    def response_content(ctx):
        return ctx.last_response["choices"][0]["message"]["content"]

    def store_draft(ctx):
        ctx.common_data["final"] = ctx.response_content()
        ctx.common_data["rounds"] = ctx.common_data.get("rounds", 0) + 1

    def choose_next(ctx):
        return "stop" if ctx.common_data["rounds"] >= 2 else "start"

    def bad_transition(ctx):
        return 42

    def add_brief(ctx):
        ctx.workflow_contexts["main"].add_message(
            {"role": "user", "content": "Brief: " + ctx.input}
        )

    def is_long(ctx):
        return len(ctx.common_data["final"]) > 5
    """

    @pytest.mark.asyncio
    async def test_post_and_transition_handlers(self, machine, load, workflow_data, backend, completion):
        name = load(
            workflow_data(
                states=[
                    {
                        "name": "start",
                        "agent": "copywriter",
                        "input": "Write round {{common_data.rounds}}",
                        "post_handler": "store_draft",
                        "transition_handler": "choose_next",
                    }
                ]
            ),
            script=self.SCRIPT,
        )
        backend.queue(completion("first"), completion("second"))

        result = await machine.execute_workflow(name, "x")

        assert result["states_visited"] == ["start", "start"]
        assert result["output"] == "second"
        # The placeholder is kept until `rounds` exists
        assert backend.requests[0]["messages"][-1]["content"] == "Write round {{common_data.rounds}}"
        assert backend.requests[1]["messages"][-1]["content"] == "Write round 1"

    @pytest.mark.asyncio
    async def test_pre_handler_feeds_context_call(
        self, machine, load, workflow_data, backend, completion
    ):
        name = load(
            workflow_data(
                states=[
                    {
                        "name": "start",
                        "agent": "copywriter",
                        "pre_handler": "add_brief",
                        "post_handler": "store_draft",
                        "transition": [{"target": "stop", "condition": "is_long"}],
                    }
                ]
            ),
            script=self.SCRIPT,
        )
        backend.queue(completion("A long article"))

        result = await machine.execute_workflow(name, "budget news")

        assert backend.requests[0]["messages"][-1] == {"role": "user", "content": "Brief: budget news"}
        assert result["output"] == "A long article"
        # A context call does not write the reply into the context
        assert len(machine.get_context("main").get_messages()) == 1

    @pytest.mark.asyncio
    async def test_non_string_transition_fails(self, machine, load, workflow_data):
        name = load(
            workflow_data(states=[{"name": "start", "transition_handler": "bad_transition"}]),
            script=self.SCRIPT,
        )

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is False
        assert "expected a state name" in result["error"]

    @pytest.mark.asyncio
    async def test_missing_handler_fails(self, machine, load, workflow_data):
        name = load(
            workflow_data(states=[{"name": "start", "pre_handler": "not_defined"}]),
            script=self.SCRIPT,
        )

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is False
        assert "not_defined" in result["error"]

    @pytest.mark.asyncio
    async def test_handler_without_script_module_fails(self, machine, load, workflow_data):
        name = load(workflow_data(states=[{"name": "start", "post_handler": "store_draft"}]))

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is False
        assert "No script module" in result["error"]


class TestLegacyActions:
    @pytest.mark.asyncio
    async def test_add_then_context_call(self, machine, load, workflow_data, backend, completion):
        name = load(
            workflow_data(
                agents=[{"agent_role": "customer", "context": "main", "role": "user"}],
                states=[
                    {
                        "name": "start",
                        "agent": "customer",
                        "input": "Welcome to {{common_data.draft}}",
                        "action": {
                            "function": "addUserMessage",
                            "script": "common_data.final = common_data.draft",
                        },
                        "transition": [{"target": "ask", "condition": "true"}],
                    },
                    {
                        "name": "ask",
                        "agent": "customer",
                        "transition": [{"target": "stop", "condition": "true"}],
                    },
                ],
            )
        )
        backend.queue(completion("Some bread please"))

        result = await machine.execute_workflow(name, "the bakery")

        assert result["output"] == "the bakery"
        # Staged as canonical assistant text, read by the customer as user input
        assert machine.get_context("main").get_messages() == [
            {"role": "assistant", "content": "Welcome to the bakery"}
        ]
        assert backend.requests[0]["messages"][1:] == [
            {"role": "user", "content": "Welcome to the bakery"}
        ]

    @pytest.mark.asyncio
    async def test_clear_conversation(self, machine, load, workflow_data):
        name = load(
            workflow_data(
                states=[
                    {
                        "name": "start",
                        "agent": "copywriter",
                        "action": {"function": "clearConversation"},
                    }
                ]
            )
        )

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is True
        assert result["states_visited"] == ["start"]

    @pytest.mark.asyncio
    async def test_add_without_input_fails(self, machine, load, workflow_data):
        name = load(
            workflow_data(
                states=[
                    {"name": "start", "agent": "copywriter", "action": {"function": "add_user_message"}}
                ]
            )
        )

        result = await machine.execute_workflow(name, "x")

        assert result["success"] is False
        assert "must define input" in result["error"]

    @pytest.mark.asyncio
    async def test_unknown_function_fails(self, machine, load, workflow_data):
        name = load(
            workflow_data(
                states=[{"name": "start", "agent": "copywriter", "action": {"function": "dance"}}]
            )
        )

        result = await machine.execute_workflow(name, "x")

        assert result["error"] == "Unknown agent function: dance"
