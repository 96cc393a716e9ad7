# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Exception hierarchy for the conversation engine and workflow state machine.

Configuration errors are raised at the call that triggered them. Turn errors
abort a single conversation turn. Tool errors are turned into tool-role
messages by the session, and expression errors are treated as a false
condition by the state machine.
"""


class AgentError(Exception):
    """Base class for all errors raised by this package."""


# Configuration ===============================================================


class ConfigurationError(AgentError):
    """A fatal error in static configuration (personas, workflows, settings)."""


class UnknownPersonaError(ConfigurationError):
    def __init__(self, role: str):
        super().__init__(f"Unknown persona role: {role}")
        self.role = role


class WorkflowNotFoundError(ConfigurationError):
    def __init__(self, name: str):
        super().__init__(f"Workflow not found: {name}")
        self.name = name


class WorkflowValidationError(ConfigurationError):
    """A workflow definition document failed validation."""


# Conversation turns ==========================================================


class TurnError(AgentError):
    """Aborts the in-flight conversation turn, leaving history intact."""


class MaxToolCallsExceededError(TurnError):
    def __init__(self, max_tool_calls: int):
        super().__init__(
            f"Maximum number of tool calls ({max_tool_calls}) exceeded. "
            "This may indicate an infinite loop or overly complex task."
        )
        self.max_tool_calls = max_tool_calls


class MixedToolCallsError(TurnError):
    def __init__(self):
        super().__init__(
            "Response contains both decision and action tool calls. This is not supported."
        )


class DecisionHandlerMissingError(TurnError):
    def __init__(self):
        super().__init__("Response contains decision tool calls but no decision handler is set")


# Tools =======================================================================


class ToolError(AgentError):
    """A single tool invocation failed; recovered by the session."""


class ToolNotFoundError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"{name} does not correspond to a registered tool")
        self.name = name


class ToolArgumentsError(ToolError):
    """The tool call arguments could not be parsed or validated."""


# Messages and expressions ====================================================


class InvalidMessageError(AgentError):
    def __init__(self, detail: str = "must have role and content"):
        super().__init__(f"Invalid message: {detail}")


class ExpressionError(AgentError):
    """An expression or inline script could not be parsed or evaluated."""


# Workflow execution ==========================================================


class WorkflowExecutionError(AgentError):
    """Fails the current workflow execution."""


class UnknownStateError(WorkflowExecutionError):
    def __init__(self, state: str):
        super().__init__(f"Unknown state: {state}")
        self.state = state


class UnknownAgentError(WorkflowExecutionError):
    def __init__(self, agent_role: str):
        super().__init__(f"Unknown agent: {agent_role}")
        self.agent_role = agent_role


class ScriptError(WorkflowExecutionError):
    """A handler could not be resolved from the workflow script module."""
