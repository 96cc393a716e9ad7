# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The multi-agent workflow state machine.

A run builds fresh contexts and agents for the chosen workflow, then walks
its states from `start` until `stop`. Each state runs, in order: its
pre-handler (and legacy action script), one agent turn, its post-handler,
and finally picks the next state from its transition handler or its ordered
transition rules.
"""

import copy
import time
import logging

from uuid import uuid4
from pathlib import Path
from typing import Any, Optional

from .agent import WorkflowAgent
from .context import SharedContext
from .definition import (
    START_STATE,
    STOP_STATE,
    StateDefinition,
    WorkflowConfig,
    WorkflowDefinition,
)
from .scripts import ScriptContext, is_function_reference
from ..config import Settings
from ..errors import (
    AgentError,
    UnknownAgentError,
    UnknownStateError,
    WorkflowExecutionError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from ..events import EventBus
from ..expressions import EvaluationScope, ExpressionInterpreter
from ..llm.backend import ModelBackend
from ..personas import PersonaRegistry
from ..tools.base_tool import ToolExecutor
from ..types.event_types import Event, EventType
from ..types.workflow_types import StateRecord, WorkflowResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_SEND_FUNCTIONS = {None, "sendUserMessage", "send_message"}
_ADD_FUNCTIONS = {"addUserMessage", "add_user_message"}
_CLEAR_FUNCTIONS = {"clearConversation", "clear_conversation"}


class WorkflowStateMachine:
    def __init__(
        self,
        settings: Settings,
        personas: PersonaRegistry,
        backend: ModelBackend,
        tool_executor: ToolExecutor | None = None,
        tools: list[dict[str, Any]] | None = None,
        event_bus: EventBus | None = None,
    ):
        self.settings = settings
        self.personas = personas
        self.backend = backend
        self.tool_executor = tool_executor
        self.tools = list(tools or [])
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.id = f"workflow_{uuid4().hex[:8]}"

        self.interpreter = ExpressionInterpreter()
        self.workflow_configs: dict[str, WorkflowConfig] = {}

        # Per-run execution state, rebuilt by every execute_workflow call
        self.contexts: dict[str, SharedContext] = {}
        self.agents: dict[str, WorkflowAgent] = {}
        self.common_data: dict[str, Any] = {}
        self.history: list[StateRecord] = []
        self.last_response: Optional[str] = None
        self.last_raw_response: Optional[dict[str, Any]] = None
        self.last_decision: Optional[dict[str, Any]] = None
        self.script_context = ScriptContext(self.common_data, self.contexts, self.agents)

    # Loading =================================================================

    def load_workflow_configs(self, directory: Path | str | None = None) -> int:
        """Register every `*.json` workflow in `directory`.

        Invalid files and duplicate workflow names are skipped with a warning.

        Returns:
            The number of workflows registered by this call
        """
        directory = Path(directory) if directory is not None else self.settings.workflows_dir
        if not directory.is_dir():
            logger.debug(f"No workflows directory found at {directory}")
            return 0

        loaded = 0
        for path in sorted(directory.glob("*.json")):
            config = WorkflowConfig(path)
            try:
                config.load()
            except AgentError as e:
                logger.warning(f"Failed to load workflow from {path.name}: {e}")
                continue

            name = config.workflow_name
            if name in self.workflow_configs:
                logger.warning(f"Duplicate workflow name '{name}' in file {path.name}")
                continue
            self.workflow_configs[name] = config
            loaded += 1
            logger.debug(f"Registered workflow {name} from {path.name}")

        logger.info(f"Loaded {loaded} workflow configurations from {directory}")
        return loaded

    def load_workflow(self, path: Path | str, replace: bool = False) -> WorkflowDefinition:
        """Load one workflow file.

        Raises:
            WorkflowValidationError: if the file is missing or invalid, or a
                workflow of the same name is registered and `replace` is off
        """
        config = WorkflowConfig(path)
        definition = config.load()
        if definition.workflow_name in self.workflow_configs and not replace:
            raise WorkflowValidationError(
                f"Duplicate workflow name '{definition.workflow_name}' in {Path(path).name}"
            )
        self.workflow_configs[definition.workflow_name] = config
        logger.debug(f"Loaded workflow {definition.workflow_name}")
        return definition

    def get_available_workflows(self) -> list[str]:
        return list(self.workflow_configs)

    def get_workflow_metadata(self, name: str) -> Optional[dict[str, Any]]:
        config = self.workflow_configs.get(name)
        return config.get_metadata() if config else None

    # Execution ===============================================================

    async def execute_workflow(self, name: str, input: Any) -> dict[str, Any]:
        """Run workflow `name` to completion.

        Never raises: failures are reported in the returned dict with
        `success: False` and an `error` message.
        """
        start_time = time.monotonic()
        self.history = []
        try:
            config = self.workflow_configs.get(name)
            if config is None:
                raise WorkflowNotFoundError(name)

            logger.info(f"Starting workflow: {name}")
            await self._publish(EventType.WORKFLOW_STARTED, name, {"input": input})
            self._initialize(config, input)
            output = await self._run(config)

            result = WorkflowResult(
                success=True,
                workflow_name=name,
                execution_time=_elapsed_ms(start_time),
                states_visited=[r.state for r in self.history],
                final_state=STOP_STATE,
                output=output,
                common_data=dict(self.common_data),
            )
            logger.info(f"Workflow completed: {name}")
            await self._publish(EventType.WORKFLOW_COMPLETED, name, {"output": output})
        except Exception as e:
            logger.error(f"Workflow execution failed: {name}: {e}")
            result = WorkflowResult(
                success=False,
                workflow_name=name,
                execution_time=_elapsed_ms(start_time),
                states_visited=[r.state for r in self.history],
                error=str(e),
            )
            await self._publish(EventType.WORKFLOW_FAILED, str(e), {"workflow_name": name})
        return result.to_dict()

    def _initialize(self, config: WorkflowConfig, input: Any) -> None:
        definition = config.definition

        # Fresh objects, so nothing from a previous run can leak into this one
        self.contexts = {}
        self.agents = {}
        self.common_data = {}
        self.last_response = None
        self.last_raw_response = None
        self.last_decision = None

        for context_def in definition.contexts:
            self.contexts[context_def.name] = SharedContext(
                context_def.name,
                starting_messages=context_def.starting_messages,
                max_length=context_def.max_length,
            )

        for agent_def in definition.agents:
            self.agents[agent_def.agent_role] = WorkflowAgent(
                agent_def.agent_role,
                self.contexts[agent_def.context],
                agent_def.role,
                self.settings,
                self.personas,
                self.backend,
                tool_executor=self.tool_executor,
                tools=self.tools,
                event_bus=self.event_bus,
            )

        self.common_data[definition.input.name] = input
        self.common_data.update(copy.deepcopy(definition.variables))

        self.script_context = ScriptContext(
            common_data=self.common_data,
            workflow_contexts=self.contexts,
            agents=self.agents,
            input=input,
            module=config.script_module,
        )

    async def _run(self, config: WorkflowConfig) -> Any:
        definition = config.definition
        current = START_STATE

        while current != STOP_STATE:
            state = definition.get_state(current)
            if state is None:
                raise UnknownStateError(current)

            logger.debug(f"Executing state: {current}")
            await self._publish(EventType.STATE_ENTERED, current, {"agent": state.agent})
            record = StateRecord(state=current, agent=state.agent)
            self.history.append(record)

            record.result, handler_next = await self._execute_state(state)
            next_state = self._next_state(state, handler_next)
            record.next_state = next_state

            await self._publish(
                EventType.STATE_TRANSITION,
                f"{current} -> {next_state}",
                {"from": current, "to": next_state},
            )
            logger.debug(f"Next state: {next_state}")
            current = next_state

        stop_state = definition.get_state(STOP_STATE)
        if stop_state is not None and stop_state.input is not None:
            output = self._resolve_input(stop_state.input)
            if output is not None:
                return output
        return self.common_data.get(definition.output.name)

    async def _execute_state(self, state: StateDefinition) -> tuple[Optional[str], Optional[str]]:
        """Run one state's hooks and agent turn.

        Returns:
            The agent's response (if an agent spoke) and the next state chosen
            by the transition handler (if the state has one)
        """
        if state.pre_handler:
            self._run_hook(state.pre_handler)
        if state.action and state.action.script:
            self._run_hook(state.action.script)

        result = None
        if state.agent:
            agent = self.agents.get(state.agent)
            if agent is None:
                raise UnknownAgentError(state.agent)
            result = await self._agent_turn(agent, state)
        elif not state.has_handlers and state.action is None:
            raise WorkflowExecutionError(f"State {state.name} must have an agent defined")

        if state.post_handler:
            self._run_hook(state.post_handler)

        next_state = None
        if state.transition_handler:
            next_state = self._run_hook(state.transition_handler)
            if next_state is not None and not isinstance(next_state, str):
                raise WorkflowExecutionError(
                    f"Transition handler {state.transition_handler} returned "
                    f"{type(next_state).__name__}, expected a state name"
                )
        return result, next_state

    async def _agent_turn(self, agent: WorkflowAgent, state: StateDefinition) -> Optional[str]:
        function = state.action.function if state.action else None

        if function in _ADD_FUNCTIONS:
            if state.input is None:
                raise WorkflowExecutionError(f"State {state.name} must define input for {function}")
            agent.add_user_message(str(self._resolve_input(state.input)))
            return None
        if function in _CLEAR_FUNCTIONS:
            agent.clear_conversation()
            return None
        if function not in _SEND_FUNCTIONS:
            raise WorkflowExecutionError(f"Unknown agent function: {function}")

        if state.input is not None:
            result = await agent.send_message(self._resolve_input(state.input))
        else:
            result = await agent.make_context_call()

        self.last_response = result
        self.last_raw_response = agent.get_last_raw_response()
        self.last_decision = agent.get_last_decision()
        self.script_context.last_response = self.last_raw_response
        self.script_context.last_decision = self.last_decision
        logger.debug(
            f"Agent {agent.agent_role} completed its turn"
            f"{' with decision ' + self.last_decision['function']['name'] if self.last_decision else ''}"
        )
        return result

    def _next_state(self, state: StateDefinition, handler_next: Optional[str]) -> str:
        if state.transition_handler:
            return handler_next or STOP_STATE
        for rule in state.transition:
            if rule.before:
                self._run_hook(rule.before)
            if self._evaluate_condition(rule.condition):
                return rule.target
        return STOP_STATE

    # Scripts and expressions =================================================

    def _scope(self) -> EvaluationScope:
        return EvaluationScope(common_data=self.common_data, last_decision=self.last_decision)

    def _run_hook(self, hook: str) -> Any:
        """Run a handler: a script function name or an inline assignment script."""
        if is_function_reference(hook):
            return self.script_context.call(hook.strip())
        self.interpreter.execute(hook, self._scope())
        return None

    def _evaluate_condition(self, condition: str) -> bool:
        try:
            if is_function_reference(condition):
                result = bool(self.script_context.call(condition.strip()))
            else:
                result = self.interpreter.evaluate_condition(condition, self._scope())
        except Exception as e:
            logger.warning(f"Condition evaluation failed, treating as false: {condition}: {e}")
            return False
        logger.debug(f"Condition {condition!r} evaluated to {result}")
        return result

    def _resolve_input(self, value: Any) -> Any:
        """Turn a state `input` into the value to send.

        Templates have their `{{expr}}` placeholders substituted, strings
        starting with `common_data.` are evaluated, and anything else is
        passed through.
        """
        if not isinstance(value, str):
            return value
        if self.interpreter.is_template(value):
            return self.interpreter.render_template(value, self._scope())
        if value.startswith("common_data."):
            return self.interpreter.evaluate(value, self._scope())
        return value

    async def _publish(self, event_type: EventType, content: str, metadata: dict) -> None:
        await self.event_bus.publish(
            Event(type=event_type, content=content, metadata=dict(metadata)), self.id
        )

    # Accessors ===============================================================

    def get_agent(self, role: str) -> Optional[WorkflowAgent]:
        return self.agents.get(role)

    def get_context(self, name: str) -> Optional[SharedContext]:
        return self.contexts.get(name)

    def get_tool_calls(self, agent_role: str) -> list[dict[str, Any]]:
        agent = self.get_agent(agent_role)
        return agent.get_tool_calls() if agent else []

    def get_stats(self) -> dict[str, Any]:
        return {
            "loaded_workflows": len(self.workflow_configs),
            "active_contexts": len(self.contexts),
            "active_agents": len(self.agents),
            "common_data_keys": len(self.common_data),
        }


def _elapsed_ms(start_time: float) -> float:
    return (time.monotonic() - start_time) * 1000
