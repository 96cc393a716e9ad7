# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Workflow definitions, loaded from one JSON document per workflow.

A workflow names its shared contexts, the agents taking part in them, and
a graph of states. Execution always begins at `start` and ends at the
implicit `stop` state.
"""

import json
import logging
import importlib.util

from types import ModuleType
from pathlib import Path
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..errors import WorkflowValidationError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

START_STATE = "start"
STOP_STATE = "stop"


class ParameterDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class ContextDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    starting_messages: list[dict[str, Any]] = Field(default_factory=list)
    max_length: int = Field(default=50000, gt=0)


class AgentDefinition(BaseModel):
    agent_role: str = Field(..., min_length=1)
    context: str = Field(..., min_length=1)
    role: Literal["user", "assistant"]


class TransitionDefinition(BaseModel):
    target: str = Field(..., min_length=1)
    condition: str = Field(..., min_length=1)
    before: Optional[str] = None


class ActionDefinition(BaseModel):
    """Legacy state action: an optional script to run and the agent call to make."""

    function: Optional[str] = None
    script: Optional[str] = None


class StateDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    agent: Optional[str] = None
    input: Optional[Any] = None
    pre_handler: Optional[str] = None
    post_handler: Optional[str] = None
    transition_handler: Optional[str] = None
    action: Optional[ActionDefinition] = None
    transition: list[TransitionDefinition] = Field(default_factory=list)

    @property
    def has_handlers(self) -> bool:
        return bool(self.pre_handler or self.post_handler or self.transition_handler)


class WorkflowDefinition(BaseModel):
    workflow_name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    input: ParameterDefinition
    output: ParameterDefinition
    variables: dict[str, Any] = Field(default_factory=dict)
    contexts: list[ContextDefinition]
    agents: list[AgentDefinition]
    states: list[StateDefinition]

    @field_validator("contexts", "agents", "states")
    @classmethod
    def _not_empty(cls, value: list, info) -> list:
        if not value:
            raise ValueError(f"At least one entry must be defined in {info.field_name}")
        return value

    @model_validator(mode="after")
    def _check_references(self) -> "WorkflowDefinition":
        context_names = _unique([c.name for c in self.contexts], "context name")
        agent_roles = _unique([a.agent_role for a in self.agents], "agent role")
        state_names = _unique([s.name for s in self.states], "state name")

        for agent in self.agents:
            if agent.context not in context_names:
                raise ValueError(
                    f"Agent {agent.agent_role}: references unknown context {agent.context}"
                )
        for state in self.states:
            if state.agent and state.agent not in agent_roles:
                raise ValueError(f"State {state.name}: references unknown agent {state.agent}")
        if START_STATE not in state_names:
            raise ValueError(f'Workflow must have a "{START_STATE}" state')
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowDefinition":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            name = data.get("workflow_name") if isinstance(data, dict) else None
            raise WorkflowValidationError(f"Invalid workflow {name or '<unnamed>'}: {e}") from e

    def get_state(self, name: str) -> Optional[StateDefinition]:
        return next((s for s in self.states if s.name == name), None)

    def get_metadata(self) -> dict[str, Any]:
        return {
            "name": self.workflow_name,
            "description": self.description,
            "input": self.input.model_dump(),
            "output": self.output.model_dump(),
            "context_count": len(self.contexts),
            "agent_count": len(self.agents),
            "state_count": len(self.states),
        }


def _unique(names: list[str], kind: str) -> set[str]:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"Duplicate {kind}: {name}")
        seen.add(name)
    return seen


class WorkflowConfig:
    """A workflow definition together with its source file and script module.

    The optional script module lives beside the JSON file at
    `<dir>/<stem>/script.py`. Its functions can be named as state handlers,
    transition hooks and conditions.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.definition: Optional[WorkflowDefinition] = None
        self.script_module: Optional[ModuleType] = None

    def load(self) -> WorkflowDefinition:
        """Read, validate and return the definition, then load the scripts.

        Raises:
            WorkflowValidationError: the file is missing, unreadable or invalid
        """
        if not self.path.is_file():
            raise WorkflowValidationError(f"Workflow configuration not found: {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise WorkflowValidationError(f"Could not read workflow {self.path}: {e}") from e

        self.definition = WorkflowDefinition.from_dict(data)
        self.script_module = self._load_script_module()
        logger.debug(f"Loaded workflow config: {self.workflow_name}")
        return self.definition

    @property
    def workflow_name(self) -> Optional[str]:
        return self.definition.workflow_name if self.definition else None

    @property
    def script_path(self) -> Path:
        return self.path.parent / self.path.stem / "script.py"

    def _load_script_module(self) -> Optional[ModuleType]:
        script_path = self.script_path
        if not script_path.is_file():
            logger.debug(f"No script file found at {script_path}")
            return None
        try:
            spec = importlib.util.spec_from_file_location(
                f"workflow_scripts.{self.path.stem}", script_path
            )
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception as e:
            logger.warning(f"Script module loading failed for {self.path.name}: {e}")
            return None
        logger.debug(f"Loaded script module: {script_path}")
        return module

    def get_metadata(self) -> Optional[dict[str, Any]]:
        return self.definition.get_metadata() if self.definition else None
