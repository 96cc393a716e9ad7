# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The main entrypoint to the system.

`Agent` wires settings, the persona registry, the model backend, the tool
executor and a shared event bus together, and hands out conversation
sessions and the workflow state machine built on them.
"""

import logging

from typing import Any, Optional

from .src.config import Settings, load_settings
from .src.conversation import ConversationSession, SessionCallbacks
from .src.events import EventBus
from .src.llm import ModelBackend, OpenAIBackend
from .src.personas import PersonaRegistry
from .src.tools import RegistryToolExecutor, toolkits
from .src.types.event_types import Event, EventType
from .src.workflow import WorkflowStateMachine

logger = logging.getLogger(__name__)


def log_event(event: Event) -> None:
    """Event bus subscriber mirroring tool and workflow activity to the log."""
    publisher = event.metadata.get("publisher_id", "?")
    if event.type == EventType.APPLICATION_ERROR:
        logger.error(f"[{publisher}] {event.content}")
    elif event.type == EventType.APPLICATION_WARNING:
        logger.warning(f"[{publisher}] {event.content}")
    else:
        logger.info(f"[{publisher}] {event.type.value}: {event.content[:200]}")


class Agent:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend: Optional[ModelBackend] = None,
        personas: Optional[PersonaRegistry] = None,
        event_bus: Optional[EventBus] = None,
        toolkit: str = "coding",
    ):
        self.settings = settings if settings is not None else load_settings()
        self.backend = backend if backend is not None else OpenAIBackend()
        self.personas = (
            personas
            if personas is not None
            else PersonaRegistry.from_json_file(self.settings.personas_file)
        )
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.tool_executor = RegistryToolExecutor(
            toolkits[toolkit], workdir=self.settings.workdir
        )
        self.state_machine = WorkflowStateMachine(
            self.settings,
            self.personas,
            self.backend,
            tool_executor=self.tool_executor,
            tools=self.tool_executor.schemas(),
            event_bus=self.event_bus,
        )
        logger.debug(
            f"Agent ready with {len(self.personas)} personas and tools {self.tool_executor.tool_names}"
        )

    def watch_events(self) -> None:
        """Log session and workflow events as they are published."""
        self.event_bus.subscribe(
            {
                EventType.TOOL_CALL,
                EventType.TOOL_RESULT,
                EventType.APPLICATION_ERROR,
                EventType.APPLICATION_WARNING,
                EventType.STATE_ENTERED,
                EventType.STATE_TRANSITION,
                EventType.WORKFLOW_STARTED,
                EventType.WORKFLOW_COMPLETED,
                EventType.WORKFLOW_FAILED,
            },
            log_event,
        )

    def load_workflows(self) -> list[str]:
        self.state_machine.load_workflow_configs(self.settings.workflows_dir)
        return self.state_machine.get_available_workflows()

    def describe_workflows(self) -> list[dict[str, Any]]:
        return [
            self.state_machine.get_workflow_metadata(name)
            for name in self.state_machine.get_available_workflows()
        ]

    async def run_workflow(self, name: str, input: Any) -> dict[str, Any]:
        return await self.state_machine.execute_workflow(name, input)

    def new_session(
        self, role: str, callbacks: Optional[SessionCallbacks] = None
    ) -> ConversationSession:
        """A standalone session for `role`, sharing this agent's tools and event bus."""
        session = ConversationSession(
            self.settings,
            self.personas,
            self.backend,
            tool_executor=self.tool_executor,
            tools=self.tool_executor.schemas(),
            event_bus=self.event_bus,
            callbacks=callbacks,
        )
        session.set_persona(role)
        return session

    def get_usage(self) -> dict[str, Any]:
        if isinstance(self.backend, OpenAIBackend):
            return self.backend.get_total_usage().model_dump()
        return {}
