# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Multi-agent workflows: shared contexts, workflow agents, definitions and the
state machine that drives them.
"""

from .agent import WorkflowAgent
from .context import SharedContext
from .definition import WorkflowConfig, WorkflowDefinition
from .scripts import ScriptContext
from .state_machine import WorkflowStateMachine

__all__ = [
    "SharedContext",
    "WorkflowAgent",
    "WorkflowConfig",
    "WorkflowDefinition",
    "ScriptContext",
    "WorkflowStateMachine",
]
