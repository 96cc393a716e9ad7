# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from typing import Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class StateRecord(BaseModel):
    """One entry of a run's execution history."""

    state: str
    agent: Optional[str] = None
    result: Optional[str] = None
    next_state: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class WorkflowResult(BaseModel):
    """
    The outcome of one `execute_workflow` call.

    Callers receive `to_dict()`, which only carries the keys relevant to the
    outcome: successful runs report output, final state and common data,
    failed runs report the error.
    """

    success: bool
    workflow_name: str
    execution_time: float = Field(description="Elapsed wall time in milliseconds")
    states_visited: list[str] = Field(default_factory=list)
    final_state: Optional[str] = None
    output: Any = None
    common_data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return self.model_dump(exclude={"error"})
        return self.model_dump(
            include={"success", "workflow_name", "error", "execution_time", "states_visited"}
        )
