# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import time
import logging

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Iterable, Protocol
from pydantic import BaseModel, PrivateAttr, ValidationError

from ..errors import ToolArgumentsError, ToolNotFoundError
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


# Create an empty registry dictionary.
tool_registry: dict[str, type["BaseTool"]] = {}


class ToolExecutor(Protocol):
    """Executes one model tool call and returns the tool-role message.

    The call has the OpenAI shape ``{"id", "type", "function": {"name",
    "arguments"}}``; the returned message is ``{"role": "tool",
    "tool_call_id", "content"}``. Implementations raise on failure.
    """

    async def __call__(self, tool_call: dict[str, Any]) -> dict[str, Any]: ...


class BaseTool(BaseModel, ABC):
    """Abstract base class for all tools"""

    # Class variables for tool metadata
    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]

    _workdir: Path = PrivateAttr(default_factory=Path.cwd)

    class Config:
        extra = "forbid"

    def __init__(self, workdir: Path | None = None, **data):
        super().__init__(**data)
        if workdir is not None:
            self._workdir = Path(workdir)

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        # Skip registering the BaseTool class itself.
        if cls.__name__ != "BaseTool":
            tool_registry[cls.TOOL_NAME] = cls

    @abstractmethod
    async def run(self) -> ToolResult:
        """Execute the tool's functionality"""
        pass

    def resolve_path(self, path: str) -> Path:
        """Resolve `path` against the working directory, refusing to leave it."""
        root = self._workdir.resolve()
        candidate = (root / path).resolve()
        if candidate != root and root not in candidate.parents:
            raise PermissionError(f"{path} is outside the working directory {root}")
        return candidate

    @classmethod
    def to_openai_schema(cls) -> dict[str, Any]:
        schema = cls.model_json_schema()
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": cls.TOOL_NAME,
                "description": cls.TOOL_DESCRIPTION,
                "parameters": schema,
            },
        }


class RegistryToolExecutor:
    """Runs tool calls against a set of BaseTool classes.

    Unknown tools and unparseable arguments raise, so that the session can
    report the problem back to the model as a tool error.
    """

    def __init__(
        self,
        tools: Iterable[type[BaseTool]] | None = None,
        workdir: Path | None = None,
    ):
        tools = tool_registry.values() if tools is None else tools
        self._tools: dict[str, type[BaseTool]] = {t.TOOL_NAME: t for t in tools}
        self._workdir = workdir

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        return [t.to_openai_schema() for t in self._tools.values()]

    async def __call__(self, tool_call: dict[str, Any]) -> dict[str, Any]:
        function = tool_call.get("function") or {}
        name = function.get("name")
        tool_cls = self._tools.get(name)
        if tool_cls is None:
            raise ToolNotFoundError(name)

        try:
            args = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError as e:
            raise ToolArgumentsError(f"Could not parse arguments for {name}: {e}") from e
        if not isinstance(args, dict):
            raise ToolArgumentsError(f"Arguments for {name} must be a JSON object")

        try:
            tool = tool_cls(workdir=self._workdir, **args)
        except ValidationError as e:
            raise ToolArgumentsError(f"Invalid arguments for {name}: {e}") from e

        start_time = time.time()
        result = await tool.run()
        result.duration = time.time() - start_time
        logger.debug(f"Tool {name} finished in {result.duration:.3f}s (success={result.success})")

        return {
            "role": "tool",
            "tool_call_id": tool_call.get("id"),
            "content": str(result),
        }
