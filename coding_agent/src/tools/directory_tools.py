# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import fnmatch
import logging

from pathlib import Path
from pydantic import Field

from .base_tool import BaseTool
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class ListDirectory(BaseTool):
    """Tool to list directory contents as an indented tree."""

    TOOL_NAME = "list_directory"
    TOOL_DESCRIPTION = """List the contents of a directory in the working directory as an indented tree.

Directories are shown with a trailing slash. Large directories are collapsed after `collapse_threshold` entries."""

    directory: str = Field(".", description="Directory path, relative to the working directory")
    max_depth: int = Field(default=2, ge=1, description="Maximum depth to traverse")
    show_hidden: bool = Field(default=False, description="Whether to show hidden entries")
    collapse_threshold: int = Field(
        default=50, ge=1, description="Number of entries shown per directory before collapsing"
    )
    exclude_patterns: list[str] = Field(
        default_factory=list,
        description="Glob patterns to exclude (e.g. '.git' or '*.pyc')",
    )

    def _excluded(self, path: Path) -> bool:
        if not self.show_hidden and path.name.startswith("."):
            return True
        return any(fnmatch.fnmatch(path.name, p) for p in self.exclude_patterns)

    def _walk(self, path: Path, depth: int, lines: list[str]) -> None:
        entries = sorted(
            (p for p in path.iterdir() if not self._excluded(p)),
            key=lambda p: (not p.is_dir(), p.name),
        )
        indent = "  " * depth
        for i, entry in enumerate(entries):
            if i >= self.collapse_threshold:
                lines.append(f"{indent}... ({len(entries) - i} more entries)")
                break
            if entry.is_dir():
                lines.append(f"{indent}{entry.name}/")
                if depth < self.max_depth:
                    self._walk(entry, depth + 1, lines)
            else:
                lines.append(f"{indent}{entry.name}")

    async def run(self) -> ToolResult:
        try:
            path = self.resolve_path(self.directory)
        except PermissionError as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))

        if not path.is_dir():
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"Directory {self.directory} does not exist",
            )

        lines = [f"{self.directory.rstrip('/')}/"]
        self._walk(path, 1, lines)
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output="\n".join(lines))
