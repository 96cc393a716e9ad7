# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

from pydantic import Field

from .base_tool import BaseTool
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class ReadFile(BaseTool):
    TOOL_NAME = "read_file"
    TOOL_DESCRIPTION = """Read one or more text files from the working directory.

Paths are relative to the working directory. Each file is returned with a header line giving its path.
Only open plain text files; binary files are reported as unreadable."""

    file_paths: list[str] = Field(
        ...,
        description="One or more file paths, relative to the working directory",
        min_length=1,
    )
    show_line_numbers: bool = Field(
        False,
        description="When True, prefix each line with its line number",
    )

    async def run(self) -> ToolResult:
        output_strings = []
        warnings = []
        for fpath in self.file_paths:
            try:
                path = self.resolve_path(fpath)
            except PermissionError as e:
                warnings.append(str(e))
                continue
            if not path.is_file():
                warnings.append(f"File path: {fpath} does not exist")
                continue
            try:
                text = path.read_text()
            except UnicodeDecodeError:
                warnings.append(f"{fpath} is not a text file")
                continue

            if self.show_line_numbers:
                text = "\n".join(f"{i:>5} | {line}" for i, line in enumerate(text.splitlines(), 1))
            output_strings.append(f"==> {fpath} <==\n{text}")

        if not output_strings:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors="\n".join(warnings) or "No files were read",
            )
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output="\n\n".join(output_strings),
            warnings="\n".join(warnings) if warnings else None,
        )


class WriteFile(BaseTool):
    TOOL_NAME = "write_file"
    TOOL_DESCRIPTION = """Create or overwrite a text file in the working directory.

Missing parent directories are created. The whole file content must be provided."""

    file_path: str = Field(..., description="Path of the file, relative to the working directory")
    content: str = Field(..., description="The full content to write")

    async def run(self) -> ToolResult:
        try:
            path = self.resolve_path(self.file_path)
            existed = path.exists()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.content)
        except (OSError, PermissionError) as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))

        verb = "Overwrote" if existed else "Created"
        logger.info(f"{verb} {path} ({len(self.content)} chars)")
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"{verb} {self.file_path} ({len(self.content)} characters)",
        )
