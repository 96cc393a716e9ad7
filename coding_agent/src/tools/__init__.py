# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
A module of Agent tools
"""

from .base_tool import BaseTool, RegistryToolExecutor, ToolExecutor, tool_registry
from .file_tools import ReadFile, WriteFile
from .directory_tools import ListDirectory
from .calculator import Calculator

toolkits: dict[str, list[type[BaseTool]]] = dict(
    coding=[ReadFile, WriteFile, ListDirectory, Calculator],
)

__all__ = [
    "BaseTool",
    "RegistryToolExecutor",
    "ToolExecutor",
    "tool_registry",
    "toolkits",
    "ReadFile",
    "WriteFile",
    "ListDirectory",
    "Calculator",
]
