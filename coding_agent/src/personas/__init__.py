# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from .patterns import matches_pattern, matches_any, tool_schema_name
from .registry import Persona, PersonaRegistry

__all__ = [
    "matches_pattern",
    "matches_any",
    "tool_schema_name",
    "Persona",
    "PersonaRegistry",
]
