# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Tool name patterns used by persona tool filters.

A pattern is one of:

- an exact tool name, e.g. ``read_file``
- a glob where ``*`` matches any run of characters, e.g. ``*_file``
- a regular expression between slashes with optional flags, e.g. ``/^git_/i``

A regular expression that does not compile is compared literally.
"""

import re
import logging

from typing import Iterable

logger = logging.getLogger(__name__)

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def matches_pattern(tool_name: str | None, pattern: str | None) -> bool:
    if not tool_name or not pattern:
        return False

    if tool_name == pattern:
        return True

    if pattern.startswith("/") and pattern.rfind("/") > 0:
        last_slash = pattern.rfind("/")
        body, flag_chars = pattern[1:last_slash], pattern[last_slash + 1 :]
        flags = 0
        for c in flag_chars:
            flags |= _REGEX_FLAGS.get(c, 0)
        try:
            return re.search(body, tool_name, flags) is not None
        except re.error:
            logger.debug(f"Invalid tool pattern {pattern!r}, comparing literally")
            return tool_name == pattern

    if "*" in pattern:
        regex = "^" + re.escape(pattern).replace(r"\*", ".*") + "$"
        return re.match(regex, tool_name) is not None

    return False


def matches_any(tool_name: str | None, patterns: Iterable[str]) -> bool:
    """True if any of `patterns` matches the tool name."""
    return any(matches_pattern(tool_name, p) for p in patterns)


def tool_schema_name(tool: dict) -> str | None:
    """Name of an OpenAI-style tool schema (``{"function": {"name": ...}}``)."""
    function = tool.get("function") if isinstance(tool, dict) else None
    if isinstance(function, dict):
        return function.get("name")
    return tool.get("name") if isinstance(tool, dict) else None
