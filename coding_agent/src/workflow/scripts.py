# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Workflow script modules.

A workflow may ship a `script.py` beside its JSON definition. Handlers,
transition hooks and conditions that are plain identifiers name functions in
that module. Each function takes a ScriptContext as its only argument:

    def store_draft(ctx):
        ctx.common_data["draft"] = ctx.last_response["choices"][0]["message"]["content"]

Functions can call one another through the context, e.g.
`ctx.store_version(text, "copywriter")`.
"""

import re
import logging
import functools

from types import ModuleType
from typing import Any, Callable, Optional

from ..errors import ScriptError

logger = logging.getLogger(__name__)

_FUNCTION_REFERENCE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED = {"true", "false", "True", "False", "null", "None", "undefined"}


def is_function_reference(text: str) -> bool:
    """True when `text` is a bare identifier naming a script function."""
    stripped = text.strip()
    return bool(_FUNCTION_REFERENCE.match(stripped)) and stripped not in _RESERVED


class ScriptContext:
    """The state visible to script functions during a workflow run."""

    def __init__(
        self,
        common_data: Optional[dict] = None,
        workflow_contexts: Optional[dict] = None,
        agents: Optional[dict] = None,
        input: Any = None,
        module: Optional[ModuleType] = None,
    ):
        self.common_data: dict = common_data if common_data is not None else {}
        self.workflow_contexts: dict = workflow_contexts if workflow_contexts is not None else {}
        self.agents: dict = agents if agents is not None else {}
        self.input = input
        self.last_response: Optional[dict] = None
        self.last_decision: Optional[dict] = None
        self.module = module

    def __getattr__(self, name: str) -> Callable[..., Any]:
        # Only reached for names that are not instance attributes
        module = self.__dict__.get("module")
        func = getattr(module, name, None) if module is not None else None
        if not callable(func):
            raise AttributeError(f"Script context has no attribute or function '{name}'")
        return functools.partial(func, self)

    def call(self, name: str) -> Any:
        """Run the script function `name` with this context.

        Raises:
            ScriptError: when no module is loaded, the function is missing,
                or the function raises
        """
        if self.module is None:
            raise ScriptError(f"No script module loaded for function: {name}")
        func = getattr(self.module, name, None)
        if not callable(func):
            raise ScriptError(f"Function not found in script module: {name}")

        logger.debug(f"Executing script function: {name}")
        try:
            result = func(self)
        except ScriptError:
            raise
        except Exception as e:
            raise ScriptError(f"Script function {name} failed: {e}") from e
        logger.debug(f"Script function {name} returned: {result!r}")
        return result
