# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import ast
import logging
import operator

from pydantic import Field

from .base_tool import BaseTool
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.BitXor: operator.pow,  # `^` is exponentiation here
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return _BINARY_OPS[type(node.op)](_evaluate(node.left), _evaluate(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


class Calculator(BaseTool):
    TOOL_NAME = "calculate"
    TOOL_DESCRIPTION = """A calculator tool that evaluates mathematical expressions.
Supports basic arithmetic operations (including +, -, *, /, //, % and ^) and parentheses.
All expressions must contain only numbers and valid operators."""

    reasoning: str = Field(
        ..., description="Concise reasoning about the operation to be performed"
    )
    expression: str = Field(
        ...,
        description="Mathematical expression to evaluate",
        pattern=r"^[\d\s\+\-\*\/\(\)\.\^%]+$",
    )

    async def run(self) -> ToolResult:
        try:
            result = _evaluate(ast.parse(self.expression, mode="eval"))
            return ToolResult(tool_name=self.TOOL_NAME, success=True, output=str(result))
        except (SyntaxError, ValueError, ZeroDivisionError, OverflowError) as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
