# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Union


class TokenType(Enum):
    NUMBER = "NUMBER"
    STRING = "STRING"
    NAME = "NAME"
    DOT = "."
    LPAREN = "("
    RPAREN = ")"
    OPERATOR = "OPERATOR"
    ASSIGN = "="
    SEPARATOR = ";"
    END = "END"


@dataclass
class Token:
    type: TokenType
    value: Any
    position: int


class CompareOp(Enum):
    STRICT_EQUAL = "==="
    STRICT_NOT_EQUAL = "!=="
    EQUAL = "=="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="


class LogicalOp(Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


# Symbol spellings accepted for each logical operator
LOGICAL_SPELLINGS = {
    "&&": LogicalOp.AND,
    "and": LogicalOp.AND,
    "||": LogicalOp.OR,
    "or": LogicalOp.OR,
    "!": LogicalOp.NOT,
    "not": LogicalOp.NOT,
}

# Keyword literals. `undefined` reads as None like a missing key.
KEYWORD_LITERALS = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "None": None,
    "undefined": None,
}


class PathRoot(Enum):
    """Roots a dotted path may start from."""

    COMMON_DATA = "common_data"
    FUNCTION = "function"  # function.<tool>.arguments.<arg>, read from the last decision


@dataclass
class Literal:
    value: Any


@dataclass
class Path:
    """A dotted read such as `common_data.review.approved` or `common_data.items.0`."""

    root: PathRoot
    parts: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return ".".join([self.root.value, *self.parts])


@dataclass
class Comparison:
    op: CompareOp
    left: "Expression"
    right: "Expression"


@dataclass
class Logical:
    """AND / OR of two operands, or NOT of `left` alone."""

    op: LogicalOp
    left: "Expression"
    right: "Expression | None" = None

    def __post_init__(self):
        if self.op == LogicalOp.NOT:
            if self.right is not None:
                raise ValueError("NOT operator cannot have a right operand")
        elif self.right is None:
            raise ValueError(f"{self.op.value} operator requires both left and right operands")


Expression = Union[Literal, Path, Comparison, Logical]


@dataclass
class Assignment:
    """`common_data.<path> = <expression>`"""

    target: Path
    value: Expression


# An inline script is a sequence of assignments
Script = list[Assignment]
