# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import re
import json
import logging

from dataclasses import dataclass, field
from typing import Any, Optional

from .grammar import (
    KEYWORD_LITERALS,
    LOGICAL_SPELLINGS,
    Assignment,
    Comparison,
    CompareOp,
    Expression,
    Literal,
    Logical,
    LogicalOp,
    Path,
    PathRoot,
    Script,
    Token,
    TokenType,
)
from ..errors import ExpressionError

logger = logging.getLogger(__name__)

_OPERATORS = ["===", "!==", "==", "!=", "<=", ">=", "&&", "||", "<", ">", "!"]
_NUMBER = re.compile(r"\d+(\.\d+)?")
_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_TEMPLATE = re.compile(r"\{\{\s*(.*?)\s*\}\}")


@dataclass
class EvaluationScope:
    """The values an expression can read."""

    common_data: dict = field(default_factory=dict)
    last_decision: Optional[dict] = None


class ExpressionInterpreter:
    """
    Parses and evaluates the restricted expression language used in workflow
    conditions, inline scripts and input templates.

    Examples:
        common_data.review_count < 3 && !common_data.approved
        function.copywriter_decision.arguments.approved === true
        common_data.summary = common_data.draft; common_data.round = 2

    No Python code is ever compiled or executed from the source text.
    """

    # Parsing =================================================================

    def tokenize(self, text: str, separators: bool = True) -> list[Token]:
        """Split `text` into tokens.

        With `separators` off, newlines are plain whitespace and `;` is not
        accepted, as in a single expression.
        """
        tokens: list[Token] = []
        pos = 0
        while pos < len(text):
            char = text[pos]

            if separators and char in ";\n":
                tokens.append(Token(TokenType.SEPARATOR, char, pos))
                pos += 1
                continue
            if char.isspace():
                pos += 1
                continue

            if char in "'\"":
                value, end = self._read_string(text, pos)
                tokens.append(Token(TokenType.STRING, value, pos))
                pos = end
                continue

            previous = tokens[-1] if tokens else None

            # Path segments after a dot are names, even when numeric
            if previous is not None and previous.type == TokenType.DOT and char.isdigit():
                match = re.compile(r"\d+").match(text, pos)
                tokens.append(Token(TokenType.NAME, match.group(), pos))
                pos = match.end()
                continue

            negative = (
                char == "-"
                and pos + 1 < len(text)
                and text[pos + 1].isdigit()
                and (
                    previous is None
                    or previous.type
                    in (TokenType.OPERATOR, TokenType.LPAREN, TokenType.ASSIGN, TokenType.SEPARATOR)
                )
            )
            if char.isdigit() or negative:
                match = _NUMBER.match(text, pos + 1 if negative else pos)
                number = match.group()
                value = float(number) if "." in number else int(number)
                tokens.append(Token(TokenType.NUMBER, -value if negative else value, pos))
                pos = match.end()
                continue

            match = _NAME.match(text, pos)
            if match:
                tokens.append(Token(TokenType.NAME, match.group(), pos))
                pos = match.end()
                continue

            operator = next((op for op in _OPERATORS if text.startswith(op, pos)), None)
            if operator:
                tokens.append(Token(TokenType.OPERATOR, operator, pos))
                pos += len(operator)
                continue

            if char == "=":
                tokens.append(Token(TokenType.ASSIGN, char, pos))
            elif char == ".":
                tokens.append(Token(TokenType.DOT, char, pos))
            elif char == "(":
                tokens.append(Token(TokenType.LPAREN, char, pos))
            elif char == ")":
                tokens.append(Token(TokenType.RPAREN, char, pos))
            else:
                raise ExpressionError(f"Unexpected character {char!r} at position {pos}")
            pos += 1

        tokens.append(Token(TokenType.END, None, len(text)))
        return tokens

    def _read_string(self, text: str, start: int) -> tuple[str, int]:
        quote = text[start]
        chars: list[str] = []
        pos = start + 1
        while pos < len(text):
            char = text[pos]
            if char == "\\" and pos + 1 < len(text):
                escaped = text[pos + 1]
                chars.append({"n": "\n", "t": "\t"}.get(escaped, escaped))
                pos += 2
                continue
            if char == quote:
                return "".join(chars), pos + 1
            chars.append(char)
            pos += 1
        raise ExpressionError(f"Unterminated string starting at position {start}")

    def parse(self, text: str) -> Expression:
        """Parse a single expression."""
        if text is None or not str(text).strip():
            raise ExpressionError("Empty expression")
        parser = _Parser(self.tokenize(str(text).strip(), separators=False))
        expression = parser.expression()
        parser.expect(TokenType.END)
        return expression

    def parse_script(self, text: str) -> Script:
        """Parse `common_data.<path> = <expr>` statements separated by `;` or newlines."""
        parser = _Parser(self.tokenize(text or ""))
        statements: Script = []
        while not parser.at(TokenType.END):
            if parser.accept(TokenType.SEPARATOR):
                continue
            statements.append(parser.assignment())
            if not parser.at(TokenType.END):
                parser.expect(TokenType.SEPARATOR)
        return statements

    # Evaluation ==============================================================

    def evaluate(self, expression: str | Expression, scope: EvaluationScope) -> Any:
        if isinstance(expression, str):
            expression = self.parse(expression)
        return self._eval(expression, scope)

    def evaluate_condition(self, expression: str | Expression, scope: EvaluationScope) -> bool:
        return bool(self.evaluate(expression, scope))

    def execute(self, script: str | Script, scope: EvaluationScope) -> None:
        """Run an inline script, writing its assignments into `scope.common_data`."""
        if isinstance(script, str):
            script = self.parse_script(script)
        for statement in script:
            value = self._eval(statement.value, scope)
            self._assign(scope.common_data, statement.target, value)

    def render_template(self, template: str, scope: EvaluationScope) -> str:
        """Substitute every `{{expr}}` placeholder.

        A placeholder that fails to evaluate, or evaluates to None, is left
        untouched.
        """

        def substitute(match: re.Match) -> str:
            try:
                value = self.evaluate(match.group(1), scope)
            except ExpressionError as e:
                logger.warning(f"Could not resolve template placeholder {match.group(0)}: {e}")
                return match.group(0)
            if value is None:
                return match.group(0)
            if isinstance(value, (dict, list)):
                return json.dumps(value)
            return str(value)

        return _TEMPLATE.sub(substitute, template)

    @staticmethod
    def is_template(text: str) -> bool:
        return bool(_TEMPLATE.search(text))

    def _eval(self, node: Expression, scope: EvaluationScope) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Path):
            return self._read_path(node, scope)
        if isinstance(node, Logical):
            left = self._eval(node.left, scope)
            if node.op == LogicalOp.NOT:
                return not left
            if node.op == LogicalOp.AND:
                return self._eval(node.right, scope) if left else left
            return left if left else self._eval(node.right, scope)
        if isinstance(node, Comparison):
            return self._compare(
                node.op, self._eval(node.left, scope), self._eval(node.right, scope)
            )
        raise ExpressionError(f"Unsupported expression node: {type(node).__name__}")

    def _read_path(self, path: Path, scope: EvaluationScope) -> Any:
        if path.root == PathRoot.COMMON_DATA:
            return _walk(scope.common_data, path.parts)

        tool_name, _, *argument_path = path.parts
        decision = scope.last_decision or {}
        function = decision.get("function") or {}
        if function.get("name") != tool_name:
            return None
        arguments = function.get("arguments")
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                return None
        return _walk(arguments, argument_path)

    def _compare(self, op: CompareOp, left: Any, right: Any) -> bool:
        if op == CompareOp.STRICT_EQUAL:
            return _strict_equal(left, right)
        if op == CompareOp.STRICT_NOT_EQUAL:
            return not _strict_equal(left, right)
        if op == CompareOp.EQUAL:
            return _loose_equal(left, right)
        if op == CompareOp.NOT_EQUAL:
            return not _loose_equal(left, right)

        if left is None or right is None:
            return False
        try:
            if op == CompareOp.LESS_THAN:
                return left < right
            if op == CompareOp.LESS_THAN_OR_EQUAL:
                return left <= right
            if op == CompareOp.GREATER_THAN:
                return left > right
            return left >= right
        except TypeError as e:
            raise ExpressionError(
                f"Cannot compare {type(left).__name__} and {type(right).__name__} with {op.value}"
            ) from e

    def _assign(self, data: dict, target: Path, value: Any) -> None:
        current = data
        for part in target.parts[:-1]:
            nxt = current.get(part)
            if nxt is None:
                nxt = current[part] = {}
            elif not isinstance(nxt, dict):
                raise ExpressionError(f"Cannot assign into non-mapping at '{part}' of {target}")
            current = nxt
        current[target.parts[-1]] = value


def _walk(value: Any, parts: list[str]) -> Any:
    for part in parts:
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, (list, tuple)) and part.isdigit():
            index = int(part)
            value = value[index] if index < len(value) else None
        elif part == "length" and isinstance(value, (list, tuple, str)):
            value = len(value)
        else:
            return None
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equal(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _loose_equal(left: Any, right: Any) -> bool:
    if left == right:
        return True
    for a, b in ((left, right), (right, left)):
        if _is_number(a) and isinstance(b, str):
            try:
                return a == float(b)
            except ValueError:
                return False
    return False


class _Parser:
    """Recursive descent over a token list.

    expression := or
    or         := and (("||" | "or") and)*
    and        := comparison (("&&" | "and") comparison)*
    comparison := unary (COMPARE_OP unary)?
    unary      := ("!" | "not") unary | primary
    primary    := literal | path | "(" expression ")"
    """

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def at(self, token_type: TokenType) -> bool:
        return self.current.type == token_type

    def accept(self, token_type: TokenType) -> Optional[Token]:
        if self.at(token_type):
            token = self.current
            self.index += 1
            return token
        return None

    def expect(self, token_type: TokenType) -> Token:
        token = self.accept(token_type)
        if token is None:
            found = self.current.value if self.current.value is not None else "end of input"
            raise ExpressionError(
                f"Expected {token_type.value} but found {found!r} at position {self.current.position}"
            )
        return token

    def _logical(self) -> Optional[LogicalOp]:
        token = self.current
        if token.type in (TokenType.OPERATOR, TokenType.NAME):
            return LOGICAL_SPELLINGS.get(token.value)
        return None

    def expression(self) -> Expression:
        node = self._and()
        while self._logical() == LogicalOp.OR:
            self.index += 1
            node = Logical(LogicalOp.OR, node, self._and())
        return node

    def _and(self) -> Expression:
        node = self._comparison()
        while self._logical() == LogicalOp.AND:
            self.index += 1
            node = Logical(LogicalOp.AND, node, self._comparison())
        return node

    def _comparison(self) -> Expression:
        left = self._unary()
        if self.at(TokenType.OPERATOR):
            try:
                op = CompareOp(self.current.value)
            except ValueError:
                return left
            self.index += 1
            return Comparison(op, left, self._unary())
        return left

    def _unary(self) -> Expression:
        # Negation binds tighter than comparison: `!a === b` is `(!a) === b`
        if self._logical() == LogicalOp.NOT:
            self.index += 1
            return Logical(LogicalOp.NOT, self._unary())
        return self._primary()

    def _primary(self) -> Expression:
        token = self.current
        if self.accept(TokenType.LPAREN):
            node = self.expression()
            self.expect(TokenType.RPAREN)
            return node
        if self.accept(TokenType.NUMBER) or self.accept(TokenType.STRING):
            return Literal(token.value)
        if token.type == TokenType.NAME:
            if token.value in KEYWORD_LITERALS:
                self.index += 1
                return Literal(KEYWORD_LITERALS[token.value])
            return self.path()
        found = token.value if token.value is not None else "end of input"
        raise ExpressionError(f"Unexpected {found!r} at position {token.position}")

    def path(self) -> Path:
        token = self.expect(TokenType.NAME)
        try:
            root = PathRoot(token.value)
        except ValueError:
            raise ExpressionError(f"Unknown identifier: {token.value}") from None

        parts: list[str] = []
        while self.accept(TokenType.DOT):
            parts.append(self.expect(TokenType.NAME).value)

        if root == PathRoot.FUNCTION and (len(parts) < 3 or parts[1] != "arguments"):
            raise ExpressionError(
                f"Decision reads must look like function.<tool>.arguments.<arg>, got {'.'.join(['function', *parts])}"
            )
        return Path(root, parts)

    def assignment(self) -> Assignment:
        target = self.path()
        if target.root != PathRoot.COMMON_DATA or not target.parts:
            raise ExpressionError(f"Can only assign to common_data.<key>, not {target}")
        self.expect(TokenType.ASSIGN)
        return Assignment(target, self.expression())
