"""Boolean/value expression language used by `when` and update conditions.

Expressions address a context mapping by dotted path and combine values with
comparison and logical operators:

    ExitCode != 0
    Comment.HasMeta && Comment.Meta.TemplateKey == "default"
    Vars.target in ["plan", "apply"] || Stdout contains "FAIL"

Programs are compiled once and run many times. `Evaluator` caches compiled
programs per expression string for the lifetime of the instance.
"""

from __future__ import annotations

import ast
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping


class ExprError(ValueError):
    """Base class for expression failures."""


class CompileError(ExprError):
    """Expression text is not valid syntax."""


class EvalError(ExprError):
    """Expression failed against a concrete context."""


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>\d+\.\d+|\d+)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<name>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<op>&&|\|\||==|!=|<=|>=|[!<>+\-*/%().,\[\]])
    """,
    re.VERBOSE,
)

_WORD_OPERATORS = {"contains", "startsWith", "endsWith", "matches", "in"}
_COMPARISON_OPERATORS = {"==", "!=", "<", "<=", ">", ">="}
_CONSTANTS = {"true": True, "false": False, "nil": None, "null": None}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    pos: int


def tokenize(text: str) -> list[Token]:
    """Split expression text into tokens, dropping whitespace."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise CompileError(f"unexpected character {text[pos]!r} at column {pos + 1}")
        kind = m.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind=kind, value=m.group(0), pos=pos))
        pos = m.end()
    tokens.append(Token(kind="eof", value="", pos=len(text)))
    return tokens


def _type_name(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "map"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equal(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        if isinstance(left, Mapping) and isinstance(right, Mapping):
            return dict(left) == dict(right)
        if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
            return list(left) == list(right)
        return False
    return left == right


def _require_bool(value: Any, op: str) -> bool:
    if not isinstance(value, bool):
        raise EvalError(f"invalid operation: {op} {_type_name(value)} (expected bool)")
    return value


class Node:
    path = "expression"

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        raise NotImplementedError


class Literal(Node):
    def __init__(self, value: Any) -> None:
        self.value = value
        self.path = repr(value)

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        return self.value


class ListLiteral(Node):
    path = "list"

    def __init__(self, items: list[Node]) -> None:
        self.items = items

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        return [item.evaluate(scope) for item in self.items]


class Name(Node):
    def __init__(self, name: str) -> None:
        self.name = name
        self.path = name

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        if self.name not in scope:
            raise EvalError(f'unknown name "{self.name}"')
        return scope[self.name]


class Member(Node):
    def __init__(self, target: Node, name: str) -> None:
        self.target = target
        self.name = name
        self.path = f"{target.path}.{name}"

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        value = self.target.evaluate(scope)
        if isinstance(value, Mapping):
            if self.name not in value:
                raise EvalError(f'unknown field "{self.path}"')
            return value[self.name]
        raise EvalError(
            f'cannot read field "{self.name}" of {_type_name(value)} "{self.target.path}"'
        )


class Index(Node):
    def __init__(self, target: Node, index: Node) -> None:
        self.target = target
        self.index = index
        self.path = f"{target.path}[{index.path}]"

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        value = self.target.evaluate(scope)
        key = self.index.evaluate(scope)
        if isinstance(value, Mapping):
            try:
                found = key in value
            except TypeError:
                raise EvalError(f'invalid index {_type_name(key)} for map "{self.target.path}"') from None
            if not found:
                raise EvalError(f'unknown field "{self.path}"')
            return value[key]
        if isinstance(value, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise EvalError(f"invalid index {_type_name(key)} for {_type_name(value)} \"{self.target.path}\"")
            try:
                return value[key]
            except IndexError:
                raise EvalError(f'index out of range "{self.path}"') from None
        raise EvalError(f'cannot index {_type_name(value)} "{self.target.path}"')


class Unary(Node):
    def __init__(self, op: str, operand: Node) -> None:
        self.op = op
        self.operand = operand

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        value = self.operand.evaluate(scope)
        if self.op == "!":
            return not _require_bool(value, "!")
        if not _is_number(value):
            raise EvalError(f"invalid operation: -{_type_name(value)}")
        return -value


class Logical(Node):
    def __init__(self, op: str, left: Node, right: Node) -> None:
        self.op = op
        self.left = left
        self.right = right

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        left = _require_bool(self.left.evaluate(scope), self.op)
        if self.op == "&&" and not left:
            return False
        if self.op == "||" and left:
            return True
        return _require_bool(self.right.evaluate(scope), self.op)


def _mismatch(op: str, left: Any, right: Any) -> EvalError:
    return EvalError(f"invalid operation: {_type_name(left)} {op} {_type_name(right)}")


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return _equal(left, right)
    if op == "!=":
        return not _equal(left, right)
    comparable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not comparable:
        raise _mismatch(op, left, right)
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _membership(left: Any, right: Any) -> bool:
    if isinstance(right, Mapping):
        try:
            return left in right
        except TypeError:
            raise _mismatch("in", left, right) from None
    if isinstance(right, (list, tuple)):
        return any(_equal(left, item) for item in right)
    if isinstance(right, str) and isinstance(left, str):
        return left in right
    raise _mismatch("in", left, right)


def _string_op(op: str, left: Any, right: Any) -> bool:
    if not (isinstance(left, str) and isinstance(right, str)):
        raise _mismatch(op, left, right)
    if op == "contains":
        return right in left
    if op == "startsWith":
        return left.startswith(right)
    if op == "endsWith":
        return left.endswith(right)
    try:
        return re.search(right, left) is not None
    except re.error as exc:
        raise EvalError(f"invalid regular expression {right!r}: {exc}") from exc


def _arithmetic(op: str, left: Any, right: Any) -> Any:
    if op == "+" and isinstance(left, str) and isinstance(right, str):
        return left + right
    if not (_is_number(left) and _is_number(right)):
        raise _mismatch(op, left, right)
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if right == 0:
        raise EvalError("integer divide by zero" if op == "%" else "division by zero")
    if op == "%":
        return left % right
    return left / right


class Binary(Node):
    def __init__(self, op: str, left: Node, right: Node, negate: bool = False) -> None:
        self.op = op
        self.left = left
        self.right = right
        self.negate = negate

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        left = self.left.evaluate(scope)
        right = self.right.evaluate(scope)
        if self.op in _COMPARISON_OPERATORS:
            return _compare(self.op, left, right)
        if self.op == "in":
            return _membership(left, right) != self.negate
        if self.op in _WORD_OPERATORS:
            return _string_op(self.op, left, right)
        return _arithmetic(self.op, left, right)


def _builtin_len(value: Any) -> int:
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value)
    raise EvalError(f"invalid argument for len (type {_type_name(value)})")


_FUNCTIONS: dict[str, Callable[[Any], Any]] = {"len": _builtin_len}


class Call(Node):
    def __init__(self, name: str, args: list[Node]) -> None:
        self.name = name
        self.args = args
        self.path = f"{name}()"

    def evaluate(self, scope: Mapping[str, Any]) -> Any:
        return _FUNCTIONS[self.name](*[arg.evaluate(scope) for arg in self.args])


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def at(self, *values: str) -> bool:
        token = self.peek()
        return token.kind in ("op", "name") and token.value in values

    def expect(self, value: str) -> Token:
        token = self.peek()
        if token.value != value or token.kind != "op":
            raise self.error(f"expected {value!r}", token)
        return self.advance()

    def error(self, message: str, token: Token) -> CompileError:
        found = token.value or "end of expression"
        return CompileError(f"{message}, found {found!r} at column {token.pos + 1}: {self.text}")

    def parse(self) -> Node:
        if self.peek().kind == "eof":
            raise CompileError("expression is empty")
        node = self.parse_or()
        if self.peek().kind != "eof":
            raise self.error("unexpected token", self.peek())
        return node

    def parse_or(self) -> Node:
        node = self.parse_and()
        while self.at("||", "or"):
            self.advance()
            node = Logical("||", node, self.parse_and())
        return node

    def parse_and(self) -> Node:
        node = self.parse_comparison()
        while self.at("&&", "and"):
            self.advance()
            node = Logical("&&", node, self.parse_comparison())
        return node

    def parse_comparison(self) -> Node:
        node = self.parse_additive()
        while True:
            token = self.peek()
            if token.kind == "op" and token.value in _COMPARISON_OPERATORS:
                self.advance()
                node = Binary(token.value, node, self.parse_additive())
            elif token.kind == "name" and token.value in _WORD_OPERATORS:
                self.advance()
                node = Binary(token.value, node, self.parse_additive())
            elif token.kind == "name" and token.value == "not" and self.peek(1).value == "in":
                self.advance()
                self.advance()
                node = Binary("in", node, self.parse_additive(), negate=True)
            else:
                return node

    def parse_additive(self) -> Node:
        node = self.parse_multiplicative()
        while self.peek().kind == "op" and self.peek().value in ("+", "-"):
            op = self.advance().value
            node = Binary(op, node, self.parse_multiplicative())
        return node

    def parse_multiplicative(self) -> Node:
        node = self.parse_unary()
        while self.peek().kind == "op" and self.peek().value in ("*", "/", "%"):
            op = self.advance().value
            node = Binary(op, node, self.parse_unary())
        return node

    def parse_unary(self) -> Node:
        if self.at("!", "not"):
            self.advance()
            return Unary("!", self.parse_unary())
        if self.peek().kind == "op" and self.peek().value == "-":
            self.advance()
            return Unary("-", self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> Node:
        node = self.parse_primary()
        while True:
            if self.at("."):
                self.advance()
                token = self.peek()
                if token.kind != "name":
                    raise self.error("expected field name after '.'", token)
                self.advance()
                node = Member(node, token.value)
            elif self.at("["):
                self.advance()
                index = self.parse_or()
                self.expect("]")
                node = Index(node, index)
            else:
                return node

    def parse_primary(self) -> Node:
        token = self.peek()
        if token.kind == "number":
            self.advance()
            return Literal(float(token.value) if "." in token.value else int(token.value))
        if token.kind == "string":
            self.advance()
            try:
                if token.value.startswith("\""):
                    return Literal(json.loads(token.value))
                return Literal(ast.literal_eval(token.value))
            except (ValueError, SyntaxError) as exc:
                raise self.error(f"invalid string literal ({exc})", token) from None
        if token.kind == "name":
            self.advance()
            if token.value in _CONSTANTS:
                return Literal(_CONSTANTS[token.value])
            if token.value in _FUNCTIONS and self.at("("):
                return self.parse_call(token)
            if token.value in _WORD_OPERATORS or token.value in ("and", "or", "not"):
                raise self.error("unexpected operator", token)
            return Name(token.value)
        if self.at("("):
            self.advance()
            node = self.parse_or()
            self.expect(")")
            return node
        if self.at("["):
            self.advance()
            items: list[Node] = []
            while not self.at("]"):
                items.append(self.parse_or())
                if not self.at("]"):
                    self.expect(",")
            self.expect("]")
            return ListLiteral(items)
        raise self.error("unexpected token", token)

    def parse_call(self, name: Token) -> Node:
        self.expect("(")
        args: list[Node] = []
        while not self.at(")"):
            args.append(self.parse_or())
            if not self.at(")"):
                self.expect(",")
        self.expect(")")
        if len(args) != 1:
            raise CompileError(f"{name.value}() takes exactly 1 argument ({len(args)} given): {self.text}")
        return Call(name.value, args)


@dataclass(frozen=True)
class Program:
    """A compiled expression."""

    source: str
    root: Node

    def run(self, context: Mapping[str, Any]) -> Any:
        """Evaluate against `context`. Raises EvalError."""
        try:
            return self.root.evaluate(context)
        except RecursionError:
            raise EvalError(f"expression is too deeply nested: {self.source}") from None


def compile_program(expression: str) -> Program:
    """Compile expression text. Raises CompileError."""
    try:
        root = _Parser(expression).parse()
    except RecursionError:
        raise CompileError(f"expression is too deeply nested: {expression}") from None
    return Program(source=expression, root=root)


class Evaluator:
    """Compiles and runs expressions, caching programs by source text."""

    def __init__(self) -> None:
        self._programs: dict[str, Program] = {}

    def compile(self, expression: str) -> Program:
        program = self._programs.get(expression)
        if program is None:
            program = compile_program(expression)
            self._programs[expression] = program
        return program

    def run(self, program: Program, context: Mapping[str, Any]) -> Any:
        return program.run(context)

    def match(self, expression: str, context: Mapping[str, Any]) -> bool:
        """Compile (cached) and run an expression that must yield a bool."""
        result = self.compile(expression).run(context)
        if not isinstance(result, bool):
            raise EvalError(
                f"expression must evaluate to bool, got {_type_name(result)}: {expression}"
            )
        return result
