# src/hecship/filter/expression.py
"""Safe expression compiler for record filters.

Expressions are a restricted subset of Python, parsed with the ast module
and interpreted by walking the tree. Nothing is ever passed to eval().

Two phases:
1. Compile: parse, reject every construct outside the whitelist, and
   pre-compile regular expressions given to matches()
2. Evaluate: walk the validated tree against one record's filter view

The only variable is ``record``. A handful of string helpers cover what
HTTP log filters usually need:

    record['hostname'] == 'api.example.com'
    record.get('method') in ['POST', 'PUT'] and record['responseStatus'] >= 500
    'x_forwarded_for' in record['requestHeaders']
    matches(record['url'], r'/api/v[0-9]+/') and not endswith(record['url'], '.js')
    contains(lower(record.get('hostname', '')), 'internal')
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable
from typing import Any


class ExpressionSecurityError(Exception):
    """Raised when an expression contains forbidden constructs."""


class ExpressionSyntaxError(Exception):
    """Raised when an expression is not valid Python syntax or has a bad regex."""


class ExpressionEvaluationError(Exception):
    """Raised when a valid expression fails against a particular record.

    The underlying KeyError/TypeError/ZeroDivisionError is chained via
    __cause__.
    """


_COMPARISONS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_ARITHMETIC: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CONSTANTS = {"True": True, "False": False, "None": None}


def _text(value: Any, helper: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise TypeError(f"{helper}() expects a string, got {type(value).__name__}")


def _contains(haystack: Any, needle: Any) -> bool:
    text = _text(haystack, "contains")
    return text is not None and _text(needle, "contains") in text  # type: ignore[operator]


def _startswith(value: Any, prefix: Any) -> bool:
    text = _text(value, "startswith")
    return text is not None and text.startswith(_text(prefix, "startswith") or "")


def _endswith(value: Any, suffix: Any) -> bool:
    text = _text(value, "endswith")
    return text is not None and text.endswith(_text(suffix, "endswith") or "")


def _lower(value: Any) -> str | None:
    text = _text(value, "lower")
    return text.lower() if text is not None else None


# Helper name -> (implementation, arity). matches() is handled separately
# because its pattern is compiled ahead of evaluation.
_HELPERS: dict[str, tuple[Callable[..., Any], int]] = {
    "contains": (_contains, 2),
    "startswith": (_startswith, 2),
    "endswith": (_endswith, 2),
    "lower": (_lower, 1),
}

_MATCHES = "matches"

_FORBIDDEN: dict[type[ast.AST], str] = {
    ast.Lambda: "lambda",
    ast.ListComp: "list comprehension",
    ast.DictComp: "dict comprehension",
    ast.SetComp: "set comprehension",
    ast.GeneratorExp: "generator expression",
    ast.Await: "await",
    ast.Yield: "yield",
    ast.YieldFrom: "yield from",
    ast.NamedExpr: "assignment expression (:=)",
    ast.JoinedStr: "f-string",
    ast.Starred: "starred expression (*)",
    ast.Slice: "slice (e.g. [1:3])",
}


def _is_record_get(node: ast.AST) -> bool:
    return (
        isinstance(node, ast.Attribute)
        and isinstance(node.value, ast.Name)
        and node.value.id == "record"
        and node.attr == "get"
    )


def _reads_record(node: ast.expr) -> bool:
    """record, record[...][...], record.get(...)[...]"""
    match node:
        case ast.Name(id="record"):
            return True
        case ast.Subscript(value=inner):
            return _reads_record(inner)
        case ast.Call(func=func):
            return _is_record_get(func)
    return False


class _Validator(ast.NodeVisitor):
    """Collects every problem in an expression and pre-compiles regexes."""

    def __init__(self) -> None:
        self.problems: list[str] = []
        self.patterns: dict[str, re.Pattern[str]] = {}

    def generic_visit(self, node: ast.AST) -> None:
        construct = _FORBIDDEN.get(type(node))
        if construct is not None:
            self.problems.append(f"{construct} is not allowed")
            return
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id != "record" and node.id not in _CONSTANTS:
            self.problems.append(f"unknown name {node.id!r} (only 'record' is available)")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        # record.get is only reachable as a call target, see visit_Call
        if _is_record_get(node):
            self.problems.append("'record.get' must be called, e.g. record.get('field')")
        else:
            self.problems.append(f"attribute access {node.attr!r} is not allowed")

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if not _reads_record(node.value):
            self.problems.append("subscripts are only allowed on record data")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        if node.keywords:
            self.problems.append(f"keyword arguments are not allowed in {ast.unparse(node.func)}()")

        if _is_record_get(node.func):
            self._check_arity("record.get", node, 1, 2)
        elif isinstance(node.func, ast.Name) and node.func.id == _MATCHES:
            self._check_arity(_MATCHES, node, 2, 2)
            if len(node.args) == 2:
                self._compile_pattern(node.args[1])
        elif isinstance(node.func, ast.Name) and node.func.id in _HELPERS:
            arity = _HELPERS[node.func.id][1]
            self._check_arity(node.func.id, node, arity, arity)
        else:
            self.problems.append(f"call to {ast.unparse(node.func)} is not allowed")
            return

        for arg in node.args:
            self.visit(arg)

    def visit_Compare(self, node: ast.Compare) -> None:
        operands = [node.left, *node.comparators]
        for position, op in enumerate(node.ops):
            if isinstance(op, ast.Is | ast.IsNot):
                pair = operands[position : position + 2]
                if not any(isinstance(o, ast.Constant) and o.value is None for o in pair):
                    self.problems.append("'is' / 'is not' may only compare with None")
        self.generic_visit(node)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if type(node.op) not in _ARITHMETIC:
            self.problems.append(f"operator {type(node.op).__name__} is not allowed")
        self.generic_visit(node)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> None:
        if type(node.op) not in _UNARY:
            self.problems.append(f"operator {type(node.op).__name__} is not allowed")
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if node.value is not None and not isinstance(node.value, str | int | float | bool):
            self.problems.append(f"{type(node.value).__name__} literals are not allowed")

    def visit_Dict(self, node: ast.Dict) -> None:
        if None in node.keys:
            self.problems.append("dict unpacking (**) is not allowed")
        self.generic_visit(node)

    def _check_arity(self, name: str, node: ast.Call, low: int, high: int) -> None:
        count = len(node.args)
        if not low <= count <= high:
            expected = str(low) if low == high else f"{low} or {high}"
            self.problems.append(f"{name}() takes {expected} argument(s), got {count}")

    def _compile_pattern(self, node: ast.expr) -> None:
        if not (isinstance(node, ast.Constant) and isinstance(node.value, str)):
            self.problems.append("matches() pattern must be a string literal")
            return
        try:
            self.patterns[node.value] = re.compile(node.value)
        except re.error as e:
            raise ExpressionSyntaxError(f"invalid regular expression {node.value!r}: {e}") from e


class FilterExpression:
    """Compiled, validated filter expression.

    Allowed:
    - record['field'], record.get('field'), record.get('field', default)
    - comparisons, ``in`` / ``not in``, ``is None`` / ``is not None``
    - and, or, not, conditional expressions
    - str/int/float/bool/None literals and list/tuple/set/dict displays
    - + - * / // %
    - contains(s, sub), startswith(s, prefix), endswith(s, suffix),
      lower(s), matches(s, 'regex'); all treat a None subject as no match

    Example:
        expr = FilterExpression("record['hostname'] == 'api.example.com'")
        expr.evaluate({"hostname": "api.example.com"})  # True
    """

    def __init__(self, expression: str) -> None:
        """Parse and validate.

        Raises:
            ExpressionSyntaxError: If the text is not a Python expression or
                a matches() pattern is not a valid regular expression
            ExpressionSecurityError: If the expression uses anything outside
                the whitelist
        """
        self._expression = expression
        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as e:
            raise ExpressionSyntaxError(f"Invalid syntax: {e.msg}") from e
        except (RecursionError, MemoryError, ValueError) as e:
            raise ExpressionSyntaxError(f"Invalid syntax: {type(e).__name__}: {e}") from e

        validator = _Validator()
        try:
            validator.visit(tree)
        except RecursionError as e:
            raise ExpressionSyntaxError("Expression is nested too deeply") from e
        if validator.problems:
            raise ExpressionSecurityError("; ".join(validator.problems))
        self._body = tree.body
        self._patterns = validator.patterns

    @property
    def expression(self) -> str:
        return self._expression

    def evaluate(self, record: dict[str, Any]) -> Any:
        """Evaluate against a record's filter view."""
        try:
            return self._eval(self._body, record)
        except RecursionError as e:
            raise ExpressionEvaluationError("Expression is nested too deeply to evaluate") from e

    def _eval(self, node: ast.expr, record: dict[str, Any]) -> Any:
        match node:
            case ast.Constant(value=value):
                return value
            case ast.Name(id="record"):
                return record
            case ast.Name(id=name):
                return _CONSTANTS[name]
            case ast.Subscript(value=container, slice=key):
                return _lookup(self._eval(container, record), self._eval(key, record))
            case ast.Call():
                return self._call(node, record)
            case ast.Compare(left=left, ops=ops, comparators=comparators):
                current = self._eval(left, record)
                for op, comparator in zip(ops, comparators, strict=True):
                    right = self._eval(comparator, record)
                    try:
                        if not _COMPARISONS[type(op)](current, right):
                            return False
                    except TypeError as e:
                        raise ExpressionEvaluationError(
                            f"cannot compare {type(current).__name__} and {type(right).__name__} with {type(op).__name__}"
                        ) from e
                    current = right
                return True
            case ast.BoolOp(op=ast.And(), values=values):
                result: Any = True
                for value in values:
                    result = self._eval(value, record)
                    if not result:
                        return result
                return result
            case ast.BoolOp(op=ast.Or(), values=values):
                result = False
                for value in values:
                    result = self._eval(value, record)
                    if result:
                        return result
                return result
            case ast.BinOp(left=left, op=op, right=right):
                lhs, rhs = self._eval(left, record), self._eval(right, record)
                try:
                    return _ARITHMETIC[type(op)](lhs, rhs)
                except (TypeError, ZeroDivisionError) as e:
                    raise ExpressionEvaluationError(f"{type(op).__name__} failed: {e}") from e
            case ast.UnaryOp(op=op, operand=operand):
                try:
                    return _UNARY[type(op)](self._eval(operand, record))
                except TypeError as e:
                    raise ExpressionEvaluationError(f"{type(op).__name__} failed: {e}") from e
            case ast.IfExp(test=test, body=body, orelse=orelse):
                return self._eval(body if self._eval(test, record) else orelse, record)
            case ast.List(elts=elts):
                return [self._eval(e, record) for e in elts]
            case ast.Tuple(elts=elts):
                return tuple(self._eval(e, record) for e in elts)
            case ast.Set(elts=elts):
                try:
                    return {self._eval(e, record) for e in elts}
                except TypeError as e:
                    raise ExpressionEvaluationError(f"cannot build set: {e}") from e
            case ast.Dict(keys=keys, values=values):
                try:
                    pairs = zip(keys, values, strict=True)
                    return {self._eval(k, record): self._eval(v, record) for k, v in pairs if k is not None}
                except TypeError as e:
                    raise ExpressionEvaluationError(f"cannot build dict: {e}") from e
        raise ExpressionSecurityError(f"Unsupported node: {type(node).__name__}")

    def _call(self, node: ast.Call, record: dict[str, Any]) -> Any:
        args = [self._eval(arg, record) for arg in node.args]
        try:
            if _is_record_get(node.func):
                return record.get(*args)
            assert isinstance(node.func, ast.Name)
            if node.func.id == _MATCHES:
                subject = _text(args[0], _MATCHES)
                return subject is not None and self._patterns[args[1]].search(subject) is not None
            return _HELPERS[node.func.id][0](*args)
        except TypeError as e:
            raise ExpressionEvaluationError(f"invalid argument to {ast.unparse(node.func)}(): {e}") from e

    def __repr__(self) -> str:
        return f"FilterExpression({self._expression!r})"


def _lookup(container: Any, key: Any) -> Any:
    try:
        return container[key]
    except KeyError as e:
        if isinstance(container, dict):
            message = f"Field '{key}' not found. Available fields: {sorted(map(str, container))}"
        else:
            message = f"Key '{key}' not found in {type(container).__name__}"
        raise ExpressionEvaluationError(message) from e
    except IndexError as e:
        raise ExpressionEvaluationError(f"Index {key} out of range for {type(container).__name__}") from e
    except TypeError as e:
        raise ExpressionEvaluationError(f"Cannot access '{key}' on {type(container).__name__}: {e}") from e
