"""Restricted boolean expressions over a segment.

Used for step conditions such as ``segment.wordCount > 1000 and
'draft' not in segment.status``. Expressions are parsed with :mod:`ast` and
only a small node set is accepted: boolean logic, comparisons, basic
arithmetic, literals, ``len()``, a few string methods, and attribute access
on the single name ``segment`` restricted to :data:`SEGMENT_FIELDS`. There
is no access to builtins, globals or anything with side effects.

JavaScript spellings (``&&``, ``||``, ``!``, ``===``, ``!==``, ``true``,
``false``, ``null``) are accepted for configs written against the old UI.
"""

from __future__ import annotations

import ast
import operator
import re
from typing import Any, Callable, Dict, Mapping

from segflow.errors import ConfigValidationError

SEGMENT_FIELDS = ("id", "content", "wordCount", "tokens", "position", "status")

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_CMP_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_STR_METHODS: Dict[str, Callable[..., Any]] = {
    "lower": str.lower,
    "upper": str.upper,
    "strip": str.strip,
    "startswith": str.startswith,
    "endswith": str.endswith,
    "includes": lambda s, sub: sub in s,
}

_STRING_LITERAL = re.compile(r"""('(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")""")
_JS_WORDS = {"true": "True", "false": "False", "null": "None"}


class ConditionError(ConfigValidationError):
    pass


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_number_literal(node: ast.AST) -> bool:
    return isinstance(node, ast.Constant) and _is_number(node.value)


def _translate(expr: str) -> str:
    parts = _STRING_LITERAL.split(expr)
    for i in range(0, len(parts), 2):
        code = parts[i]
        code = code.replace("!==", "!=").replace("===", "==")
        code = code.replace("&&", " and ").replace("||", " or ")
        code = re.sub(r"!(?!=)", " not ", code)
        code = re.sub(r"\b(true|false|null)\b", lambda m: _JS_WORDS[m.group(1)], code)
        parts[i] = code
    return "".join(parts).strip()


def _check(node: ast.AST) -> None:
    if isinstance(node, ast.Expression):
        _check(node.body)
    elif isinstance(node, ast.BoolOp):
        for v in node.values:
            _check(v)
    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.Not, ast.USub, ast.UAdd)):
            raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
        _check(node.operand)
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in _BIN_OPS:
            raise ConditionError(f"Unsupported operator: {type(node.op).__name__}")
        if isinstance(node.op, ast.Mult) and any(
            isinstance(side, (ast.Constant, ast.List, ast.Tuple)) and not _is_number_literal(side)
            for side in (node.left, node.right)
        ):
            raise ConditionError("Multiplication is only allowed on numbers")
        _check(node.left)
        _check(node.right)
    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if type(op) not in _CMP_OPS:
                raise ConditionError(f"Unsupported comparison: {type(op).__name__}")
        _check(node.left)
        for c in node.comparators:
            _check(c)
    elif isinstance(node, ast.Constant):
        if not isinstance(node.value, (str, int, float, bool, type(None))):
            raise ConditionError(f"Unsupported literal: {node.value!r}")
    elif isinstance(node, (ast.List, ast.Tuple)):
        for e in node.elts:
            _check(e)
    elif isinstance(node, ast.Attribute):
        if not (isinstance(node.value, ast.Name) and node.value.id == "segment"):
            raise ConditionError("Only segment.<field> attribute access is allowed")
        if node.attr not in SEGMENT_FIELDS:
            raise ConditionError(f"Unknown segment field: {node.attr}")
    elif isinstance(node, ast.Call):
        if node.keywords:
            raise ConditionError("Keyword arguments are not allowed")
        func = node.func
        if isinstance(func, ast.Name) and func.id == "len" and len(node.args) == 1:
            _check(node.args[0])
        elif isinstance(func, ast.Attribute) and func.attr in _STR_METHODS:
            _check(func.value)
            for a in node.args:
                _check(a)
        else:
            raise ConditionError(f"Unsupported call: {ast.dump(func)}")
    elif isinstance(node, ast.Name):
        raise ConditionError(f"Unknown name: {node.id}")
    else:
        raise ConditionError(f"Unsupported expression: {type(node).__name__}")


def _eval(node: ast.AST, segment: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _eval(node.body, segment)
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for v in node.values:
                result = _eval(v, segment)
                if not result:
                    return result
            return result
        result = False
        for v in node.values:
            result = _eval(v, segment)
            if result:
                return result
        return result
    if isinstance(node, ast.UnaryOp):
        operand = _eval(node.operand, segment)
        if isinstance(node.op, ast.Not):
            return not operand
        return -operand if isinstance(node.op, ast.USub) else +operand
    if isinstance(node, ast.BinOp):
        left, right = _eval(node.left, segment), _eval(node.right, segment)
        # sequence repetition could allocate without bound
        if isinstance(node.op, ast.Mult) and not (_is_number(left) and _is_number(right)):
            raise ConditionError("Multiplication is only allowed on numbers")
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.Compare):
        left = _eval(node.left, segment)
        for op, comp in zip(node.ops, node.comparators):
            right = _eval(comp, segment)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, (ast.List, ast.Tuple)):
        return [_eval(e, segment) for e in node.elts]
    if isinstance(node, ast.Attribute):
        return segment.get(node.attr)
    if isinstance(node, ast.Call):
        if isinstance(node.func, ast.Name):
            return len(_eval(node.args[0], segment))
        target = _eval(node.func.value, segment)
        args = [_eval(a, segment) for a in node.args]
        return _STR_METHODS[node.func.attr](str(target), *args)
    raise ConditionError(f"Unsupported expression: {type(node).__name__}")


class Condition:
    def __init__(self, source: str):
        self.source = source
        try:
            self._tree = ast.parse(_translate(source), mode="eval")
        except SyntaxError as e:
            raise ConditionError(f"Invalid condition {source!r}: {e.msg}") from e
        _check(self._tree)

    def __repr__(self) -> str:
        return f"Condition({self.source!r})"

    def evaluate(self, segment: Mapping[str, Any]) -> bool:
        return bool(_eval(self._tree, segment))


def compile_condition(source: str) -> Condition:
    return Condition(source)


def segment_view(record: Mapping[str, Any], content: str) -> Dict[str, Any]:
    """The fixed set of fields a condition may read."""
    word_count = record.get("wordCount")
    if word_count is None:
        word_count = len(content.split())
    return {
        "id": record.get("id"),
        "content": content,
        "wordCount": word_count,
        "tokens": record.get("tokens") or 0,
        "position": record.get("position"),
        "status": record.get("status"),
    }
