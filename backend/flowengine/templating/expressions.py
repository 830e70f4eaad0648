"""Safe expression evaluation without eval()."""

from __future__ import annotations

import ast
import operator
import re
from typing import Any

from flowengine.templating.engine import WHOLE_TEMPLATE_RE, render_template_str, resolve_path

# Supported comparison operators
_OPS = {
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
    "contains": lambda a, b: b in a if hasattr(a, "__contains__") else False,
    "not_contains": lambda a, b: b not in a if hasattr(a, "__contains__") else True,
    "starts_with": lambda a, b: str(a).startswith(str(b)),
    "ends_with": lambda a, b: str(a).endswith(str(b)),
    "in": lambda a, b: a in b if hasattr(b, "__contains__") else False,
}

_EMPTY_OPS = {
    "is_empty": lambda a: a is None or a == "" or a == [] or a == {},
    "is_not_empty": lambda a: not (a is None or a == "" or a == [] or a == {}),
}

# e.g. "{{status}} == 'approved'"   or  "index >= 5"
_EXPR_RE = re.compile(
    r"^(.+?)\s+(==|!=|>=|<=|>|<|contains|not_contains|starts_with|ends_with|in)\s+(.+)$"
)
_UNARY_RE = re.compile(r"^(is_empty|is_not_empty)\s+(.+)$")
_IDENT_RE = re.compile(r"^[A-Za-z_][\w]*(\.[\w]+)*$")


class ExpressionError(ValueError):
    pass


def evaluate_condition(expr: Any, ctx: dict[str, Any]) -> bool:
    """
    Evaluate a simple comparison expression safely.

    Supports:
      - {{var}} == 'literal'
      - index < 3            (bare names resolve against ctx)
      - {{var}} contains 'text'
      - is_empty {{var}}
      - true / false / yes / no
    """
    if isinstance(expr, bool):
        return expr
    if expr is None:
        raise ExpressionError("Condition is empty")
    expr = str(expr).strip()
    if not expr:
        raise ExpressionError("Condition is empty")

    if expr.lower() in ("true", "yes"):
        return True
    if expr.lower() in ("false", "no"):
        return False

    unary_match = _UNARY_RE.match(expr)
    if unary_match:
        operand = _unary_operand(unary_match.group(2), ctx)
        return bool(_EMPTY_OPS[unary_match.group(1)](operand))

    rendered = render_template_str(expr, ctx)

    binary_match = _EXPR_RE.match(rendered)
    if binary_match:
        left = _operand(binary_match.group(1), ctx)
        right = _operand(binary_match.group(3), ctx)
        try:
            return bool(_OPS[binary_match.group(2)](left, right))
        except TypeError:
            return False

    return bool(_operand(rendered, ctx))


def _unary_operand(token: str, ctx: dict[str, Any]) -> Any:
    # Resolved before rendering so a missing variable reads as None.
    token = token.strip()
    whole = WHOLE_TEMPLATE_RE.match(token)
    if whole:
        return resolve_path(whole.group(1), ctx)
    if _IDENT_RE.match(token):
        return resolve_path(token, ctx)
    return _coerce(render_template_str(token, ctx))


def _operand(token: str, ctx: dict[str, Any]) -> Any:
    token = token.strip()
    if _IDENT_RE.match(token) and token.lower() not in ("true", "false", "yes", "no", "none", "null"):
        resolved = resolve_path(token, ctx)
        if resolved is not None:
            return resolved
    return _coerce(token)


def _coerce(value: str) -> Any:
    """Coerce a string token to a Python value."""
    stripped = value.strip()

    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in ("'", '"'):
        return stripped[1:-1]
    if stripped.lower() in ("true", "yes"):
        return True
    if stripped.lower() in ("false", "no"):
        return False
    if stripped.lower() in ("none", "null"):
        return None
    try:
        if "." in stripped:
            return float(stripped)
        return int(stripped)
    except ValueError:
        return stripped


# ── Arithmetic expressions (loop update steps) ─────────────────

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.USub: operator.neg, ast.UAdd: operator.pos, ast.Not: operator.not_}
_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}
_NAMED_CONSTANTS = {"true": True, "false": False, "null": None, "none": None}


def evaluate_expression(expr: str, ctx: dict[str, Any]) -> Any:
    """Evaluate an arithmetic/comparison expression over names in *ctx*.

    Only literals, names, attribute access on dicts, and the operators in
    the tables above are accepted.
    """
    rendered = render_template_str(str(expr), ctx)
    try:
        tree = ast.parse(rendered.strip(), mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Invalid expression '{expr}': {exc.msg}") from exc
    return _eval_node(tree.body, ctx)


def _eval_node(node: ast.AST, ctx: dict[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in ctx:
            return ctx[node.id]
        if node.id.lower() in _NAMED_CONSTANTS:
            return _NAMED_CONSTANTS[node.id.lower()]
        raise ExpressionError(f"Unknown name '{node.id}'")
    if isinstance(node, ast.Attribute):
        base = _eval_node(node.value, ctx)
        if isinstance(base, dict) and node.attr in base:
            return base[node.attr]
        raise ExpressionError(f"Cannot resolve attribute '{node.attr}'")
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        return _BIN_OPS[type(node.op)](_eval_node(node.left, ctx), _eval_node(node.right, ctx))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand, ctx))
    if isinstance(node, ast.BoolOp):
        values = [_eval_node(v, ctx) for v in node.values]
        return all(values) if isinstance(node.op, ast.And) else any(values)
    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, ctx)
        for op, comparator in zip(node.ops, node.comparators):
            if type(op) not in _CMP_OPS:
                raise ExpressionError("Unsupported comparison")
            right = _eval_node(comparator, ctx)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True
    raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


def parse_assignments(script: Any) -> list[tuple[str, str]]:
    """Split an update step into ``(name, expression)`` pairs.

    Accepts a mapping, or text with one ``name = expression`` per line or
    separated by ``;``.
    """
    if not script:
        return []
    if isinstance(script, dict):
        return [(str(k), str(v)) for k, v in script.items()]
    pairs: list[tuple[str, str]] = []
    for raw in re.split(r"[;\n]", str(script)):
        line = raw.strip()
        if not line:
            continue
        name, sep, expression = line.partition("=")
        name = name.strip()
        if not sep or not name.isidentifier() or expression.startswith("="):
            raise ExpressionError(f"Invalid assignment: '{line}'")
        pairs.append((name, expression.strip()))
    return pairs
