"""Template engine — {{variable}} expansion against the run context scope."""

from __future__ import annotations

import json
import re
from typing import Any

# Matches {{path.to.var}} or {{path.to.var | default_value}}
_TEMPLATE_RE = re.compile(r"\{\{\s*([\w.]+)\s*(?:\|\s*(.+?))?\s*\}\}")
WHOLE_TEMPLATE_RE = re.compile(r"^\s*\{\{\s*([\w.]+)\s*(?:\|\s*(.+?))?\s*\}\}\s*$")


def build_scope(variables: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
    """Scope used for templates and conditions.

    Variables sit at the top level (``{{item}}``) and both stores are also
    reachable by name (``{{data.apiResponse.status}}``).
    """
    scope: dict[str, Any] = dict(variables)
    scope["variables"] = variables
    scope["data"] = data
    return scope


def resolve_path(path: str, ctx: dict[str, Any]) -> Any:
    """Resolve dotted path like 'data.apiResponse.body.id' against a scope dict."""
    current: Any = ctx
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part in ("length", "len", "count"):
            current = len(current)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            idx = int(part)
            current = current[idx] if idx < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def render_template_str(template: str, ctx: dict[str, Any]) -> str:
    """Replace all {{path}} placeholders in a string with values from ctx."""
    if not isinstance(template, str):
        return template

    def replacer(match: re.Match) -> str:
        value = resolve_path(match.group(1), ctx)
        if value is None:
            default = match.group(2)
            return default.strip().strip("'\"") if default else match.group(0)
        return _stringify(value)

    return _TEMPLATE_RE.sub(replacer, template)


def render_value(value: Any, ctx: dict[str, Any]) -> Any:
    """Render templates recursively.

    A string that is exactly one placeholder keeps the referenced value's
    native type, so ``"{{items}}"`` yields the list itself.
    """
    if isinstance(value, str):
        whole = WHOLE_TEMPLATE_RE.match(value)
        if whole:
            resolved = resolve_path(whole.group(1), ctx)
            if resolved is not None:
                return resolved
        return render_template_str(value, ctx)
    if isinstance(value, dict):
        return {k: render_value(v, ctx) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(item, ctx) for item in value]
    return value
