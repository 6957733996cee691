"""
Flat placeholder substitution for operator-authored message templates.

``{{data.clientData.name}}`` is replaced by the value found at that dotted
path in the payload. There are no loops, conditionals or helpers: templates
stay auditable and rendering has no side effects. Rendering never raises; a
path that cannot be resolved renders as an empty string.
"""

import json
import re
from typing import Any, List

_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_\-]+(?:\.[A-Za-z0-9_\-]+)*)\s*\}\}")


def lookup_path(payload: Any, path: str) -> Any:
    """
    Resolve a dot-delimited path.

    Walks dict keys, list indexes (``tags.0``) and object attributes.
    Returns None as soon as a segment is missing.
    """
    value: Any = payload

    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, (list, tuple)):
            if not part.isdigit():
                return None
            index = int(part)
            value = value[index] if index < len(value) else None
        else:
            value = getattr(value, part, None)

    return value


def stringify(value: Any) -> str:
    """Render one resolved value as template text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, default=str, separators=(",", ":"))
    return str(value)


def render(template: Any, payload: Any) -> str:
    """
    Substitute every ``{{path}}`` placeholder in ``template``.

    Args:
        template: Template text; None or non-string input is coerced
        payload: Nested dict/list/object tree

    Returns:
        Rendered text
    """
    if template is None:
        return ""
    text = template if isinstance(template, str) else str(template)

    def _replace(match: "re.Match[str]") -> str:
        try:
            return stringify(lookup_path(payload, match.group(1)))
        except Exception:  # noqa: BLE001
            return ""

    return _PLACEHOLDER_PATTERN.sub(_replace, text)


def find_placeholders(template: str) -> List[str]:
    """Return the distinct paths referenced by ``template`` in order."""
    paths: List[str] = []
    for match in _PLACEHOLDER_PATTERN.finditer(template or ""):
        if match.group(1) not in paths:
            paths.append(match.group(1))
    return paths


def has_unresolved_placeholders(text: str) -> bool:
    """True when ``text`` still contains ``{{...}}`` tokens."""
    return bool(re.search(r"\{\{.*?\}\}", text or ""))
