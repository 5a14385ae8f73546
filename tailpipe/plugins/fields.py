"""Dotted field-path lookup shared by the built-in plugins."""

import re
from typing import Any

_INDEX_RE = re.compile(r"\[(\d+)\]")

MISSING = object()


def get_field(record: Any, path: str) -> Any:
    """Resolve ``path`` (e.g. ``"message.content[0].text"``) inside ``record``.

    Returns ``MISSING`` when any step does not exist.
    """
    current = record
    for part in path.split("."):
        key, _, _ = part.partition("[")
        if key:
            if not isinstance(current, dict) or key not in current:
                return MISSING
            current = current[key]
        for match in _INDEX_RE.finditer(part):
            index = int(match.group(1))
            if not isinstance(current, list) or index >= len(current):
                return MISSING
            current = current[index]
    return current


def get_text(record: Any, path: str) -> str:
    """Like ``get_field`` but returns a string ('' when missing or null)."""
    value = get_field(record, path)
    if value is MISSING or value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
