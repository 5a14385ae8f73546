"""Built-in filter plugins: keyword search and field matching."""

import json
import re
from typing import Any, Literal

from pydantic import Field

from tailpipe.plugins.base import BaseFilter, PluginOptions
from tailpipe.plugins.fields import MISSING, get_field, get_text
from tailpipe.plugins.registry import register_plugin

Mode = Literal["include", "exclude"]


def _as_text(value: Any) -> str:
    """Render a JSON value as text the way a JSON-native consumer would."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ------------------------------------------------------------------
# KeywordFilter
# ------------------------------------------------------------------


class KeywordFilterOptions(PluginOptions):
    keywords: list[str]
    mode: Mode = "include"
    case_sensitive: bool = False
    search_fields: list[str] = Field(
        default_factory=list,
        description="Dotted field paths to search (empty = the whole record as JSON)",
    )


@register_plugin("KeywordFilter", "filter", aliases=("keyword",))
class KeywordFilter(BaseFilter):
    """Pass records containing any keyword (include) or none of them (exclude)."""

    default_name = "KeywordFilter"
    options_model = KeywordFilterOptions

    def __init__(self, name: str | None = None, options: dict | None = None) -> None:
        super().__init__(name)
        self.options = KeywordFilterOptions.model_validate(options or {})
        if self.options.case_sensitive:
            self._keywords = list(self.options.keywords)
        else:
            self._keywords = [k.lower() for k in self.options.keywords]

    def _search_text(self, record: Any) -> str:
        if not self.options.search_fields:
            return _as_text(record)
        return " ".join(get_text(record, f) for f in self.options.search_fields)

    def filter(self, record: Any) -> bool:
        text = self._search_text(record)
        if not self.options.case_sensitive:
            text = text.lower()
        hit = any(k in text for k in self._keywords)
        return hit if self.options.mode == "include" else not hit


# ------------------------------------------------------------------
# FieldMatchFilter
# ------------------------------------------------------------------


Operator = Literal[
    "equals", "contains", "startsWith", "endsWith", "gt", "gte", "lt", "lte", "regex"
]


class FieldMatchFilterOptions(PluginOptions):
    field: str = Field(description="Dotted path, e.g. 'user.name' or 'items[0].id'")
    value: Any = None
    operator: Operator = "equals"
    case_sensitive: bool = True
    mode: Mode = "include"


@register_plugin("FieldMatchFilter", "filter", aliases=("field_match", "fieldmatch"))
class FieldMatchFilter(BaseFilter):
    """Compare one field of the record against a configured value."""

    default_name = "FieldMatchFilter"
    options_model = FieldMatchFilterOptions

    def __init__(self, name: str | None = None, options: dict | None = None) -> None:
        super().__init__(name)
        self.options = FieldMatchFilterOptions.model_validate(options or {})
        self._pattern: re.Pattern | None = None
        if self.options.operator == "regex":
            flags = 0 if self.options.case_sensitive else re.IGNORECASE
            self._pattern = re.compile(_as_text(self.options.value), flags)

    def filter(self, record: Any) -> bool:
        actual = get_field(record, self.options.field)
        matched = self._matches(actual)
        return matched if self.options.mode == "include" else not matched

    def _matches(self, actual: Any) -> bool:
        target = self.options.value
        if actual is MISSING or actual is None:
            return target is None

        op = self.options.operator
        if op == "equals":
            return self._equals(actual, target)
        if op in ("gt", "gte", "lt", "lte"):
            a, b = _as_number(actual), _as_number(target)
            if a is None or b is None:
                return False
            return {"gt": a > b, "gte": a >= b, "lt": a < b, "lte": a <= b}[op]
        if op == "regex":
            return self._pattern.search(_as_text(actual)) is not None

        a, b = _as_text(actual), _as_text(target)
        if not self.options.case_sensitive:
            a, b = a.lower(), b.lower()
        if op == "contains":
            return b in a
        if op == "startsWith":
            return a.startswith(b)
        return a.endswith(b)

    def _equals(self, actual: Any, target: Any) -> bool:
        if isinstance(actual, str) and isinstance(target, str) and not self.options.case_sensitive:
            return actual.lower() == target.lower()
        # bool is an int subclass; keep true != 1
        if isinstance(actual, bool) != isinstance(target, bool):
            return False
        return actual == target
