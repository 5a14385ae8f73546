"""Console output: echo each record to stdout."""

import json
from datetime import UTC, datetime
from typing import Any, Literal

import click

from tailpipe.plugins.base import BaseOutput, PluginOptions
from tailpipe.plugins.registry import register_plugin

COMPACT_FIELDS = 3
COMPACT_VALUE_WIDTH = 20


class ConsoleOutputOptions(PluginOptions):
    format: Literal["json", "pretty", "compact"] = "json"
    colorize: bool = True
    timestamp: bool = True


def format_compact(record: Any) -> str:
    """First few keys of an object, long strings truncated."""
    if not isinstance(record, dict):
        return json.dumps(record, ensure_ascii=False)
    parts = []
    for key in list(record)[:COMPACT_FIELDS]:
        value = record[key]
        if isinstance(value, str) and len(value) > COMPACT_VALUE_WIDTH:
            value = value[:COMPACT_VALUE_WIDTH] + "..."
        parts.append(f"{key}: {value}")
    if len(record) > COMPACT_FIELDS:
        parts.append(f"... (+{len(record) - COMPACT_FIELDS} more)")
    return "{ " + ", ".join(parts) + " }"


@register_plugin("ConsoleOutput", "output", aliases=("console",))
class ConsoleOutput(BaseOutput):
    default_name = "ConsoleOutput"
    options_model = ConsoleOutputOptions

    def __init__(self, name: str | None = None, options: dict | None = None) -> None:
        super().__init__(name)
        self.options = ConsoleOutputOptions.model_validate(options or {})

    def render(self, record: Any) -> str:
        prefix = ""
        if self.options.timestamp:
            stamp = f"[{datetime.now(UTC).isoformat()}]"
            prefix = (click.style(stamp, fg="bright_black") if self.options.colorize else stamp) + " "

        fmt = self.options.format
        if fmt == "pretty":
            body = json.dumps(record, ensure_ascii=False, indent=2)
        elif fmt == "compact":
            body = format_compact(record)
        else:
            body = json.dumps(record, ensure_ascii=False)
        return prefix + body

    def output(self, record: Any) -> None:
        click.echo(self.render(record), color=self.options.colorize or None)
