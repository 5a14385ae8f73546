"""Markdown output: write a markdown-valued field of each record to .md files."""

import json
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import Field

from tailpipe.plugins.base import BaseOutput, PluginOptions
from tailpipe.plugins.fields import MISSING, get_field
from tailpipe.plugins.registry import register_plugin

ENTRY_SEPARATOR = "\n\n---\n\n"
MAX_FILENAME_LENGTH = 200

_TEMPLATE_RE = re.compile(r"\{\{(\S+?)\}\}")
_UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_filename(name: str) -> str:
    name = _UNSAFE_CHARS_RE.sub("_", name)
    name = _WHITESPACE_RE.sub("_", name)
    return name.lstrip(".")[:MAX_FILENAME_LENGTH]


def interpolate(template: str, record: Any) -> str:
    """Replace ``{{field.path}}`` with the record's value; unknown fields stay as-is."""

    def _sub(match: re.Match) -> str:
        value = get_field(record, match.group(1))
        if value is MISSING:
            return match.group(0)
        return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)

    return _TEMPLATE_RE.sub(_sub, template)


class MarkdownOutputOptions(PluginOptions):
    output_dir: str
    markdown_field: str = Field(description="Dotted path to the markdown string")
    filename_field: str | None = None
    filename_prefix: str = ""
    filename_suffix: str = ""
    mode: Literal["single", "multiple"] = "multiple"
    single_file_name: str = "output.md"
    include_metadata: bool = True
    metadata_fields: list[str] = Field(default_factory=list)
    create_dir: bool = True
    template_header: str | None = None
    template_footer: str | None = None


@register_plugin("MarkdownOutput", "output", aliases=("markdown",))
class MarkdownOutput(BaseOutput):
    """Write one file per record (``multiple``) or append to one file (``single``).

    Records whose markdown field is missing or not a string are skipped with
    a warning.
    """

    default_name = "MarkdownOutput"
    options_model = MarkdownOutputOptions

    def __init__(self, name: str | None = None, options: dict | None = None) -> None:
        super().__init__(name)
        self.options = MarkdownOutputOptions.model_validate(options or {})
        self.output_dir = Path(self.options.output_dir).expanduser().resolve()
        self._counter = 0

    def output(self, record: Any) -> None:
        if self.options.create_dir:
            self.output_dir.mkdir(parents=True, exist_ok=True)

        markdown = get_field(record, self.options.markdown_field)
        if not isinstance(markdown, str) or not markdown:
            self.logger.warning(
                "Markdown field missing or not a string: %s", self.options.markdown_field
            )
            return

        content = self.render(record, markdown)
        if self.options.mode == "single":
            target = self.output_dir / self.options.single_file_name
            if target.exists():
                with target.open("a", encoding="utf-8") as f:
                    f.write(ENTRY_SEPARATOR + content)
            else:
                target.write_text(content, encoding="utf-8")
        else:
            target = self.output_dir / self.filename_for(record)
            target.write_text(content, encoding="utf-8")
        self.logger.debug("Wrote markdown to %s", target)

    def render(self, record: Any, markdown: str) -> str:
        parts = []
        if self.options.template_header:
            parts.append(interpolate(self.options.template_header, record) + "\n\n")
        if self.options.include_metadata:
            parts.append("---\n" + self._front_matter(record) + "---\n\n")
        parts.append(markdown)
        if self.options.template_footer:
            parts.append("\n\n" + interpolate(self.options.template_footer, record))
        return "".join(parts)

    def _front_matter(self, record: Any) -> str:
        lines = [f"date: {datetime.now(UTC).isoformat()}"]
        fields = self.options.metadata_fields
        if not fields and isinstance(record, dict):
            fields = [k for k in record if k != self.options.markdown_field]
        for field in fields:
            value = get_field(record, field)
            if value is MISSING or value is None or value == "":
                continue
            lines.append(f"{field}: {json.dumps(value, ensure_ascii=False)}")
        return "\n".join(lines) + "\n"

    def filename_for(self, record: Any) -> str:
        stem = ""
        if self.options.filename_field:
            value = get_field(record, self.options.filename_field)
            if value is not MISSING and value not in (None, ""):
                stem = sanitize_filename(str(value))
        if not stem:
            self._counter += 1
            stamp = re.sub(r"[:.+]", "-", datetime.now(UTC).isoformat())
            stem = f"{stamp}_{self._counter}"

        filename = f"{self.options.filename_prefix}{stem}{self.options.filename_suffix}"
        if not filename.endswith(".md"):
            filename += ".md"
        return filename
