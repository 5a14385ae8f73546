"""File output: append records to a JSONL (or pretty JSON) file."""

import json
from pathlib import Path
from typing import Any, Literal

from tailpipe.plugins.base import BaseOutput, PluginOptions
from tailpipe.plugins.registry import register_plugin


class FileOutputOptions(PluginOptions):
    output_path: str
    mode: Literal["append", "overwrite"] = "append"
    create_dir: bool = True
    format: Literal["jsonl", "json"] = "jsonl"


@register_plugin("FileOutput", "output", aliases=("file",))
class FileOutput(BaseOutput):
    """Append-only writer.

    In ``overwrite`` mode the file is truncated on the first write of this
    instance's lifetime, then appended to.
    """

    default_name = "FileOutput"
    options_model = FileOutputOptions

    def __init__(self, name: str | None = None, options: dict | None = None) -> None:
        super().__init__(name)
        self.options = FileOutputOptions.model_validate(options or {})
        self.path = Path(self.options.output_path).expanduser().resolve()
        self._first_write = True

    def _format(self, record: Any) -> str:
        if self.options.format == "json":
            return json.dumps(record, ensure_ascii=False, indent=2) + "\n"
        return json.dumps(record, ensure_ascii=False) + "\n"

    def output(self, record: Any) -> None:
        if self.options.create_dir:
            self.path.parent.mkdir(parents=True, exist_ok=True)

        file_mode = "a"
        if self.options.mode == "overwrite" and self._first_write:
            file_mode = "w"
        with self.path.open(file_mode, encoding="utf-8") as f:
            f.write(self._format(record))
        self._first_write = False
        self.logger.debug("Wrote record to %s", self.path)
