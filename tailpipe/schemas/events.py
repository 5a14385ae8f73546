"""Schemas for file change events, parsed lines, and pipeline reports.

Covers: watcher output (FileEvent) -> reader output (ParsedLine)
-> engine output (PipelineReport) and the observable PipelineEvent stream.
"""

from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class FileEventType(StrEnum):
    """Kind of change observed for a watched file."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class FileEvent(BaseModel):
    """A single debounced change for one path."""

    type: FileEventType
    path: Path


class WatchedFile(BaseModel):
    """Read position for one watched file.

    ``last_read_offset`` is the byte position just after the last complete
    line consumed. ``line_count`` is the number of lines consumed up to that
    offset, kept so line numbers in diagnostics stay exact across reads.
    ``device`` and ``inode`` identify the file the offset belongs to; a
    different identity at the same path means the file was replaced.
    """

    path: Path
    last_read_offset: int = Field(default=0, ge=0)
    last_known_size: int = Field(default=0, ge=0)
    line_count: int = Field(default=0, ge=0)
    device: int | None = None
    inode: int | None = None


class ParsedLine(BaseModel):
    """One complete line read from a file, parsed or failed."""

    path: Path
    line_number: int = Field(ge=1)
    text: str
    record: Any = None
    error: str | None = Field(default=None, description="JSON decode failure, if any")

    @property
    def ok(self) -> bool:
        return self.error is None


class RecordContext(BaseModel):
    """Where a record came from. Used for diagnostics only."""

    path: Path | None = None
    line_number: int | None = None

    def __str__(self) -> str:
        if self.path is None:
            return "<unknown>"
        if self.line_number is None:
            return str(self.path)
        return f"{self.path}:{self.line_number}"


# --- Pipeline report ---


class PipelineStatus(StrEnum):
    """Outcome of one pipeline for one record."""

    SUCCESS = "success"
    FAILED = "failed"
    FILTERED = "filtered"


class OutputResult(BaseModel):
    """Outcome of one output invocation."""

    output_name: str
    success: bool
    error: str = ""


class PipelineResult(BaseModel):
    """Outcome of one pipeline for one record."""

    pipeline_name: str
    status: PipelineStatus
    error: str = ""
    output_results: list[OutputResult] = Field(default_factory=list)

    @property
    def filtered(self) -> bool:
        return self.status == PipelineStatus.FILTERED


class PipelineReport(BaseModel):
    """Aggregated outcome of processing one record through the engine."""

    context: RecordContext = Field(default_factory=RecordContext)
    filtered_global: bool = False
    pipelines: list[PipelineResult] = Field(default_factory=list)
    global_outputs: list[OutputResult] = Field(default_factory=list)

    def output_status(self, pipeline_name: str) -> dict[str, bool]:
        """Map output name -> success for the first pipeline with this name."""
        for result in self.pipelines:
            if result.pipeline_name == pipeline_name:
                return {o.output_name: o.success for o in result.output_results}
        return {}

    @property
    def failures(self) -> int:
        """Number of failed pipelines plus failed output invocations."""
        count = sum(1 for p in self.pipelines if p.status == PipelineStatus.FAILED)
        for p in self.pipelines:
            count += sum(1 for o in p.output_results if not o.success)
        count += sum(1 for o in self.global_outputs if not o.success)
        return count


# --- Observable events ---


class EventKind(StrEnum):
    """Names of the events the server and engine report."""

    STARTED = "started"
    STOPPED = "stopped"
    PROCESSING_START = "processing-start"
    PROCESSING_COMPLETE = "processing-complete"
    PROCESSING_ERROR = "processing-error"
    PARSE_ERROR = "parse-error"
    FILTERED_GLOBAL = "filtered-global"
    FILTERED_PIPELINE = "filtered-pipeline"
    RECORD_OUTPUT_PIPELINE = "record-output-pipeline"
    RECORD_OUTPUT_GLOBAL = "record-output-global"
    PIPELINE_RESULTS = "pipeline-results"
    PIPELINE_ERROR = "pipeline-error"


class PipelineEvent(BaseModel):
    """A structured observation passed to ``on_event`` callbacks."""

    kind: EventKind
    context: RecordContext = Field(default_factory=RecordContext)
    record: Any = None
    pipeline: str | None = None
    plugin: str | None = Field(default=None, description="Filter or output name")
    line: str | None = Field(default=None, description="Raw text for parse errors")
    error: str | None = None
    report: PipelineReport | None = None
