"""Record routing: global filters -> pipelines -> outputs.

Evaluation order for every record is fixed:

1. Global filters, in order. Any rejection drops the record before any
   pipeline runs (``filtered-global``). A missing global filter is skipped
   with a warning; a global filter that raises counts as a rejection.
2. Each pipeline, in declaration order and independently of the others:
   its filters form a conjunction; if all pass, its outputs run in order.
   A missing filter or a raising filter fails that pipeline only. A missing
   or raising output fails that (pipeline, output) pair only.
3. Global outputs, once the record survived step 1, regardless of how the
   pipelines went.

Every plugin call is awaited in sequence; nothing fans out concurrently.
"""

import inspect
import logging
from collections.abc import Callable, Iterable
from typing import Any

from tailpipe.errors import PluginExecutionError, PluginLookupError, TailpipeError
from tailpipe.schemas.config import PipelineSpec
from tailpipe.schemas.events import (
    EventKind,
    OutputResult,
    PipelineEvent,
    PipelineReport,
    PipelineResult,
    PipelineStatus,
    RecordContext,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[PipelineEvent], None]


async def invoke(fn: Callable[[Any], Any], record: Any) -> Any:
    """Call a sync or async plugin method and return its (awaited) result."""
    result = fn(record)
    if inspect.isawaitable(result):
        result = await result
    return result


class PipelineEngine:
    """Registry of named filters/outputs plus the pipeline routing table.

    Usage::

        engine = PipelineEngine(on_event=print)
        engine.register_filter(KeywordFilter("Errors", {"keywords": ["error"]}))
        engine.register_output(ConsoleOutput("Console"))
        engine.set_pipelines([PipelineSpec(name="errors", filter="Errors", outputs=["Console"])])
        report = await engine.process(record, RecordContext(path=path, line_number=3))
    """

    def __init__(self, *, on_event: EventSink | None = None) -> None:
        self._filters: dict[str, Any] = {}
        self._outputs: dict[str, Any] = {}
        self._pipelines: list[PipelineSpec] = []
        self._global_filters: list[str] = []
        self._global_outputs: list[str] = []
        self._on_event = on_event

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @property
    def filters(self) -> dict[str, Any]:
        return dict(self._filters)

    @property
    def outputs(self) -> dict[str, Any]:
        return dict(self._outputs)

    @property
    def pipelines(self) -> list[PipelineSpec]:
        return list(self._pipelines)

    def register_filter(self, plugin: Any) -> None:
        """Register a filter under ``plugin.name``. A repeated name replaces the old one."""
        if plugin.name in self._filters:
            logger.warning("Filter %s replaced", plugin.name)
        self._filters[plugin.name] = plugin

    def register_output(self, plugin: Any) -> None:
        """Register an output under ``plugin.name``. A repeated name replaces the old one."""
        if plugin.name in self._outputs:
            logger.warning("Output %s replaced", plugin.name)
        self._outputs[plugin.name] = plugin

    def set_pipelines(self, pipelines: Iterable[PipelineSpec | dict]) -> None:
        self._pipelines = [
            p if isinstance(p, PipelineSpec) else PipelineSpec.model_validate(p) for p in pipelines
        ]

    def set_global_filters(self, names: Iterable[str]) -> None:
        self._global_filters = list(names)

    def set_global_outputs(self, names: Iterable[str]) -> None:
        self._global_outputs = list(names)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(self, record: Any, context: RecordContext | None = None) -> PipelineReport:
        """Route one record and return what happened to it.

        Never raises for plugin problems; they are captured in the report.
        """
        context = context or RecordContext()
        report = PipelineReport(context=context)
        try:
            if not await self._apply_global_filters(record, context):
                report.filtered_global = True
                self._emit(EventKind.FILTERED_GLOBAL, context, record=record)
                return report

            for pipeline in self._pipelines:
                report.pipelines.append(await self._run_pipeline(pipeline, record, context))

            if self._global_outputs:
                report.global_outputs = await self._run_outputs(
                    self._global_outputs, record, context, pipeline=None
                )

            self._emit(EventKind.PIPELINE_RESULTS, context, record=record, report=report)
        except Exception as exc:
            logger.exception("Pipeline processing error at %s", context)
            self._emit(EventKind.PIPELINE_ERROR, context, record=record, error=str(exc))
        return report

    async def _apply_global_filters(self, record: Any, context: RecordContext) -> bool:
        for name in self._global_filters:
            plugin = self._filters.get(name)
            if plugin is None:
                logger.warning("Global filter not found: %s", name)
                continue
            try:
                passed = await invoke(plugin.filter, record)
            except Exception as exc:
                logger.error("Global filter %s failed at %s: %s", name, context, exc)
                return False
            if not passed:
                logger.debug("Global filter %s rejected %s", name, context)
                return False
        return True

    async def _run_pipeline(
        self, pipeline: PipelineSpec, record: Any, context: RecordContext
    ) -> PipelineResult:
        try:
            rejected_by = await self._apply_pipeline_filters(pipeline, record)
        except TailpipeError as exc:
            logger.error("Pipeline %s failed at %s: %s", pipeline.name, context, exc)
            return PipelineResult(
                pipeline_name=pipeline.name, status=PipelineStatus.FAILED, error=str(exc)
            )

        if rejected_by is not None:
            self._emit(
                EventKind.FILTERED_PIPELINE,
                context,
                record=record,
                pipeline=pipeline.name,
                plugin=rejected_by,
            )
            return PipelineResult(pipeline_name=pipeline.name, status=PipelineStatus.FILTERED)

        outputs = await self._run_outputs(pipeline.outputs, record, context, pipeline=pipeline.name)
        return PipelineResult(
            pipeline_name=pipeline.name,
            status=PipelineStatus.SUCCESS,
            output_results=outputs,
        )

    async def _apply_pipeline_filters(self, pipeline: PipelineSpec, record: Any) -> str | None:
        """Return the name of the first rejecting filter, or None if all pass.

        Raises:
            PluginLookupError: A filter name is not registered.
            PluginExecutionError: A filter raised.
        """
        for name in pipeline.filter_names:
            plugin = self._filters.get(name)
            if plugin is None:
                raise PluginLookupError("filter", name)
            try:
                passed = await invoke(plugin.filter, record)
            except Exception as exc:
                raise PluginExecutionError(name, exc) from exc
            if not passed:
                return name
        return None

    async def _run_outputs(
        self,
        names: list[str],
        record: Any,
        context: RecordContext,
        *,
        pipeline: str | None,
    ) -> list[OutputResult]:
        label = f"pipeline {pipeline}" if pipeline else "global"
        kind = EventKind.RECORD_OUTPUT_PIPELINE if pipeline else EventKind.RECORD_OUTPUT_GLOBAL
        results: list[OutputResult] = []

        for name in names:
            plugin = self._outputs.get(name)
            if plugin is None:
                error = PluginLookupError("output", name)
                logger.warning("%s (%s)", error, label)
                results.append(OutputResult(output_name=name, success=False, error=str(error)))
                continue

            try:
                await invoke(plugin.output, record)
            except Exception as exc:
                error = PluginExecutionError(name, exc)
                logger.error("Output error (%s -> %s) at %s: %s", label, name, context, exc)
                results.append(OutputResult(output_name=name, success=False, error=str(error)))
                continue

            results.append(OutputResult(output_name=name, success=True))
            self._emit(kind, context, record=record, pipeline=pipeline, plugin=name)

        return results

    def _emit(self, kind: EventKind, context: RecordContext, **fields: Any) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(PipelineEvent(kind=kind, context=context, **fields))
        except Exception:
            logger.exception("Event callback failed for %s", kind)
