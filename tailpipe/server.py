"""Tail server: ChangeDetector -> IncrementalReader -> PipelineEngine.

Owns the per-file offset table (through the reader) and the start/stop
lifecycle. Files are processed one at a time; an event for a path that is
already queued or being processed is dropped, since the offset table means
the next event for that path picks up anything missed.
"""

import asyncio
import inspect
import logging
from enum import StrEnum
from pathlib import Path
from typing import Any

from tailpipe.errors import ConfigurationError, FileReadError
from tailpipe.pipeline.engine import EventSink, PipelineEngine
from tailpipe.schemas.config import ServerConfig
from tailpipe.schemas.events import (
    EventKind,
    FileEvent,
    FileEventType,
    PipelineEvent,
    RecordContext,
)
from tailpipe.watcher.detector import ChangeDetector, scan_existing
from tailpipe.watcher.reader import IncrementalReader

logger = logging.getLogger(__name__)


class ServerState(StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"


class TailServer:
    """Watches a directory of JSONL files and routes new records through pipelines.

    Usage::

        server = TailServer(load_config("config.json"))
        await server.start()
        ...
        await server.stop()

    ``on_event`` receives every PipelineEvent (engine and server events) for
    integration and testing. Callback failures are logged, never raised.
    """

    def __init__(self, config: ServerConfig, *, on_event: EventSink | None = None) -> None:
        self._config = config
        self._on_event = on_event
        self._state = ServerState.STOPPED
        self._engine = PipelineEngine(on_event=self._emit)
        self._reader = IncrementalReader(enable_buffering=config.options.enable_buffering)
        self._detector = ChangeDetector(
            config.watch_directory,
            on_event=self.handle_event,
            debounce_seconds=config.options.debounce_seconds,
            suffix=config.options.file_suffix,
        )
        self._lock = asyncio.Lock()
        self._active: set[Path] = set()
        self._load_plugins()

    def _load_plugins(self) -> None:
        for plugin in self._config.filters:
            self._engine.register_filter(plugin)
            logger.info("Registered filter: %s", plugin.name)
        for plugin in self._config.outputs:
            self._engine.register_output(plugin)
            logger.info("Registered output: %s", plugin.name)

        self._engine.set_pipelines(self._config.pipelines)
        logger.info("Pipelines: %d", len(self._config.pipelines))
        if self._config.global_filters:
            self._engine.set_global_filters(self._config.global_filters)
            logger.info("Global filters: %s", ", ".join(self._config.global_filters))
        if self._config.global_outputs:
            self._engine.set_global_outputs(self._config.global_outputs)
            logger.info("Global outputs: %s", ", ".join(self._config.global_outputs))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == ServerState.RUNNING

    @property
    def engine(self) -> PipelineEngine:
        return self._engine

    @property
    def reader(self) -> IncrementalReader:
        return self._reader

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    @property
    def watch_directory(self) -> Path:
        return Path(self._config.watch_directory)

    def add_filter(self, plugin: Any) -> None:
        self._engine.register_filter(plugin)
        logger.info("Added filter: %s", plugin.name)

    def add_output(self, plugin: Any) -> None:
        self._engine.register_output(plugin)
        logger.info("Added output: %s", plugin.name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _validate_watch_directory(self) -> Path:
        root = self.watch_directory
        if not root.is_dir():
            raise ConfigurationError(f"Watch directory does not exist: {root}")
        return root

    async def start(self) -> None:
        """Start watching, then read (or baseline) the files already present.

        Raises:
            ConfigurationError: If the watch directory does not exist.
        """
        if self.running:
            logger.warning("Server is already running")
            return

        root = self._validate_watch_directory()
        logger.info("Starting tail server on %s", root)
        self._detector.start()
        self._state = ServerState.RUNNING
        self._emit(PipelineEvent(kind=EventKind.STARTED, context=RecordContext(path=root)))
        await self._initial_scan(root)

    async def _initial_scan(self, root: Path) -> None:
        options = self._config.options
        tail_from_now = options.tail_from_now and options.enable_buffering
        files = scan_existing(root, options.file_suffix)
        logger.info("Found %d existing file(s)", len(files))

        for path in files:
            if not self.running:
                break
            if tail_from_now:
                try:
                    self._reader.initialize_position(path)
                except FileReadError as exc:
                    self._report_read_error(path, exc)
            else:
                await self.process_file(path)

    async def stop(self) -> None:
        """Stop watching, let in-flight work finish, then flush buffering outputs.

        Outputs stay open, so the server can be started again. Call
        ``aclose()`` to release them.
        """
        if not self.running:
            logger.warning("Server is not running")
            return

        logger.info("Stopping tail server...")
        self._state = ServerState.STOPPED
        self._detector.stop()
        await self.wait_idle()
        await self._flush_outputs()
        self._emit(PipelineEvent(kind=EventKind.STOPPED, context=RecordContext(path=self.watch_directory)))

    async def wait_idle(self) -> None:
        """Wait for debounced event deliveries that are still running."""
        current = asyncio.current_task()
        pending = [t for t in self._detector.tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Stop if running, then close every output that defines ``aclose()``."""
        if self.running:
            await self.stop()
        await self._close_outputs()

    async def _flush_outputs(self) -> None:
        for name, plugin in self._engine.outputs.items():
            flush = getattr(plugin, "flush", None)
            if flush is None:
                continue
            try:
                result = flush()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error flushing output %s", name)

    async def _close_outputs(self) -> None:
        for name, plugin in self._engine.outputs.items():
            aclose = getattr(plugin, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception:
                logger.exception("Error closing output %s", name)

    async def serve_forever(self) -> None:
        """Run until cancelled (Ctrl+C / task cancellation)."""
        await self.start()
        try:
            while self.running:
                await asyncio.sleep(1)
        except (asyncio.CancelledError, KeyboardInterrupt):
            pass
        finally:
            await self.aclose()

    async def scan_once(self) -> int:
        """Read every existing file in full once, without watching.

        Returns the number of files processed.

        Raises:
            ConfigurationError: If the watch directory does not exist.
        """
        root = self._validate_watch_directory()
        files = scan_existing(root, self._config.options.file_suffix)
        for path in files:
            await self.process_file(path)
        await self.aclose()
        return len(files)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def handle_event(self, event: FileEvent) -> None:
        """React to one debounced change."""
        if event.type == FileEventType.REMOVED:
            logger.info("File removed: %s", event.path)
            self._reader.reset_position(event.path)
            return

        if event.type == FileEventType.ADDED:
            # A create or move-in puts a new file at this path.
            self._reader.reset_position(event.path)

        if not event.path.exists():
            logger.warning("File does not exist: %s", event.path)
            return

        await self.process_file(event.path)

    async def process_file(self, path: str | Path) -> bool:
        """Read new lines from ``path`` and route each record.

        Returns False if the event was dropped because ``path`` is already
        queued or in flight.
        """
        path = Path(path)
        if path in self._active:
            logger.warning("Already processing %s, dropping event", path)
            return False

        self._active.add(path)
        try:
            async with self._lock:
                await self._process_file(path)
        finally:
            self._active.discard(path)
        return True

    async def _process_file(self, path: Path) -> None:
        self._emit(PipelineEvent(kind=EventKind.PROCESSING_START, context=RecordContext(path=path)))
        lines = self._reader.read(path)
        try:
            for parsed in lines:
                context = RecordContext(path=path, line_number=parsed.line_number)
                if not parsed.ok:
                    logger.error("JSON parse error at %s: %s", context, parsed.error)
                    self._emit(
                        PipelineEvent(
                            kind=EventKind.PARSE_ERROR,
                            context=context,
                            line=parsed.text,
                            error=parsed.error,
                        )
                    )
                    continue
                await self._engine.process(parsed.record, context)
        except FileReadError as exc:
            self._report_read_error(path, exc)
            return
        except Exception as exc:
            logger.exception("Error processing %s", path)
            self._emit(
                PipelineEvent(
                    kind=EventKind.PROCESSING_ERROR, context=RecordContext(path=path), error=str(exc)
                )
            )
            return
        finally:
            lines.close()

        self._emit(PipelineEvent(kind=EventKind.PROCESSING_COMPLETE, context=RecordContext(path=path)))

    def _report_read_error(self, path: Path, exc: FileReadError) -> None:
        logger.error("%s", exc)
        self._emit(
            PipelineEvent(kind=EventKind.PROCESSING_ERROR, context=RecordContext(path=path), error=str(exc))
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(self, event: PipelineEvent) -> None:
        _log_event(event)
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Event callback failed for %s", event.kind)


def _log_event(event: PipelineEvent) -> None:
    kind = event.kind
    if kind == EventKind.PROCESSING_START:
        logger.info("Processing: %s", event.context)
    elif kind == EventKind.PROCESSING_COMPLETE:
        logger.info("Processed: %s", event.context)
    elif kind == EventKind.FILTERED_GLOBAL:
        logger.debug("Filtered (global): %s", event.context)
    elif kind == EventKind.FILTERED_PIPELINE:
        logger.debug("Filtered (%s by %s): %s", event.pipeline, event.plugin, event.context)
    elif kind == EventKind.RECORD_OUTPUT_PIPELINE:
        logger.debug("Output %s -> %s: %s", event.pipeline, event.plugin, event.context)
    elif kind == EventKind.RECORD_OUTPUT_GLOBAL:
        logger.debug("Global output %s: %s", event.plugin, event.context)
    elif kind == EventKind.PIPELINE_RESULTS and event.report is not None:
        logger.debug(
            "Pipeline results %s: %s",
            event.context,
            ", ".join(f"{p.pipeline_name}={p.status}" for p in event.report.pipelines) or "none",
        )
