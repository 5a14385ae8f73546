"""Exception hierarchy for tailpipe.

Only ``ConfigurationError`` is allowed to escape ``TailServer.start()``.
Everything else is caught at the boundary of the unit that failed (one line,
one plugin call, one file read) and turned into a logged event.
"""

from pathlib import Path


class TailpipeError(Exception):
    """Base class for all tailpipe errors."""


class ConfigurationError(TailpipeError):
    """Invalid or unusable configuration (e.g. missing watch directory)."""


class PluginLookupError(TailpipeError):
    """A filter or output name is referenced but was never registered."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} plugin not found: {name}")
        self.kind = kind
        self.name = name


class PluginExecutionError(TailpipeError):
    """A filter or output raised while handling a record."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"{name}: {cause}")
        self.name = name
        self.cause = cause


class FileReadError(TailpipeError):
    """Stat or open failed for a watched file. The stored offset is untouched."""

    def __init__(self, path: str | Path, cause: OSError) -> None:
        super().__init__(f"Cannot read {path}: {cause}")
        self.path = Path(path)
        self.cause = cause
