"""Filter and output plugin contracts.

A filter decides pass/reject for a record; an output consumes a record for
a side effect. Either may be sync or async. Records are shared by reference
across every plugin that sees them: plugins must not mutate a record and
should copy it first if they need a modified version.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


@runtime_checkable
class FilterPlugin(Protocol):
    name: str

    def filter(self, record: Any) -> bool | Awaitable[bool]: ...


@runtime_checkable
class OutputPlugin(Protocol):
    name: str

    def output(self, record: Any) -> None | Awaitable[None]: ...


class PluginOptions(BaseModel):
    """Base for plugin option models. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class _BasePlugin(ABC):
    default_name: str = ""
    options_model: type[PluginOptions] = PluginOptions

    def __init__(self, name: str | None = None) -> None:
        self.name = name or self.default_name or type(self).__name__
        self.logger = logging.getLogger(f"{type(self).__module__}.{self.name}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class BaseFilter(_BasePlugin):
    """Convenience base class for filters."""

    @abstractmethod
    def filter(self, record: Any) -> bool | Awaitable[bool]:
        """Return True to let the record through."""


class BaseOutput(_BasePlugin):
    """Convenience base class for outputs."""

    @abstractmethod
    def output(self, record: Any) -> None | Awaitable[None]:
        """Consume one record."""

    async def aclose(self) -> None:
        """Release resources. Called once when the server stops."""
