"""Schemas for the tailpipe JSON configuration document.

The file format uses camelCase keys (``watchDirectory``, ``globalFilters``,
``debounceMs``); snake_case is accepted too.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PluginSpec(_ConfigModel):
    """One plugin instance to build from the registry."""

    name: str | None = Field(
        default=None,
        description="Registry key used by pipelines (defaults to the plugin's own name)",
    )
    type: str = Field(
        validation_alias=AliasChoices("type", "module", "kind"),
        description="Registered plugin kind, e.g. KeywordFilter",
    )
    options: dict[str, Any] = Field(default_factory=dict)


class PluginsSection(_ConfigModel):
    filters: list[PluginSpec] = Field(default_factory=list)
    outputs: list[PluginSpec] = Field(default_factory=list)


class PipelineSpec(_ConfigModel):
    """A named routing rule: filter conjunction -> outputs."""

    name: str
    filter: str | None = None
    filters: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)

    @property
    def filter_names(self) -> list[str]:
        """``filter`` followed by ``filters``. Empty means always pass."""
        names = [self.filter] if self.filter else []
        return names + list(self.filters)


class ServerOptions(_ConfigModel):
    """Runtime tuning knobs."""

    debounce_ms: int = Field(default=1000, ge=0)
    max_retries: int = Field(default=3, ge=0)
    log_level: Literal["debug", "info", "warning", "error"] = "info"
    enable_buffering: bool = Field(
        default=True,
        description="Read only appended bytes; False re-reads every file from byte 0",
    )
    tail_from_now: bool = Field(
        default=False,
        description="Baseline pre-existing files at their current size instead of reading them",
    )
    file_suffix: str = ".jsonl"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "warn":
                return "warning"
        return value

    @field_validator("file_suffix")
    @classmethod
    def _dotted_suffix(cls, value: str) -> str:
        value = value.strip().lower()
        if value and not value.startswith("."):
            value = "." + value
        return value

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


class ServerConfigFile(_ConfigModel):
    """The configuration document as written on disk."""

    watch_directory: str | None = None
    plugins: PluginsSection = Field(default_factory=PluginsSection)
    pipelines: list[PipelineSpec] = Field(default_factory=list)
    global_filters: list[str] = Field(default_factory=list)
    global_outputs: list[str] = Field(default_factory=list)
    options: ServerOptions = Field(default_factory=ServerOptions)


class ServerConfig(BaseModel):
    """Runtime configuration with plugin instances already built."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    watch_directory: Path
    filters: list[Any] = Field(default_factory=list)
    outputs: list[Any] = Field(default_factory=list)
    pipelines: list[PipelineSpec] = Field(default_factory=list)
    global_filters: list[str] = Field(default_factory=list)
    global_outputs: list[str] = Field(default_factory=list)
    options: ServerOptions = Field(default_factory=ServerOptions)
