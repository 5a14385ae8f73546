"""Load the JSON configuration document and build plugin instances."""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tailpipe.config import WATCH_DIR
from tailpipe.errors import ConfigurationError
from tailpipe.plugins.registry import plugin_class
from tailpipe.schemas.config import PluginSpec, ServerConfig, ServerConfigFile

logger = logging.getLogger(__name__)


def read_config_file(path: str | Path) -> ServerConfigFile:
    """Parse and validate a config document.

    A missing file is not an error: a warning is logged and the defaults
    are returned.

    Raises:
        ConfigurationError: If the file is not valid JSON or fails validation.
    """
    path = Path(path).expanduser()
    if not path.exists():
        logger.warning("Config file not found, using defaults: %s", path)
        return ServerConfigFile()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc

    try:
        return ServerConfigFile.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config {path}:\n{exc}") from exc


def _build_plugin(spec: PluginSpec, category: str, max_retries: int) -> Any | None:
    """Instantiate one plugin, or log and return None if it cannot be built."""
    try:
        cls = plugin_class(spec.type, category)
        options = dict(spec.options)
        fields = getattr(cls, "options_model", None)
        if (
            fields is not None
            and "retries" in fields.model_fields
            and "retries" not in options
            and max_retries >= 1
        ):
            options["retries"] = max_retries
        return cls(name=spec.name, options=options)
    except Exception:
        logger.exception("Failed to load %s plugin %s (%s)", category, spec.name or "", spec.type)
        return None


def build_config(
    document: ServerConfigFile, *, watch_directory: str | Path | None = None
) -> ServerConfig:
    """Turn a config document into runtime config with plugin instances.

    Plugins that fail to build are skipped; pipelines referring to them will
    report the missing name at runtime.
    """
    directory = watch_directory or document.watch_directory or WATCH_DIR
    max_retries = document.options.max_retries

    filters = []
    for spec in document.plugins.filters:
        plugin = _build_plugin(spec, "filter", max_retries)
        if plugin is not None:
            filters.append(plugin)

    outputs = []
    for spec in document.plugins.outputs:
        plugin = _build_plugin(spec, "output", max_retries)
        if plugin is not None:
            outputs.append(plugin)

    return ServerConfig(
        watch_directory=Path(directory).expanduser(),
        filters=filters,
        outputs=outputs,
        pipelines=document.pipelines,
        global_filters=document.global_filters,
        global_outputs=document.global_outputs,
        options=document.options,
    )


def load_config(
    path: str | Path, *, watch_directory: str | Path | None = None
) -> ServerConfig:
    """Read, validate, and build a config in one step."""
    document = read_config_file(path)
    config = build_config(document, watch_directory=watch_directory)
    logger.info(
        "Config loaded: %s (%d filters, %d outputs, %d pipelines)",
        path,
        len(config.filters),
        len(config.outputs),
        len(config.pipelines),
    )
    return config


SAMPLE_CONFIG: dict[str, Any] = {
    "watchDirectory": "~/.claude/projects",
    "plugins": {
        "filters": [
            {
                "name": "ErrorFilter",
                "type": "KeywordFilter",
                "options": {"keywords": ["error", "ERROR"], "mode": "include", "caseSensitive": False},
            },
            {
                "name": "WarningFilter",
                "type": "KeywordFilter",
                "options": {"keywords": ["warning", "warn"], "mode": "include", "caseSensitive": False},
            },
            {
                "name": "UserActionFilter",
                "type": "FieldMatchFilter",
                "options": {"field": "action", "value": "login", "operator": "equals"},
            },
            {
                "name": "HighPriorityFilter",
                "type": "FieldMatchFilter",
                "options": {"field": "priority", "value": 5, "operator": "gte"},
            },
        ],
        "outputs": [
            {
                "name": "ConsoleOutput",
                "type": "ConsoleOutput",
                "options": {"format": "pretty", "timestamp": True},
            },
            {
                "name": "ErrorLogOutput",
                "type": "FileOutput",
                "options": {"outputPath": "./output/errors.jsonl", "mode": "append"},
            },
            {
                "name": "WarningLogOutput",
                "type": "FileOutput",
                "options": {"outputPath": "./output/warnings.jsonl", "mode": "append"},
            },
            {
                "name": "AllDataOutput",
                "type": "FileOutput",
                "options": {"outputPath": "./output/all-data.jsonl", "mode": "append"},
            },
        ],
    },
    "pipelines": [
        {"name": "ErrorPipeline", "filter": "ErrorFilter", "outputs": ["ErrorLogOutput", "ConsoleOutput"]},
        {"name": "WarningPipeline", "filter": "WarningFilter", "outputs": ["WarningLogOutput"]},
        {"name": "UserActionPipeline", "filter": "UserActionFilter", "outputs": ["ConsoleOutput"]},
        {
            "name": "HighPriorityErrorPipeline",
            "filters": ["HighPriorityFilter", "ErrorFilter"],
            "outputs": ["ConsoleOutput", "ErrorLogOutput"],
        },
    ],
    "globalFilters": [],
    "globalOutputs": ["AllDataOutput"],
    "options": {
        "debounceMs": 1000,
        "maxRetries": 3,
        "logLevel": "info",
        "enableBuffering": True,
        "tailFromNow": False,
        "fileSuffix": ".jsonl",
    },
}


def sample_config() -> str:
    """Render the sample config document as pretty JSON."""
    return json.dumps(SAMPLE_CONFIG, indent=2) + "\n"
