"""Explicit registry of plugin kinds.

Configuration refers to plugins by kind (``"type": "KeywordFilter"``); the
registry maps each kind to a factory taking an options mapping. Nothing is
imported by path at runtime: a kind must be registered to be usable.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

PluginFactory = Callable[..., Any]

_REGISTRY: dict[str, tuple[str, str, PluginFactory]] = {}


def _key(kind: str) -> str:
    return kind.strip().lower()


def register_plugin(kind: str, category: str, *, aliases: tuple[str, ...] = ()):
    """Class decorator: register ``cls`` under ``kind`` (and ``aliases``).

    ``category`` is ``"filter"`` or ``"output"``. The decorated class must
    accept ``name`` and ``options`` keyword arguments.
    """
    if category not in ("filter", "output"):
        raise ValueError(f"Unknown plugin category: {category}")

    def decorator(cls):
        for k in (kind, *aliases):
            if _key(k) in _REGISTRY:
                logger.warning("Plugin kind %s re-registered by %s", k, cls.__name__)
            _REGISTRY[_key(k)] = (k, category, cls)
        return cls

    return decorator


def plugin_class(kind: str, category: str) -> PluginFactory:
    """Look up the factory registered for ``kind``.

    Raises:
        KeyError: If ``kind`` is not registered.
        ValueError: If ``kind`` is registered under the other category.
    """
    _ensure_builtins()
    entry = _REGISTRY.get(_key(kind))
    if entry is None:
        raise KeyError(f"Unknown plugin kind: {kind}")
    _, registered_category, factory = entry
    if registered_category != category:
        raise ValueError(f"{kind} is a {registered_category} plugin, not a {category}")
    return factory


def create_plugin(
    kind: str,
    category: str,
    *,
    name: str | None = None,
    options: Mapping[str, Any] | None = None,
) -> Any:
    """Instantiate a registered plugin.

    Raises:
        KeyError: If ``kind`` is not registered.
        ValueError: If ``kind`` is registered under the other category.
    """
    factory = plugin_class(kind, category)
    return factory(name=name, options=dict(options or {}))


def available_plugins() -> dict[str, str]:
    """Return ``{kind: category}`` for every registered kind."""
    _ensure_builtins()
    return {kind: category for kind, category, _ in sorted(_REGISTRY.values(), key=lambda e: e[0].lower())}


def _ensure_builtins() -> None:
    # Importing the modules runs their @register_plugin decorators.
    from tailpipe.plugins import console, file, filters, http, markdown  # noqa: F401
