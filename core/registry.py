"""Plugin registry -- stores and retrieves protocol implementations.

At startup main.py instantiates the provider plugins and registers them here.
The engine queries the registry by protocol key and never imports plugins.
"""

from __future__ import annotations

import logging
from typing import Any

from core.protocols import (
    CandleProvider,
    EventBus,
    FundingProvider,
    HistoryProvider,
    IndicatorProvider,
    MacroIndexProvider,
    SentimentProvider,
)

logger = logging.getLogger(__name__)

# All supported protocol types
PROTOCOL_TYPES = {
    "event_bus": EventBus,
    "candles": CandleProvider,
    "indicators": IndicatorProvider,
    "sentiment": SentimentProvider,
    "funding": FundingProvider,
    "macro": MacroIndexProvider,
    "history": HistoryProvider,
}


class PluginRegistry:
    """Central registry for all protocol implementations.

    Usage:
        registry = PluginRegistry()
        registry.register("macro", YahooIndexProvider("vix", "^VIX"))
        registry.register("macro", YahooIndexProvider("dxy", "DX-Y.NYB"))

        vix = registry.first("macro", "vix")
    """

    def __init__(self) -> None:
        self._plugins: dict[str, dict[str, Any]] = {key: {} for key in PROTOCOL_TYPES}

    def register(self, protocol_key: str, instance: Any) -> None:
        """Register a plugin instance under a protocol type.

        The instance must have a `name` property and satisfy the protocol.
        """
        if protocol_key not in PROTOCOL_TYPES:
            raise ValueError(
                f"Unknown protocol key '{protocol_key}'. "
                f"Must be one of: {list(PROTOCOL_TYPES.keys())}"
            )
        if not isinstance(instance, PROTOCOL_TYPES[protocol_key]):
            raise TypeError(
                f"{type(instance).__name__} does not implement the '{protocol_key}' protocol"
            )

        name = instance.name
        if name in self._plugins[protocol_key]:
            logger.warning("Overwriting existing %s plugin '%s'", protocol_key, name)

        self._plugins[protocol_key][name] = instance
        logger.info("Registered %s plugin: %s", protocol_key, name)

    def get(self, protocol_key: str, name: str) -> Any:
        """Get a specific plugin by protocol type and name.

        Raises KeyError if not found.
        """
        if protocol_key not in self._plugins:
            raise KeyError(f"Unknown protocol key: {protocol_key}")
        if name not in self._plugins[protocol_key]:
            available = list(self._plugins[protocol_key].keys())
            raise KeyError(
                f"No {protocol_key} plugin named '{name}'. "
                f"Available: {available}"
            )
        return self._plugins[protocol_key][name]

    def first(self, protocol_key: str, name: str | None = None) -> Any | None:
        """The named plugin, or the first registered one; None if absent."""
        plugins = self._plugins.get(protocol_key, {})
        if name is not None:
            return plugins.get(name)
        return next(iter(plugins.values()), None)

    def get_all(self, protocol_key: str) -> list[Any]:
        """Get all plugins registered for a protocol type."""
        if protocol_key not in self._plugins:
            raise KeyError(f"Unknown protocol key: {protocol_key}")
        return list(self._plugins[protocol_key].values())

    def has(self, protocol_key: str, name: str) -> bool:
        return (
            protocol_key in self._plugins
            and name in self._plugins[protocol_key]
        )

    def names(self, protocol_key: str) -> list[str]:
        if protocol_key not in self._plugins:
            return []
        return list(self._plugins[protocol_key].keys())

    def summary(self) -> dict[str, list[str]]:
        """Return a summary of all registered plugins."""
        return {
            key: list(plugins.keys())
            for key, plugins in self._plugins.items()
            if plugins
        }

    async def close_all(self) -> None:
        """Close every plugin that owns a network client."""
        seen: set[int] = set()
        for plugins in self._plugins.values():
            for plugin in plugins.values():
                if id(plugin) in seen:
                    continue
                seen.add(id(plugin))
                close = getattr(plugin, "close", None)
                if close is not None:
                    try:
                        await close()
                    except Exception:
                        logger.exception("Failed to close plugin %s", plugin.name)
