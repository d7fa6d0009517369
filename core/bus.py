"""AsyncIOBus -- in-process async pub/sub between the engine's stores.

The price store, result cache and confidence tracker never call each other
directly. They announce state changes here (new prices, cleared caches,
recorded calculations) and interested stores react. Every event is also
appended to a daily JSONL file for audit.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Coroutine

from core.models.events import Event
from core.time_context import TimeContext

logger = logging.getLogger(__name__)

Callback = Callable[[Event], Coroutine[Any, Any, None]]


class AsyncIOBus:
    """In-process async pub/sub event bus with JSONL audit logging.

    Implements the EventBus protocol.

    Usage:
        bus = AsyncIOBus(events_dir=Path("~/.valuerisk/cache/events"))
        bus.subscribe("prices.updated", on_prices_updated)
        await bus.publish(event)

    `publish` returns once every subscriber has finished, so a store that
    publishes inside its own critical section must not be subscribed to
    an event it can trigger from the same section.
    """

    def __init__(
        self,
        events_dir: Path | None = None,
        time_context: TimeContext | None = None,
    ) -> None:
        self._subscribers: dict[str, list[Callback]] = {}
        self._wildcard_subscribers: list[Callback] = []
        self._events_dir = events_dir
        self._time = time_context or TimeContext.live()
        if self._events_dir is not None:
            self._events_dir.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "asyncio_bus"

    async def publish(self, event: Event) -> None:
        """Publish an event: persist to audit log, then dispatch to subscribers."""
        self._persist(event)

        callbacks = self._subscribers.get(event.type, []) + self._wildcard_subscribers
        if not callbacks:
            logger.debug("No subscribers for event type: %s", event.type)
            return

        logger.debug(
            "Publishing %s to %d subscriber(s) [source=%s]",
            event.type,
            len(callbacks),
            event.source,
        )

        # Handler failures are logged, never propagated to the publisher
        await asyncio.gather(
            *(self._safe_invoke(cb, event) for cb in callbacks),
            return_exceptions=True,
        )

    def subscribe(self, event_type: str, callback: Callback) -> None:
        """Register a callback for events of the given type.

        Use event_type="*" to subscribe to all events.
        """
        if event_type == "*":
            self._wildcard_subscribers.append(callback)
        else:
            self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug("Subscribed to '%s': %s", event_type, callback)

    def unsubscribe(self, event_type: str, callback: Callback) -> None:
        """Remove a previously registered callback."""
        if event_type == "*":
            if callback in self._wildcard_subscribers:
                self._wildcard_subscribers.remove(callback)
        elif callback in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(callback)

    async def _safe_invoke(self, callback: Callback, event: Event) -> None:
        try:
            await callback(event)
        except Exception:
            logger.exception(
                "Error in event handler for %s [correlation=%s]",
                event.type,
                event.correlation_id,
            )

    def _persist(self, event: Event) -> None:
        """Append event to today's JSONL audit file."""
        if self._events_dir is None:
            return
        filepath = self._events_dir / f"{self._time.today().isoformat()}.jsonl"
        try:
            with open(filepath, "a") as f:
                f.write(event.model_dump_json() + "\n")
        except OSError:
            logger.exception("Failed to persist event to %s", filepath)

    def subscriber_count(self, event_type: str | None = None) -> int:
        """Return the number of subscribers, optionally filtered by event type."""
        if event_type is None:
            total = sum(len(cbs) for cbs in self._subscribers.values())
            return total + len(self._wildcard_subscribers)
        if event_type == "*":
            return len(self._wildcard_subscribers)
        return len(self._subscribers.get(event_type, []))
