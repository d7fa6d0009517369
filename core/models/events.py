"""Event model -- the message format stores use to notify each other."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


class Event(BaseModel):
    """A typed event that flows through the EventBus.

    Events are persisted to daily JSONL files for auditability.
    """

    id: str = Field(default_factory=lambda: f"evt_{uuid4().hex[:12]}")
    type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    source: str
    payload: dict = Field(default_factory=dict)
    metadata: dict | None = None

    def derive(self, type: str, source: str, payload: dict | None = None) -> Event:
        """Create a new event in the same correlation chain."""
        return Event(
            type=type,
            correlation_id=self.correlation_id,
            source=source,
            payload=payload or {},
        )


# -- Event type constants --

class EventTypes:
    """Well-known event type strings."""

    # Price history store added points or bootstrapped a baseline
    PRICES_UPDATED = "prices.updated"

    # Result cache dropped entries (payload: asset_id, or all=True)
    CACHE_CLEARED = "cache.cleared"

    # Engine
    RISK_CALCULATED = "risk.calculated"
    CONFIDENCE_RECORDED = "confidence.recorded"
