"""TimeContext -- the single source of "now" for every store.

In production mode `now()` is always the real UTC time. In fixed mode the
clock only moves when told to, which is how cooldowns, TTLs and prediction
horizons are exercised deterministically.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Literal

from pydantic import BaseModel, Field


class TimeContext(BaseModel):
    """Controls temporal visibility for the entire system."""

    current_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    mode: Literal["production", "fixed"] = "production"

    @classmethod
    def live(cls) -> TimeContext:
        """Create a production-mode TimeContext that follows the wall clock."""
        return cls(mode="production")

    @classmethod
    def at(cls, dt: datetime) -> TimeContext:
        """Create a fixed-mode TimeContext frozen at `dt` (naive values are UTC)."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return cls(current_time=dt, mode="fixed")

    def now(self) -> datetime:
        if self.mode == "production":
            return datetime.now(timezone.utc)
        return self.current_time

    def today(self) -> date:
        """Current UTC calendar day. Its daily close is never complete."""
        return self.now().date()

    def advance(self, delta: timedelta) -> None:
        """Move a fixed clock forward (only valid in fixed mode)."""
        if self.mode != "fixed":
            raise RuntimeError("Cannot advance time in production mode")
        self.current_time = self.current_time + delta

    def advance_to(self, dt: datetime) -> None:
        if self.mode != "fixed":
            raise RuntimeError("Cannot advance time in production mode")
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        self.current_time = dt

    @property
    def is_fixed(self) -> bool:
        return self.mode == "fixed"
