"""Error taxonomy shared by every component.

Only the engine facade lets these escape to callers. Stores and fetchers
catch provider errors at their boundary and degrade instead.
"""

from __future__ import annotations


class ValueRiskError(Exception):
    """Base class for all domain errors."""


class DataInsufficient(ValueRiskError):
    """Fewer than the minimum number of valid price points for a regression fit."""

    def __init__(self, asset_id: str, points: int = 0) -> None:
        self.asset_id = asset_id
        self.points = points
        super().__init__(
            f"Insufficient price history to calculate risk for {asset_id} ({points} valid points)"
        )


class ProviderUnavailable(ValueRiskError):
    """An upstream provider failed (network, HTTP status or payload decoding)."""

    def __init__(self, provider: str, reason: str = "") -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} unavailable: {reason}" if reason else f"{provider} unavailable")


class CacheCorrupt(ValueRiskError):
    """A persisted file could not be read or decoded."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        super().__init__(f"Corrupt cache file {path}: {reason}")


class ConfigMissing(ValueRiskError):
    """No calibration entry exists for the requested asset."""

    def __init__(self, asset_id: str) -> None:
        self.asset_id = asset_id
        super().__init__(f"Risk calculation is not supported for {asset_id}")
