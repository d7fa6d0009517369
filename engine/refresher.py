"""Background refresher -- keeps composite risk warm for configured assets."""

from __future__ import annotations

import asyncio
import logging

from core.errors import ValueRiskError
from engine.service import RiskEngine

logger = logging.getLogger(__name__)


class RiskRefresher:
    """Periodically recompute regression and composite risk for a set of assets."""

    def __init__(
        self,
        engine: RiskEngine,
        assets: list[str],
        interval_seconds: float = 1800,
    ) -> None:
        self._engine = engine
        self._assets = [a.upper() for a in assets]
        self._interval_seconds = max(1.0, float(interval_seconds))
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Risk refresher started for %s (every %.0fs)",
            ", ".join(self._assets),
            self._interval_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Risk refresher stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.refresh_once()
            except Exception:
                logger.exception("Risk refresh cycle failed")
            await asyncio.sleep(self._interval_seconds)

    async def refresh_once(self) -> dict[str, float | None]:
        """One pass over every asset. Returns composite risk per asset (None on failure)."""
        results: dict[str, float | None] = {}
        for asset_id in self._assets:
            try:
                await self._engine.request_risk_history(asset_id)
                point = await self._engine.request_multi_factor_risk(asset_id)
                results[asset_id] = point.risk_level
            except ValueRiskError as e:
                logger.warning("Refresh skipped for %s: %s", asset_id, e)
                results[asset_id] = None
            except Exception:
                logger.exception("Refresh failed for %s", asset_id)
                results[asset_id] = None
        return results
