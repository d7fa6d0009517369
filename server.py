"""Lightweight aiohttp server -- the request/response surface over RiskEngine.

No framework magic, no middleware stack. Domain errors map to status codes:
unknown asset -> 404, not enough price history -> 422, bad query -> 400.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from core.errors import ConfigMissing, DataInsufficient
from core.models.risk import RiskFactorWeights

if TYPE_CHECKING:
    from core.config import AppConfig
    from core.registry import PluginRegistry
    from engine.service import RiskEngine

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def create_app(
    config: AppConfig,
    engine: RiskEngine,
    registry: PluginRegistry,
) -> web.Application:
    """Create and configure the aiohttp application."""
    app = web.Application()

    # Store references for route handlers
    app["config"] = config
    app["engine"] = engine
    app["registry"] = registry

    app.router.add_get("/health", handle_health)
    app.router.add_get("/assets", handle_get_assets)
    app.router.add_get("/risk/{asset}/history", handle_risk_history)
    app.router.add_get("/risk/{asset}/current", handle_current_risk)
    app.router.add_get("/risk/{asset}/multi-factor", handle_multi_factor)
    app.router.add_get("/risk/{asset}/confidence", handle_confidence)
    app.router.add_delete("/cache/{asset}", handle_clear_asset_cache)
    app.router.add_delete("/cache", handle_clear_all_caches)

    return app


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _flag(request: web.Request, name: str) -> bool:
    return request.query.get(name, "").lower() in _TRUE_VALUES


def _point_json(point: Any) -> dict:
    data = point.model_dump(mode="json")
    data["risk_category"] = point.risk_category
    return data


class _BadQuery(ValueError):
    pass


def _parse_days(raw: str | None) -> int | None:
    if raw is None or raw.lower() == "all":
        return None
    try:
        days = int(raw)
    except ValueError:
        raise _BadQuery(f"days must be an integer or 'all', got {raw!r}") from None
    if days <= 0:
        raise _BadQuery("days must be positive")
    return days


def _parse_weights(raw: str | None) -> RiskFactorWeights | None:
    if raw is None:
        return None
    try:
        return RiskFactorWeights.preset(raw)
    except ValueError as e:
        raise _BadQuery(str(e)) from None


async def _guard(coro: Any) -> Any:
    """Await an engine call, translating domain errors into HTTP errors."""
    try:
        return await coro
    except ConfigMissing as e:
        raise web.HTTPNotFound(
            text=json.dumps({"error": str(e)}), content_type="application/json",
        ) from e
    except DataInsufficient as e:
        raise web.HTTPUnprocessableEntity(
            text=json.dumps({"error": str(e), "points": e.points}),
            content_type="application/json",
        ) from e


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

async def handle_health(request: web.Request) -> web.Response:
    """GET /health -- health check."""
    registry: PluginRegistry = request.app["registry"]
    return web.json_response({
        "status": "ok",
        "plugins": registry.summary(),
    })


async def handle_get_assets(request: web.Request) -> web.Response:
    """GET /assets -- configured asset calibrations."""
    config: AppConfig = request.app["config"]
    return web.json_response([
        asset.model_dump(mode="json") for asset in config.assets.values()
    ])


async def handle_risk_history(request: web.Request) -> web.Response:
    """GET /risk/{asset}/history?days=N|all&max_points=M -- sampled regression risk."""
    engine: RiskEngine = request.app["engine"]
    asset = request.match_info["asset"]
    try:
        days = _parse_days(request.query.get("days"))
        max_points = int(request.query["max_points"]) if "max_points" in request.query else None
    except (_BadQuery, ValueError) as e:
        return _error(str(e), 400)

    history = await _guard(engine.request_risk_history(asset, days=days, max_points=max_points))
    return web.json_response({
        "asset_id": asset.upper(),
        "days": days,
        "points": [_point_json(p) for p in history],
    })


async def handle_current_risk(request: web.Request) -> web.Response:
    """GET /risk/{asset}/current -- latest regression-only risk point."""
    engine: RiskEngine = request.app["engine"]
    point = await _guard(engine.current_risk(request.match_info["asset"]))
    return web.json_response(_point_json(point))


async def handle_multi_factor(request: web.Request) -> web.Response:
    """GET /risk/{asset}/multi-factor?refresh=1&weights=preset -- composite + breakdown."""
    engine: RiskEngine = request.app["engine"]
    try:
        weights = _parse_weights(request.query.get("weights"))
    except _BadQuery as e:
        return _error(str(e), 400)

    point, factors = await _guard(engine.risk_breakdown(
        request.match_info["asset"],
        weights=weights,
        force_refresh=_flag(request, "refresh"),
    ))
    body = _point_json(point)
    body["available_factor_count"] = point.available_factor_count
    body["factor_data"] = factors.model_dump(mode="json")
    return web.json_response(body)


async def handle_confidence(request: web.Request) -> web.Response:
    """GET /risk/{asset}/confidence -- adaptive confidence result."""
    engine: RiskEngine = request.app["engine"]
    result = await _guard(engine.request_adaptive_confidence(request.match_info["asset"]))
    return web.json_response(result.model_dump(mode="json"))


async def handle_clear_asset_cache(request: web.Request) -> web.Response:
    """DELETE /cache/{asset}?confidence=1 -- drop computed results for one asset."""
    engine: RiskEngine = request.app["engine"]
    asset = request.match_info["asset"]
    await _guard(engine.clear_cache(asset, include_confidence=_flag(request, "confidence")))
    return web.json_response({"cleared": asset.upper()})


async def handle_clear_all_caches(request: web.Request) -> web.Response:
    """DELETE /cache?confidence=1 -- drop computed results for every asset."""
    engine: RiskEngine = request.app["engine"]
    await engine.clear_all_caches(include_confidence=_flag(request, "confidence"))
    return web.json_response({"cleared": "all"})
