"""valuerisk entrypoint -- wires all components together and starts the server.

Usage:
    python main.py
    python main.py --config /path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from aiohttp import web

from core.bus import AsyncIOBus
from core.config import AppConfig, load_config
from core.data.store import Store
from core.registry import PluginRegistry
from core.time_context import TimeContext
from engine.confidence import ConfidenceTracker
from engine.factor_fetcher import RiskFactorFetcher
from engine.price_store import PriceHistoryStore
from engine.refresher import RiskRefresher
from engine.result_cache import RiskResultCache
from engine.service import RiskEngine
from risk.calculator import RiskCalculator
from server import create_app


def setup_logging(level: str) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Quiet down noisy libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="valuerisk asset risk level engine")
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config.yaml (default: ~/.valuerisk/config.yaml)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (default: ~/.valuerisk/.env)",
    )
    return parser.parse_args()


def load_plugins(config: AppConfig, registry: PluginRegistry) -> None:
    """Instantiate the market data providers and register them by PLUGIN_META protocols."""
    from plugins.market_data import alternative_me, binance, coingecko, taapi, yahoo_finance

    logger = logging.getLogger("valuerisk.plugins")
    providers = config.providers
    common = {
        "timeout": config.seconds(providers.request_timeout),
        "user_agent": providers.user_agent,
    }

    instances = [
        (binance.PLUGIN_META, binance.BinanceProvider(
            funding_symbols=providers.funding_symbols, **common,
        )),
        (coingecko.PLUGIN_META, coingecko.CoinGeckoProvider(
            api_key=providers.coingecko_api_key, **common,
        )),
        (alternative_me.PLUGIN_META, alternative_me.AlternativeMeProvider(**common)),
    ]
    if providers.taapi_api_key:
        instances.append(
            (taapi.PLUGIN_META, taapi.TaapiProvider(api_key=providers.taapi_api_key, **common))
        )
    else:
        logger.info("No Taapi API key; RSI and SMA will be computed from candles")
    for index_name, ticker in yahoo_finance.PLUGIN_META["indices"].items():
        instances.append((
            yahoo_finance.PLUGIN_META,
            yahoo_finance.YahooIndexProvider(index_name, ticker, **common),
        ))

    for meta, instance in instances:
        for protocol_key in meta["protocols"]:
            registry.register(protocol_key, instance)
        logger.info("Loaded market data provider: %s", meta["display_name"])


def build_engine(
    config: AppConfig,
    registry: PluginRegistry,
    time_context: TimeContext | None = None,
) -> RiskEngine:
    """Construct the stores and the RiskEngine facade over them."""
    time_context = time_context or TimeContext.live()
    cache_dir = config.cache_path

    store = Store(cache_dir)
    bus = AsyncIOBus(events_dir=cache_dir / "events", time_context=time_context)
    registry.register("event_bus", bus)

    result_cache = RiskResultCache(store, bus, time_context, config.cache)
    price_store = PriceHistoryStore(config, store, bus, registry, time_context)
    factor_fetcher = RiskFactorFetcher(config, registry, time_context)
    confidence = ConfidenceTracker(config, store, bus, time_context)
    confidence.load_all()

    return RiskEngine(
        config=config,
        bus=bus,
        time_context=time_context,
        price_store=price_store,
        factor_fetcher=factor_fetcher,
        calculator=RiskCalculator(config.weights.resolve()),
        result_cache=result_cache,
        confidence=confidence,
    )


async def run(config_path: str | None = None, env_path: str | None = None) -> None:
    """Initialize all components and start the server."""
    config = load_config(config_path=config_path, env_path=env_path)
    logging.getLogger().setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    logger = logging.getLogger("valuerisk")
    logger.info("Configuration loaded from %s", config.home_path)

    registry = PluginRegistry()
    load_plugins(config, registry)
    engine = build_engine(config, registry)
    logger.info("Plugin registry: %s", registry.summary())

    refresher: RiskRefresher | None = None
    if config.refresh.enabled:
        refresher = RiskRefresher(
            engine,
            assets=config.refresh.assets,
            interval_seconds=config.seconds(config.refresh.interval),
        )
        await refresher.start()

    app = create_app(config=config, engine=engine, registry=registry)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.server.host, config.server.port)
    await site.start()

    logger.info(
        "valuerisk running at http://%s:%d",
        config.server.host,
        config.server.port,
    )
    logger.info("Cache directory: %s", config.cache_path)

    # Run until interrupted
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        logger.info("Shutting down...")
        if refresher is not None:
            await refresher.stop()
        await registry.close_all()
        await runner.cleanup()
        logger.info("Shutdown complete")


def main() -> None:
    args = parse_args()
    setup_logging("INFO")
    try:
        asyncio.run(run(config_path=args.config, env_path=args.env))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
