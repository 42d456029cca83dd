"""Entrypoint for the Valuestor trading bot."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from pydantic import ValidationError

from .config.settings import AppConfig, AppMode, get_app_config, validate_runtime
from .datalake.schemas import PortfolioHolding
from .datalake.storage import SQLiteStateStore
from .errors import ConfigurationError, GatewayError, StorageError
from .execution.trade_executor import TradeExecutor
from .execution.wallet import load_wallet
from .ingestion.chain_gateway import BondingCurveGateway
from .ingestion.metadata import MetadataClient
from .ingestion.token_monitor import TokenMonitor
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS
from .strategy.decision_engine import DecisionEngine
from .strategy.orchestrator import TradingOrchestrator
from .strategy.reasoning import OpenAIReasoningService

logger = get_logger(__name__)


@dataclass(slots=True)
class Services:
    """Every long-lived component, wired with explicit dependencies."""

    store: SQLiteStateStore
    gateway: BondingCurveGateway
    reasoning: OpenAIReasoningService
    engine: DecisionEngine
    executor: TradeExecutor
    orchestrator: TradingOrchestrator


def force_dry_run(config: AppConfig) -> None:
    config.mode.active = AppMode.DRY_RUN
    config.execution.dry_run = True


def open_store(config: AppConfig) -> SQLiteStateStore:
    store = SQLiteStateStore(
        config.storage.database_path,
        execution_retention_days=config.storage.execution_retention_days,
    )
    store.ping()
    return store


def build_services(config: AppConfig, store: SQLiteStateStore) -> Services:
    wallet = load_wallet(config.wallet) if not config.dry_run else None
    gateway = BondingCurveGateway(config.chain, wallet)
    reasoning = OpenAIReasoningService(config.reasoning)
    engine = DecisionEngine(reasoning, config.reasoning)
    executor = TradeExecutor(gateway, config.execution)
    orchestrator = TradingOrchestrator(store, engine, executor)
    return Services(store, gateway, reasoning, engine, executor, orchestrator)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)


def _startup(config: AppConfig) -> Optional[SQLiteStateStore]:
    try:
        validate_runtime(config)
    except ConfigurationError as exc:
        logger.error("Refusing to start: %s", exc)
        return None
    try:
        return open_store(config)
    except (StorageError, ValueError) as exc:
        logger.error("State store unavailable: %s", exc)
        return None


async def run_async(config: AppConfig) -> int:
    store = _startup(config)
    if store is None:
        return 1
    try:
        services = build_services(config, store)
    except ConfigurationError as exc:
        logger.error("Refusing to start: %s", exc)
        store.close()
        return 1

    logger.info(
        "Valuestor trading bot starting",
        extra={
            "mode": "DRY RUN" if config.dry_run else "LIVE",
            "rpc_url": str(config.chain.rpc_url),
            "max_slippage": config.execution.max_slippage,
        },
    )
    monitor = TokenMonitor(
        services.gateway,
        services.orchestrator.on_issuance,
        on_trade=services.orchestrator.on_trade,
        metadata_client=MetadataClient(config.metadata),
    )
    stop = asyncio.Event()
    _install_signal_handlers(stop)
    await monitor.start()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        monitor.stop()
        await monitor.wait_stopped()
        await services.gateway.wait_closed()
        await services.reasoning.aclose()
        store.close()
        logger.info("Shutdown complete", extra={"metrics": METRICS.snapshot()["counters"]})
    return 0


async def portfolio_advice_async(config: AppConfig, holder_address: str) -> int:
    force_dry_run(config)
    store = _startup(config)
    if store is None:
        return 1
    services = build_services(config, store)
    try:
        profile = store.get_profile(holder_address)
        if profile is None:
            logger.error("Unknown holder %s", holder_address)
            return 1

        holdings: List[PortfolioHolding] = []
        for position in store.list_positions(profile.address):
            analysis = store.get_latest_analysis(position.token)
            if analysis is None:
                logger.warning("No stored analysis for %s, skipping", position.token)
                continue
            try:
                curve = await asyncio.to_thread(services.gateway.read_curve_state, position.token)
            except GatewayError as exc:
                logger.warning("Using stored curve state for %s: %s", position.token, exc)
            else:
                analysis = replace(analysis, curve_state=curve)
            current_value = position.amount * analysis.curve_state.current_price
            position = replace(
                position,
                current_value=current_value,
                unrealized_pnl=current_value - position.total_invested,
            )
            holdings.append(PortfolioHolding(position=position, analysis=analysis))

        advice = await services.engine.portfolio_advice(profile, holdings)
        print(json.dumps(advice.to_dict(), indent=2))
        return 0
    finally:
        await services.reasoning.aclose()
        store.close()


def _load_config() -> Optional[AppConfig]:
    try:
        return get_app_config()
    except (ValidationError, ConfigurationError) as exc:
        logger.error("Refusing to start: invalid configuration: %s", exc)
        return None


def run(dry_run: bool = False) -> int:
    config = _load_config()
    if config is None:
        return 1
    if dry_run:
        force_dry_run(config)
    bootstrap_observability(config)
    return asyncio.run(run_async(config))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the Valuestor AI trading bot")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Monitor new tokens and trade for active holders (default)")
    run_parser.add_argument("--dry-run", action="store_true", default=False, help="Simulate every trade")

    advice_parser = subparsers.add_parser(
        "portfolio-advice", help="Print portfolio recommendations for a stored holder"
    )
    advice_parser.add_argument("holder", help="Holder wallet address")

    args = parser.parse_args(argv)
    if args.command == "portfolio-advice":
        config = _load_config()
        if config is None:
            return 1
        bootstrap_observability(config)
        return asyncio.run(portfolio_advice_async(config, args.holder))
    return run(dry_run=getattr(args, "dry_run", False))


if __name__ == "__main__":
    raise SystemExit(main())
