"""Replay historical TokenCreated logs through the decision pipeline in dry-run mode."""

from __future__ import annotations

import argparse
import asyncio
import time
from typing import List

from valuestor_trader.config.settings import get_app_config
from valuestor_trader.datalake.storage import SQLiteStateStore
from valuestor_trader.ingestion.metadata import MetadataClient
from valuestor_trader.ingestion.token_monitor import TokenMonitor
from valuestor_trader.main import build_services, force_dry_run
from valuestor_trader.monitoring import bootstrap_observability
from valuestor_trader.monitoring.logger import correlation_scope, get_logger
from valuestor_trader.monitoring.metrics import METRICS, summarize

logger = get_logger(__name__)


async def replay(from_block: int, to_block: int) -> None:
    """Analyse and decide on every issuance in ``[from_block, to_block]``."""

    config = get_app_config()
    force_dry_run(config)
    store = SQLiteStateStore(
        config.storage.database_path,
        execution_retention_days=config.storage.execution_retention_days,
    )
    services = build_services(config, store)
    monitor = TokenMonitor(
        services.gateway,
        services.orchestrator.on_issuance,
        metadata_client=MetadataClient(config.metadata),
    )

    durations: List[float] = []
    try:
        events = await asyncio.to_thread(services.gateway.fetch_issuances, from_block, to_block)
        logger.info("Replaying %d issuances", len(events))
        for event in events:
            start = time.perf_counter()
            with correlation_scope(event.tx_hash):
                try:
                    analysis = await monitor.analyze(event)
                    await services.orchestrator.on_issuance(analysis)
                except Exception:  # noqa: BLE001 - a replay should surface errors but continue
                    logger.exception("Replay of %s failed", event.token_address)
                    continue
            durations.append(time.perf_counter() - start)
    finally:
        await services.reasoning.aclose()
        store.close()

    if durations:
        summary = summarize(durations)
        logger.info(
            "Replay summary: %d issuances, mean %.2fs, p90 %.2fs, p99 %.2fs",
            len(durations),
            summary["avg"],
            summary["p90"],
            summary["p99"],
        )
    else:
        logger.warning("Replay finished without successful issuances")
    logger.info("Final metrics snapshot: %s", METRICS.snapshot())


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay past issuances through the bot in dry-run mode")
    parser.add_argument("from_block", type=int, help="First block to scan")
    parser.add_argument("to_block", type=int, help="Last block to scan")
    args = parser.parse_args()

    bootstrap_observability()
    asyncio.run(replay(args.from_block, args.to_block))


if __name__ == "__main__":
    main()
