from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Dict, List

from valuestor_trader.analysis.risk import VERY_LOW_LIQUIDITY
from valuestor_trader.config.settings import MetadataConfig
from valuestor_trader.datalake.schemas import CurveState, IssuanceEvent, TokenAnalysis, TradeEvent
from valuestor_trader.ingestion.metadata import EMPTY_DOCUMENT, MetadataDocument
from valuestor_trader.ingestion.token_monitor import TokenMonitor
from valuestor_trader.monitoring.metrics import METRICS


class StubGateway:
    def __init__(self, reserves: Dict[str, str]) -> None:
        self.reserves = reserves
        self.callbacks: Dict[str, object] = {}
        self.unsubscribed: List[str] = []

    def read_curve_state(self, token: str) -> CurveState:
        if token not in self.reserves:
            raise RuntimeError(f"unknown token {token}")
        return CurveState(
            current_price=Decimal("0.001"),
            total_supply=Decimal("1000"),
            reserve_value=Decimal(self.reserves[token]),
            market_cap=Decimal("1"),
            graduated=False,
        )

    def _subscribe(self, name: str, callback):
        self.callbacks[name] = callback
        return lambda: self.unsubscribed.append(name)

    def subscribe_issuance_created(self, callback):
        return self._subscribe("issuance", callback)

    def subscribe_trade_executed(self, callback):
        return self._subscribe("trade", callback)


class StubMetadata:
    def __init__(self, documents: Dict[str, MetadataDocument]) -> None:
        self.documents = documents

    def fetch(self, uri: str) -> MetadataDocument:
        return self.documents.get(uri, EMPTY_DOCUMENT)


def _issuance(token: str, uri: str = "") -> IssuanceEvent:
    return IssuanceEvent(
        token_address=token,
        creator_address="0xcreator",
        name=f"Token {token}",
        symbol="TKN",
        metadata_uri=uri,
        timestamp=1_714_521_600,
        block_number=10,
        tx_hash=f"0xtx{token}",
    )


def _monitor(gateway: StubGateway, received: List[TokenAnalysis], **kwargs) -> TokenMonitor:
    async def on_issuance(analysis: TokenAnalysis) -> None:
        received.append(analysis)

    return TokenMonitor(
        gateway,  # type: ignore[arg-type]
        on_issuance,
        metadata_client=StubMetadata(kwargs.pop("documents", {})),  # type: ignore[arg-type]
        config=MetadataConfig(),
        **kwargs,
    )


def test_issuance_is_scored_and_forwarded() -> None:
    gateway = StubGateway({"0xa": "0.005"})
    received: List[TokenAnalysis] = []
    documents = {"ipfs://meta": MetadataDocument(description="Solar", category="sustainability", tags=("sun",))}
    monitor = _monitor(gateway, received, documents=documents)

    async def scenario() -> None:
        await monitor.start()
        await gateway.callbacks["issuance"](_issuance("0xa", "ipfs://meta"))

    asyncio.run(scenario())

    assert len(received) == 1
    analysis = received[0]
    assert analysis.token == "0xa"
    assert analysis.risk_score == 70
    assert analysis.risk_flags == frozenset({VERY_LOW_LIQUIDITY})
    assert analysis.metadata.description == "Solar"
    assert analysis.metadata.created_at.timestamp() == 1_714_521_600
    assert METRICS.get("issuances_processed") == 1


def test_failed_issuance_does_not_block_later_ones() -> None:
    gateway = StubGateway({"0xgood": "5"})
    received: List[TokenAnalysis] = []
    monitor = _monitor(gateway, received)

    async def scenario() -> None:
        await monitor.start()
        await gateway.callbacks["issuance"](_issuance("0xbroken"))
        await gateway.callbacks["issuance"](_issuance("0xgood"))

    asyncio.run(scenario())

    assert [analysis.token for analysis in received] == ["0xgood"]
    assert METRICS.get("issuances_failed") == 1
    assert METRICS.get("issuances_processed") == 1


def test_stop_is_idempotent_and_drops_late_events() -> None:
    gateway = StubGateway({"0xa": "5"})
    received: List[TokenAnalysis] = []
    trades: List[TradeEvent] = []

    async def on_trade(event: TradeEvent) -> None:
        trades.append(event)

    monitor = _monitor(gateway, received, on_trade=on_trade)

    async def scenario() -> None:
        await monitor.start()
        await monitor.start()
        monitor.stop()
        monitor.stop()
        await monitor.wait_stopped()
        await gateway.callbacks["issuance"](_issuance("0xa"))

    asyncio.run(scenario())

    assert sorted(gateway.unsubscribed) == ["issuance", "trade"]
    assert received == []
    assert not monitor.running


def test_wait_stopped_waits_for_inflight_issuance() -> None:
    gateway = StubGateway({"0xa": "5"})
    entered = asyncio.Event()
    release = asyncio.Event()
    finished: List[str] = []

    async def slow_handler(analysis: TokenAnalysis) -> None:
        entered.set()
        await release.wait()
        finished.append(analysis.token)

    monitor = TokenMonitor(
        gateway,  # type: ignore[arg-type]
        slow_handler,
        metadata_client=StubMetadata({}),  # type: ignore[arg-type]
        config=MetadataConfig(),
    )

    async def scenario() -> None:
        await monitor.start()
        task = asyncio.create_task(gateway.callbacks["issuance"](_issuance("0xa")))
        await asyncio.wait_for(entered.wait(), timeout=5)
        monitor.stop()
        waiter = asyncio.create_task(monitor.wait_stopped())
        await asyncio.sleep(0)
        assert not waiter.done()
        release.set()
        await asyncio.wait_for(waiter, timeout=1)
        await task

    asyncio.run(scenario())

    assert finished == ["0xa"]
