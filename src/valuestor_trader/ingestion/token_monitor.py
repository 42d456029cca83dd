"""Watch the issuance contract and turn each new token into a risk-scored analysis."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from ..config.settings import MetadataConfig, get_app_config
from ..datalake.schemas import IssuanceEvent, TokenAnalysis, TokenMetadata, TradeEvent
from ..analysis.risk import identify_risk_flags, score_issuance_risk
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS
from .chain_gateway import ChainGateway, Unsubscribe
from .metadata import MetadataClient

IssuanceHandler = Callable[[TokenAnalysis], Awaitable[None]]
TradeHandler = Callable[[TradeEvent], Awaitable[None]]

logger = get_logger(__name__)


class TokenMonitor:
    """Subscribes to gateway streams and forwards analyses in delivery order."""

    def __init__(
        self,
        gateway: ChainGateway,
        on_issuance: IssuanceHandler,
        *,
        on_trade: Optional[TradeHandler] = None,
        metadata_client: Optional[MetadataClient] = None,
        config: Optional[MetadataConfig] = None,
    ) -> None:
        self._gateway = gateway
        self._on_issuance = on_issuance
        self._on_trade = on_trade
        self._metadata = metadata_client or MetadataClient(config or get_app_config().metadata)
        self._unsubscribers: List[Unsubscribe] = []
        self._running = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._unsubscribers.append(self._gateway.subscribe_issuance_created(self._handle_issuance))
        if self._on_trade is not None:
            self._unsubscribers.append(self._gateway.subscribe_trade_executed(self._handle_trade))
        logger.info("Token monitor started", extra={"trades": self._on_trade is not None})

    def stop(self) -> None:
        """Unsubscribe from every stream. Safe to call more than once."""

        if not self._running:
            return
        self._running = False
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        logger.info("Token monitor stopped", extra={"inflight": self._inflight})

    async def wait_stopped(self) -> None:
        """Wait until no event is being processed."""

        await self._idle.wait()

    async def analyze(self, event: IssuanceEvent) -> TokenAnalysis:
        curve = await asyncio.to_thread(self._gateway.read_curve_state, event.token_address)
        document = await asyncio.to_thread(self._metadata.fetch, event.metadata_uri)
        metadata = TokenMetadata(
            address=event.token_address,
            name=event.name,
            symbol=event.symbol,
            uri=event.metadata_uri,
            creator=event.creator_address,
            created_at=datetime.fromtimestamp(event.timestamp, timezone.utc),
            description=document.description,
            category=document.category,
            tags=document.tags,
        )
        risk_score = score_issuance_risk(curve, metadata)
        METRICS.observe("risk_score", risk_score)
        return TokenAnalysis(
            token=event.token_address,
            curve_state=curve,
            metadata=metadata,
            risk_score=risk_score,
            risk_flags=identify_risk_flags(curve),
        )

    async def _handle_issuance(self, event: IssuanceEvent) -> None:
        if not self._running:
            logger.debug("Dropping issuance after stop", extra={"token": event.token_address})
            return
        self._enter()
        try:
            with correlation_scope(event.tx_hash):
                logger.info(
                    "New token created",
                    extra={
                        "token": event.token_address,
                        "symbol": event.symbol,
                        "creator": event.creator_address,
                        "block": event.block_number,
                    },
                )
                try:
                    analysis = await self.analyze(event)
                    await self._on_issuance(analysis)
                except Exception:  # noqa: BLE001
                    METRICS.increment("issuances_failed")
                    logger.exception("Failed to process issuance", extra={"token": event.token_address})
                else:
                    METRICS.increment("issuances_processed")
        finally:
            self._leave()

    async def _handle_trade(self, event: TradeEvent) -> None:
        if not self._running or self._on_trade is None:
            return
        self._enter()
        try:
            await self._on_trade(event)
        except Exception:  # noqa: BLE001
            logger.exception("Trade callback failed", extra={"token": event.token_address})
        finally:
            self._leave()

    def _enter(self) -> None:
        self._inflight += 1
        self._idle.clear()

    def _leave(self) -> None:
        self._inflight -= 1
        if self._inflight == 0:
            self._idle.set()


__all__ = ["IssuanceHandler", "TokenMonitor", "TradeHandler"]
