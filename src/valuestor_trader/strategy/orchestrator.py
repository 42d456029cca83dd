"""Fan each new issuance out to every active holder and act on their decisions."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import List, Optional

from ..datalake.schemas import (
    ExecutionStatus,
    HolderProfile,
    Position,
    TokenAnalysis,
    TradeDecision,
    TradeEvent,
    TradeExecution,
    TradeType,
    parse_decimal,
)
from ..datalake.storage import DECISION_AWAITING_APPROVAL, DECISION_RECORDED, StateStore
from ..execution.trade_executor import TradeExecutor
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import DRY_RUN_TX_HASH, utc_now
from .decision_engine import DecisionEngine

logger = get_logger(__name__)

_ZERO = Decimal(0)


def apply_execution(
    position: Optional[Position],
    execution: TradeExecution,
) -> Optional[Position]:
    """Return the position after a confirmed execution, or ``None`` when it is closed.

    Buys spend ``amount`` native units at the execution price; sells remove
    ``amount`` tokens and reduce the invested total proportionally.
    """

    now = execution.confirmed_at or utc_now()
    amount = parse_decimal(execution.amount)
    price = parse_decimal(execution.price or "0")

    if execution.type is TradeType.BUY:
        if price <= 0 or amount <= 0:
            return position
        tokens = amount / price
        if position is None:
            return Position(
                holder=execution.holder,
                token=execution.token,
                amount=tokens,
                average_buy_price=price,
                total_invested=amount,
                first_buy_at=now,
                last_update_at=now,
            )
        new_amount = position.amount + tokens
        new_invested = position.total_invested + amount
        return Position(
            holder=position.holder,
            token=position.token,
            amount=new_amount,
            average_buy_price=new_invested / new_amount,
            total_invested=new_invested,
            first_buy_at=position.first_buy_at,
            last_update_at=now,
        )

    if position is None:
        return None
    sold = min(amount, position.amount)
    remaining = position.amount - sold
    if remaining <= 0:
        return None
    invested = position.total_invested * (remaining / position.amount)
    return Position(
        holder=position.holder,
        token=position.token,
        amount=remaining,
        average_buy_price=position.average_buy_price,
        total_invested=invested,
        first_buy_at=position.first_buy_at,
        last_update_at=now,
    )


class TradingOrchestrator:
    """Per-issuance control loop: decide for each holder, then maybe execute."""

    def __init__(
        self,
        store: StateStore,
        engine: DecisionEngine,
        executor: TradeExecutor,
    ) -> None:
        self._store = store
        self._engine = engine
        self._executor = executor

    async def on_issuance(self, analysis: TokenAnalysis) -> List[TradeDecision]:
        logger.info(
            "Processing new token",
            extra={
                "token": analysis.token,
                "symbol": analysis.metadata.symbol,
                "category": analysis.metadata.category,
                "risk_score": analysis.risk_score,
                "risk_flags": sorted(analysis.risk_flags),
            },
        )
        await asyncio.to_thread(self._store.record_analysis, analysis)
        holders = await asyncio.to_thread(self._store.list_active_profiles)
        METRICS.gauge("holders.active", len(holders))
        if not holders:
            logger.info("No active holders", extra={"token": analysis.token})
            return []

        decisions: List[TradeDecision] = []
        for holder in holders:
            try:
                decision = await self._process_holder(analysis, holder)
            except Exception:  # noqa: BLE001
                METRICS.increment("holders_failed")
                logger.exception(
                    "Failed to process holder", extra={"holder": holder.address, "token": analysis.token}
                )
                continue
            decisions.append(decision)
        return decisions

    async def _process_holder(self, analysis: TokenAnalysis, holder: HolderProfile) -> TradeDecision:
        position = await asyncio.to_thread(self._store.get_position, holder.address, analysis.token)
        decision = await self._engine.analyze(analysis, holder, position)
        logger.info(
            "Decision",
            extra={
                "holder": holder.address,
                "token": analysis.token,
                "decision": decision.decision.value,
                "confidence": decision.confidence,
                "alignment": decision.alignment_score,
                "reasoning": decision.reasoning[:150],
            },
        )

        if not holder.automated:
            await asyncio.to_thread(
                self._store.record_decision, decision, status=DECISION_AWAITING_APPROVAL
            )
            logger.info(
                "Auto-trade disabled or confirmation required", extra={"holder": holder.address}
            )
            return decision

        await asyncio.to_thread(self._store.record_decision, decision, status=DECISION_RECORDED)
        execution = await self._executor.execute_decision(
            decision,
            amount_cap=holder.values.max_investment_per_token,
            position_amount=position.amount if position is not None else None,
        )
        if execution is None:
            return decision

        await asyncio.to_thread(self._store.save_execution, execution)
        logger.info(
            "Executed",
            extra={
                "holder": holder.address,
                "execution_id": execution.id,
                "status": execution.status.value,
                "tx_hash": execution.tx_hash,
            },
        )
        if execution.status is ExecutionStatus.CONFIRMED and execution.tx_hash != DRY_RUN_TX_HASH:
            await self._update_position(position, execution)
        return decision

    async def _update_position(
        self,
        position: Optional[Position],
        execution: TradeExecution,
    ) -> None:
        updated = apply_execution(position, execution)
        if updated is None:
            if position is not None:
                await asyncio.to_thread(self._store.delete_position, execution.holder, execution.token)
            return
        if updated is not position:
            await asyncio.to_thread(self._store.upsert_position, updated)

    async def on_trade(self, event: TradeEvent) -> None:
        logger.debug(
            "Trade",
            extra={
                "trader": event.trader,
                "side": "buy" if event.is_buy else "sell",
                "token": event.token_address,
                "native_amount": str(event.native_amount),
                "new_price": str(event.new_price),
            },
        )


__all__ = ["TradingOrchestrator", "apply_execution"]
