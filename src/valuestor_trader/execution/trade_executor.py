"""Policy gates, slippage bounds and submission for trade decisions."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Sequence

from ..config.settings import ExecutionConfig, get_app_config
from ..datalake.schemas import (
    DecisionKind,
    TradeDecision,
    TradeExecution,
    TradeType,
    parse_decimal,
)
from ..ingestion.chain_gateway import ChainGateway
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import DRY_RUN_TX_HASH

# Hard floor, independent of any holder confirmation policy.
MIN_EXECUTION_CONFIDENCE = 70

INVALID_AMOUNT_ERROR = "invalid trade amount"

logger = get_logger(__name__)


def _as_decimal(value: Decimal | float | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def buy_price_ceiling(price: Decimal, slippage: Decimal | float | str) -> Decimal:
    """Highest acceptable per-token price for a buy."""

    return price * (Decimal(1) + _as_decimal(slippage))


def sell_proceeds_floor(amount: Decimal, price: Decimal, slippage: Decimal | float | str) -> Decimal:
    """Lowest acceptable native proceeds for selling ``amount`` tokens."""

    return amount * price * (Decimal(1) - _as_decimal(slippage))


class TradeExecutor:
    """Executes actionable decisions one at a time against a chain gateway."""

    def __init__(
        self,
        gateway: ChainGateway,
        config: Optional[ExecutionConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._config = config or get_app_config().execution
        self._sleep = sleep

    @property
    def dry_run(self) -> bool:
        # An unresolved flag never means live trading.
        return self._config.dry_run is None or bool(self._config.dry_run)

    def _resolve_amount(
        self,
        decision: TradeDecision,
        trade_type: TradeType,
        amount_cap: Optional[Decimal],
        position_amount: Optional[Decimal],
    ) -> Optional[Decimal]:
        raw = decision.recommended_amount
        if not raw:
            if trade_type is TradeType.BUY:
                raw = self._config.default_buy_amount
            elif position_amount is not None:
                raw = str(position_amount)
            else:
                raw = "0"
        try:
            amount = parse_decimal(raw)
        except ValueError:
            return None
        if trade_type is TradeType.BUY and amount_cap is not None:
            amount = min(amount, amount_cap)
        if trade_type is TradeType.SELL and position_amount is not None:
            amount = min(amount, position_amount)
        return amount

    async def execute_decision(
        self,
        decision: TradeDecision,
        *,
        amount_cap: Optional[Decimal] = None,
        position_amount: Optional[Decimal] = None,
    ) -> Optional[TradeExecution]:
        """Return ``None`` for policy rejections, otherwise a terminal execution."""

        if decision.decision in (DecisionKind.SKIP, DecisionKind.HOLD):
            logger.info(
                "Skipping non-actionable decision",
                extra={"token": decision.token, "decision": decision.decision.value},
            )
            METRICS.increment("executions.skipped_policy")
            return None
        if decision.confidence < MIN_EXECUTION_CONFIDENCE:
            logger.warning(
                "Confidence below execution floor",
                extra={"token": decision.token, "confidence": decision.confidence},
            )
            METRICS.increment("executions.skipped_policy")
            return None

        trade_type = TradeType.BUY if decision.decision is DecisionKind.BUY else TradeType.SELL
        amount = self._resolve_amount(decision, trade_type, amount_cap, position_amount)
        execution = TradeExecution(
            holder=decision.holder,
            token=decision.token,
            type=trade_type,
            amount=str(amount) if amount is not None else (decision.recommended_amount or "0"),
            decision=decision,
        )

        if self.dry_run:
            execution.confirm(DRY_RUN_TX_HASH)
            logger.info("Dry run trade", extra={"execution": execution.to_dict()})
        elif amount is None or amount <= 0:
            execution.fail(INVALID_AMOUNT_ERROR)
        else:
            await self._submit(execution, amount)

        METRICS.increment(f"executions.{execution.status.value}")
        return execution

    async def _submit(self, execution: TradeExecution, amount: Decimal) -> None:
        slippage = self._config.max_slippage
        try:
            state = await asyncio.to_thread(self._gateway.read_curve_state, execution.token)
            price = state.current_price
            if execution.type is TradeType.BUY:
                max_price = buy_price_ceiling(price, slippage)
                execution.max_price = str(max_price)
                tx_hash = await asyncio.to_thread(
                    self._gateway.submit_buy, execution.token, amount, max_price=max_price
                )
            else:
                min_proceeds = sell_proceeds_floor(amount, price, slippage)
                execution.min_proceeds = str(min_proceeds)
                tx_hash = await asyncio.to_thread(
                    self._gateway.submit_sell, execution.token, amount, min_proceeds=min_proceeds
                )
        except Exception as exc:  # noqa: BLE001
            execution.fail(str(exc) or exc.__class__.__name__)
            logger.error(
                "Trade execution failed",
                extra={"execution_id": execution.id, "token": execution.token, "error": execution.error},
            )
            return
        execution.price = str(price)
        execution.confirm(tx_hash)
        logger.info(
            "Trade executed",
            extra={"execution_id": execution.id, "token": execution.token, "tx_hash": tx_hash},
        )

    async def execute_multiple(self, decisions: Sequence[TradeDecision]) -> List[TradeExecution]:
        """Execute sequentially, pausing between decisions so nonces never collide."""

        executions: List[TradeExecution] = []
        for decision in decisions:
            try:
                execution = await self.execute_decision(decision)
            except Exception:  # noqa: BLE001
                logger.exception("Decision execution raised", extra={"token": decision.token})
                execution = None
            if execution is not None:
                executions.append(execution)
            await self._sleep(self._config.inter_trade_delay_seconds)
        return executions


__all__ = [
    "INVALID_AMOUNT_ERROR",
    "MIN_EXECUTION_CONFIDENCE",
    "TradeExecutor",
    "buy_price_ceiling",
    "sell_proceeds_floor",
]
