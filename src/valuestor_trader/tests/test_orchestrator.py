from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from valuestor_trader.config.settings import ExecutionConfig
from valuestor_trader.datalake.schemas import (
    CurveState,
    DecisionKind,
    ExecutionStatus,
    Position,
    TradeDecision,
    TradeExecution,
    TradeType,
)
from valuestor_trader.datalake.storage import (
    DECISION_AWAITING_APPROVAL,
    DECISION_RECORDED,
    SQLiteStateStore,
)
from valuestor_trader.execution.trade_executor import TradeExecutor
from valuestor_trader.monitoring.metrics import METRICS
from valuestor_trader.strategy.orchestrator import TradingOrchestrator, apply_execution
from valuestor_trader.utils.constants import DRY_RUN_TX_HASH


class PlannedEngine:
    """Returns a fixed decision per holder; raises for holders mapped to an exception."""

    def __init__(self, plan: Dict[str, object]) -> None:
        self.plan = plan
        self.seen: List[str] = []

    async def analyze(self, analysis, holder, current_position=None) -> TradeDecision:
        self.seen.append(holder.address)
        planned = self.plan[holder.address]
        if isinstance(planned, Exception):
            raise planned
        kind, confidence, amount = planned  # type: ignore[misc]
        return TradeDecision(
            token=analysis.token,
            holder=holder.address,
            decision=kind,
            confidence=confidence,
            reasoning="planned",
            alignment_score=80,
            recommended_amount=amount,
        )


class UnusedGateway:
    def __getattr__(self, name: str):
        raise AssertionError(f"dry run must not call gateway.{name}")


def _setup(tmp_path: Path, plan: Dict[str, object]):
    store = SQLiteStateStore(tmp_path / "state.sqlite3")
    engine = PlannedEngine(plan)
    executor = TradeExecutor(UnusedGateway(), ExecutionConfig(dry_run=True))  # type: ignore[arg-type]
    return store, engine, TradingOrchestrator(store, engine, executor)  # type: ignore[arg-type]


def test_auto_trade_disabled_never_executes(tmp_path: Path, analysis, make_holder) -> None:
    store, engine, orchestrator = _setup(
        tmp_path,
        {
            "0xmanual": (DecisionKind.BUY, 95, "0.1"),
            "0xconfirm": (DecisionKind.BUY, 95, "0.1"),
        },
    )
    store.upsert_profile(make_holder("0xmanual", auto_trade=False))
    store.upsert_profile(make_holder("0xconfirm", auto_trade=True, require_confirmation=True))

    decisions = asyncio.run(orchestrator.on_issuance(analysis))

    assert len(decisions) == 2
    assert store.list_executions() == []
    pending = store.list_decisions(status=DECISION_AWAITING_APPROVAL)
    assert sorted(decision.holder for decision in pending) == ["0xconfirm", "0xmanual"]
    assert store.get_latest_analysis(analysis.token) is not None


def test_dry_run_execution_is_recorded_without_touching_positions(tmp_path: Path, analysis, make_holder) -> None:
    store, _, orchestrator = _setup(tmp_path, {"0xauto": (DecisionKind.BUY, 90, "2")})
    store.upsert_profile(make_holder("0xauto", max_investment="0.5"))

    asyncio.run(orchestrator.on_issuance(analysis))

    executions = store.list_executions("0xauto")
    assert len(executions) == 1
    execution = executions[0]
    assert execution.status is ExecutionStatus.CONFIRMED
    assert execution.amount == "0.5"
    assert execution.decision.reasoning == "planned"
    assert store.list_decisions("0xauto", status=DECISION_RECORDED)

    assert execution.tx_hash == DRY_RUN_TX_HASH
    assert store.get_position("0xauto", analysis.token) is None


class LiveGateway:
    def __init__(self, price: str) -> None:
        self.price = Decimal(price)
        self.buys: List[Decimal] = []

    def read_curve_state(self, token: str) -> CurveState:
        return CurveState(
            current_price=self.price,
            total_supply=Decimal("1000000"),
            reserve_value=Decimal("2.5"),
            market_cap=Decimal("2000"),
            graduated=False,
        )

    def submit_buy(self, token: str, native_amount: Decimal, *, max_price: Optional[Decimal] = None) -> str:
        self.buys.append(native_amount)
        return "0xlivehash"


def test_live_confirmed_buy_opens_position(tmp_path: Path, analysis, make_holder) -> None:
    store = SQLiteStateStore(tmp_path / "state.sqlite3")
    gateway = LiveGateway("0.004")
    executor = TradeExecutor(gateway, ExecutionConfig(dry_run=False))  # type: ignore[arg-type]
    orchestrator = TradingOrchestrator(
        store, PlannedEngine({"0xauto": (DecisionKind.BUY, 90, "2")}), executor  # type: ignore[arg-type]
    )
    store.upsert_profile(make_holder("0xauto", max_investment="0.5"))

    asyncio.run(orchestrator.on_issuance(analysis))

    assert gateway.buys == [Decimal("0.5")]
    position = store.get_position("0xauto", analysis.token)
    assert position is not None
    assert position.total_invested == Decimal("0.5")
    assert position.amount == Decimal("0.5") / Decimal("0.004")
    assert position.average_buy_price == Decimal("0.004")


def test_low_confidence_decision_is_recorded_but_not_executed(tmp_path: Path, analysis, make_holder) -> None:
    store, _, orchestrator = _setup(tmp_path, {"0xauto": (DecisionKind.BUY, 40, "0.1")})
    store.upsert_profile(make_holder("0xauto"))

    decisions = asyncio.run(orchestrator.on_issuance(analysis))

    assert decisions[0].confidence == 40
    assert store.list_executions() == []
    assert store.get_position("0xauto", analysis.token) is None


def test_one_failing_holder_does_not_stop_the_others(tmp_path: Path, analysis, make_holder) -> None:
    store, engine, orchestrator = _setup(
        tmp_path,
        {
            "0xa": (DecisionKind.BUY, 90, "0.1"),
            "0xb": RuntimeError("engine exploded"),
            "0xc": (DecisionKind.BUY, 90, "0.1"),
        },
    )
    for address in ("0xa", "0xb", "0xc"):
        store.upsert_profile(make_holder(address))
    store.upsert_profile(make_holder("0xinactive", is_active=False))

    decisions = asyncio.run(orchestrator.on_issuance(analysis))

    assert sorted(engine.seen) == ["0xa", "0xb", "0xc"]
    assert sorted(decision.holder for decision in decisions) == ["0xa", "0xc"]
    assert sorted(execution.holder for execution in store.list_executions()) == ["0xa", "0xc"]
    assert METRICS.get("holders_failed") == 1


def test_undecodable_profile_does_not_stop_other_holders(tmp_path: Path, analysis, make_holder) -> None:
    store, engine, orchestrator = _setup(tmp_path, {"0xgood": (DecisionKind.BUY, 90, "0.1")})
    store.upsert_profile(make_holder("0xgood"))
    store.upsert_profile(make_holder("0xdrifted"))
    con = sqlite3.connect(tmp_path / "state.sqlite3")
    try:
        con.execute(
            "UPDATE holder_profiles SET profile_values = ? WHERE address = ?",
            (
                '{"riskTolerance": "moderate", "maxInvestmentPerToken": "0.5", "themes": ["climate"]}',
                "0xdrifted",
            ),
        )
        con.commit()
    finally:
        con.close()

    decisions = asyncio.run(orchestrator.on_issuance(analysis))

    assert engine.seen == ["0xgood"]
    assert [decision.holder for decision in decisions] == ["0xgood"]
    assert METRICS.snapshot()["gauges"]["holders.active"] == 1


def test_no_active_holders_records_analysis_only(tmp_path: Path, analysis) -> None:
    store, engine, orchestrator = _setup(tmp_path, {})

    assert asyncio.run(orchestrator.on_issuance(analysis)) == []
    assert engine.seen == []
    assert store.get_latest_analysis(analysis.token).risk_score == analysis.risk_score


def _execution(kind: TradeType, amount: str, price: str) -> TradeExecution:
    decision = TradeDecision(
        token="0xtoken",
        holder="0xh",
        decision=DecisionKind.BUY if kind is TradeType.BUY else DecisionKind.SELL,
        confidence=90,
        reasoning="r",
        alignment_score=70,
    )
    execution = TradeExecution(holder="0xh", token="0xtoken", type=kind, amount=amount, decision=decision, price=price)
    execution.confirm("0xhash")
    return execution


def test_apply_execution_tracks_cost_basis() -> None:
    opened = apply_execution(None, _execution(TradeType.BUY, "1", "0.5"))
    assert opened.amount == Decimal("2")
    assert opened.average_buy_price == Decimal("0.5")

    added = apply_execution(opened, _execution(TradeType.BUY, "1", "0.25"))
    assert added.amount == Decimal("6")
    assert added.total_invested == Decimal("2")
    assert added.average_buy_price == Decimal("2") / Decimal("6")
    assert added.first_buy_at == opened.first_buy_at

    trimmed = apply_execution(added, _execution(TradeType.SELL, "3", "0.5"))
    assert trimmed.amount == Decimal("3")
    assert trimmed.total_invested == Decimal("1")
    assert trimmed.average_buy_price == added.average_buy_price

    assert apply_execution(trimmed, _execution(TradeType.SELL, "10", "0.5")) is None


def test_buy_without_price_leaves_position_unchanged() -> None:
    assert apply_execution(None, _execution(TradeType.BUY, "1", "0")) is None


def test_sell_without_position_is_a_no_op() -> None:
    assert apply_execution(None, _execution(TradeType.SELL, "1", "0.5")) is None


@pytest.mark.parametrize("amount", ["0", "-1"])
def test_non_positive_buy_leaves_position_unchanged(amount: str) -> None:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    position = Position(
        holder="0xh",
        token="0xtoken",
        amount=Decimal("1"),
        average_buy_price=Decimal("1"),
        total_invested=Decimal("1"),
        first_buy_at=now,
        last_update_at=now,
    )
    assert apply_execution(position, _execution(TradeType.BUY, amount, "1")) is position
