from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

import pytest

from valuestor_trader.datalake.schemas import (
    AIGuidance,
    CurveState,
    HolderProfile,
    HolderValues,
    RiskTolerance,
    Theme,
    TokenAnalysis,
    TokenMetadata,
)
from valuestor_trader.monitoring.metrics import METRICS

TOKEN = "0x1111111111111111111111111111111111111111"
CREATOR = "0x2222222222222222222222222222222222222222"


@pytest.fixture(autouse=True)
def _reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def curve() -> CurveState:
    return CurveState(
        current_price=Decimal("0.002"),
        total_supply=Decimal("1000000"),
        reserve_value=Decimal("2.5"),
        market_cap=Decimal("2000"),
        graduated=False,
    )


@pytest.fixture
def analysis(curve: CurveState) -> TokenAnalysis:
    metadata = TokenMetadata(
        address=TOKEN,
        name="Green Grid",
        symbol="GRID",
        uri="ipfs://bafymeta",
        creator=CREATOR,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        description="Community solar financing",
        category="sustainability",
        tags=("solar", "energy"),
    )
    return TokenAnalysis(token=TOKEN, curve_state=curve, metadata=metadata, risk_score=100)


@pytest.fixture
def make_holder() -> Callable[..., HolderProfile]:
    def _make(
        address: str,
        *,
        auto_trade: bool = True,
        require_confirmation: bool = False,
        max_investment: str = "0.5",
        is_active: bool = True,
    ) -> HolderProfile:
        values = HolderValues(
            risk_tolerance=RiskTolerance.MODERATE,
            max_investment_per_token=Decimal(max_investment),
            max_portfolio_allocation=20.0,
            themes=frozenset({Theme.SUSTAINABILITY}),
            auto_trade=auto_trade,
            ai_guidance=AIGuidance(require_confirmation=require_confirmation),
        )
        return HolderProfile(address=address, values=values, is_active=is_active)

    return _make
