"""Data models shared by ingestion, decision, execution, and storage layers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..errors import InvalidTransitionError
from ..utils.constants import utc_now


def parse_decimal(value: Any) -> Decimal:
    """Convert a number or decimal string into a finite ``Decimal``."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Not a decimal amount: {value!r}")
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Not a decimal amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a decimal amount: {value!r}")
    return result


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return parse_decimal(value)


def _optional_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RiskTolerance(str, Enum):
    """Holder appetite for risk, ordered from least to most tolerant."""

    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskTolerance):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskTolerance):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskTolerance):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskTolerance):
            return NotImplemented
        return self.rank >= other.rank


_RISK_RANK = {
    RiskTolerance.CONSERVATIVE: 0,
    RiskTolerance.MODERATE: 1,
    RiskTolerance.AGGRESSIVE: 2,
}


class TradingStyle(str, Enum):
    HOLDER = "holder"
    SWING_TRADER = "swing_trader"
    DAY_TRADER = "day_trader"


class Theme(str, Enum):
    """Investment themes shared by holder affinities and token categories."""

    SUSTAINABILITY = "sustainability"
    SOCIAL_IMPACT = "social_impact"
    INNOVATION = "innovation"
    EDUCATION = "education"
    HEALTH = "health"
    FINANCE = "finance"
    ENTERTAINMENT = "entertainment"
    GAMING = "gaming"
    AI_ML = "ai_ml"
    WEB3 = "web3"
    DEFI = "defi"
    OTHER = "other"


class DecisionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"
    SKIP = "skip"


class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.PENDING


@dataclass(frozen=True, slots=True)
class IssuanceEvent:
    """A token creation log emitted by the issuance contract."""

    token_address: str
    creator_address: str
    name: str
    symbol: str
    metadata_uri: str
    timestamp: int
    block_number: int
    tx_hash: str


@dataclass(frozen=True, slots=True)
class TradeEvent:
    """A buy or sell executed against a bonding curve."""

    token_address: str
    trader: str
    is_buy: bool
    native_amount: Decimal
    token_amount: Decimal
    new_price: Decimal
    timestamp: int
    block_number: int
    tx_hash: str


@dataclass(frozen=True, slots=True)
class CurveState:
    """Point-in-time bonding curve snapshot, in native units."""

    current_price: Decimal
    total_supply: Decimal
    reserve_value: Decimal
    market_cap: Decimal
    graduated: bool
    liquidity_usd: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_price": str(self.current_price),
            "total_supply": str(self.total_supply),
            "reserve_value": str(self.reserve_value),
            "market_cap": str(self.market_cap),
            "graduated": self.graduated,
            "liquidity_usd": self.liquidity_usd,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CurveState":
        liquidity = payload.get("liquidity_usd")
        return cls(
            current_price=parse_decimal(payload["current_price"]),
            total_supply=parse_decimal(payload["total_supply"]),
            reserve_value=parse_decimal(payload["reserve_value"]),
            market_cap=parse_decimal(payload["market_cap"]),
            graduated=bool(payload.get("graduated", False)),
            liquidity_usd=float(liquidity) if liquidity is not None else None,
        )


@dataclass(frozen=True, slots=True)
class TokenMetadata:
    """On-chain identity merged with the off-chain metadata document."""

    address: str
    name: str
    symbol: str
    uri: str
    creator: str
    created_at: datetime
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "uri": self.uri,
            "creator": self.creator,
            "created_at": self.created_at.isoformat(),
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags) if self.tags is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TokenMetadata":
        tags = payload.get("tags")
        return cls(
            address=payload["address"],
            name=payload.get("name", ""),
            symbol=payload.get("symbol", ""),
            uri=payload.get("uri", ""),
            creator=payload.get("creator", ""),
            created_at=_parse_datetime(payload["created_at"]),
            description=payload.get("description"),
            category=payload.get("category"),
            tags=tuple(tags) if tags is not None else None,
        )


@dataclass(frozen=True, slots=True)
class TokenAnalysis:
    """Risk-scored view of a new issuance. A re-analysis is a new record."""

    token: str
    curve_state: CurveState
    metadata: TokenMetadata
    risk_score: int
    risk_flags: FrozenSet[str] = frozenset()
    analyzed_at: datetime = field(default_factory=utc_now)
    holder_count: Optional[int] = None
    top_holder_concentration: Optional[float] = None
    creator_reputation: Optional[int] = None
    creator_rug_history: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "curve_state": self.curve_state.to_dict(),
            "metadata": self.metadata.to_dict(),
            "risk_score": self.risk_score,
            "risk_flags": sorted(self.risk_flags),
            "analyzed_at": self.analyzed_at.isoformat(),
            "holder_count": self.holder_count,
            "top_holder_concentration": self.top_holder_concentration,
            "creator_reputation": self.creator_reputation,
            "creator_rug_history": self.creator_rug_history,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TokenAnalysis":
        return cls(
            token=payload["token"],
            curve_state=CurveState.from_dict(payload["curve_state"]),
            metadata=TokenMetadata.from_dict(payload["metadata"]),
            risk_score=int(payload["risk_score"]),
            risk_flags=frozenset(payload.get("risk_flags", [])),
            analyzed_at=_parse_datetime(payload["analyzed_at"]),
            holder_count=payload.get("holder_count"),
            top_holder_concentration=payload.get("top_holder_concentration"),
            creator_reputation=payload.get("creator_reputation"),
            creator_rug_history=payload.get("creator_rug_history"),
        )


@dataclass(slots=True)
class AIGuidance:
    """How much latitude the holder gives the reasoning service."""

    enabled: bool = True
    aggressiveness: int = 50
    require_confirmation: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.aggressiveness <= 100:
            raise ValueError(f"aggressiveness must be within [0, 100], got {self.aggressiveness}")


@dataclass(slots=True)
class HolderValues:
    """A holder's stated investment policy."""

    risk_tolerance: RiskTolerance
    max_investment_per_token: Decimal
    max_portfolio_allocation: float
    themes: FrozenSet[Theme] = frozenset()
    trading_style: TradingStyle = TradingStyle.HOLDER
    auto_trade: bool = False
    min_liquidity_usd: float = 0.0
    min_creator_reputation: int = 0
    avoid_high_concentration: bool = True
    ai_guidance: AIGuidance = field(default_factory=AIGuidance)

    def __post_init__(self) -> None:
        if self.max_investment_per_token <= 0:
            raise ValueError("max_investment_per_token must be positive")
        if not 0 <= self.max_portfolio_allocation <= 100:
            raise ValueError("max_portfolio_allocation must be a percentage")
        if not 0 <= self.min_creator_reputation <= 100:
            raise ValueError("min_creator_reputation must be within [0, 100]")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskTolerance": self.risk_tolerance.value,
            "maxInvestmentPerToken": str(self.max_investment_per_token),
            "maxPortfolioAllocation": self.max_portfolio_allocation,
            "themes": sorted(theme.value for theme in self.themes),
            "tradingStyle": self.trading_style.value,
            "autoTrade": self.auto_trade,
            "minLiquidityUSD": self.min_liquidity_usd,
            "minCreatorReputation": self.min_creator_reputation,
            "avoidHighConcentration": self.avoid_high_concentration,
            "aiGuidance": {
                "enabled": self.ai_guidance.enabled,
                "aggressiveness": self.ai_guidance.aggressiveness,
                "requireConfirmation": self.ai_guidance.require_confirmation,
            },
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "HolderValues":
        """Build values from the camelCase document written by the profile API."""

        guidance = payload.get("aiGuidance") or {}
        return cls(
            risk_tolerance=RiskTolerance(payload["riskTolerance"]),
            max_investment_per_token=parse_decimal(payload["maxInvestmentPerToken"]),
            max_portfolio_allocation=float(payload.get("maxPortfolioAllocation", 100.0)),
            themes=frozenset(Theme(item) for item in payload.get("themes", [])),
            trading_style=TradingStyle(payload.get("tradingStyle", TradingStyle.HOLDER.value)),
            auto_trade=bool(payload.get("autoTrade", False)),
            min_liquidity_usd=float(payload.get("minLiquidityUSD", 0.0)),
            min_creator_reputation=int(payload.get("minCreatorReputation", 0)),
            avoid_high_concentration=bool(payload.get("avoidHighConcentration", True)),
            ai_guidance=AIGuidance(
                enabled=bool(guidance.get("enabled", True)),
                aggressiveness=int(guidance.get("aggressiveness", 50)),
                require_confirmation=bool(guidance.get("requireConfirmation", True)),
            ),
        )


@dataclass(slots=True)
class HolderProfile:
    """A registered holder together with their value policy."""

    address: str
    values: HolderValues
    is_active: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def automated(self) -> bool:
        """True when decisions may be executed without manual approval."""

        return self.values.auto_trade and not self.values.ai_guidance.require_confirmation


@dataclass(slots=True)
class Position:
    """A holder's token balance and cost basis."""

    holder: str
    token: str
    amount: Decimal
    average_buy_price: Decimal
    total_invested: Decimal
    first_buy_at: datetime
    last_update_at: datetime
    current_value: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None


@dataclass(frozen=True, slots=True)
class TradeDecision:
    """Structured recommendation for one holder and one issuance."""

    token: str
    holder: str
    decision: DecisionKind
    confidence: float
    reasoning: str
    alignment_score: float
    analyzed_at: datetime = field(default_factory=utc_now)
    recommended_amount: Optional[str] = None
    key_factors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "holder": self.holder,
            "decision": self.decision.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "alignment_score": self.alignment_score,
            "recommended_amount": self.recommended_amount,
            "key_factors": list(self.key_factors),
            "analyzed_at": self.analyzed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TradeDecision":
        return cls(
            token=payload["token"],
            holder=payload["holder"],
            decision=DecisionKind(payload["decision"]),
            confidence=float(payload["confidence"]),
            reasoning=payload.get("reasoning", ""),
            alignment_score=float(payload.get("alignment_score", 0)),
            analyzed_at=_parse_datetime(payload["analyzed_at"]),
            recommended_amount=payload.get("recommended_amount"),
            key_factors=tuple(payload.get("key_factors") or ()),
        )


def _execution_id() -> str:
    return f"exec_{int(utc_now().timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(slots=True)
class TradeExecution:
    """A single trade attempt. Moves pending -> confirmed or pending -> failed."""

    holder: str
    token: str
    type: TradeType
    amount: str
    decision: TradeDecision
    price: str = "0"
    status: ExecutionStatus = ExecutionStatus.PENDING
    id: str = field(default_factory=_execution_id)
    created_at: datetime = field(default_factory=utc_now)
    tx_hash: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    error: Optional[str] = None
    max_price: Optional[str] = None
    min_proceeds: Optional[str] = None

    def confirm(self, tx_hash: str, *, at: Optional[datetime] = None) -> None:
        self._ensure_pending()
        self.status = ExecutionStatus.CONFIRMED
        self.tx_hash = tx_hash
        self.confirmed_at = at or utc_now()

    def fail(self, error: str) -> None:
        self._ensure_pending()
        self.status = ExecutionStatus.FAILED
        self.error = error

    def _ensure_pending(self) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Execution {self.id} is already {self.status.value}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "holder": self.holder,
            "token": self.token,
            "type": self.type.value,
            "amount": self.amount,
            "price": self.price,
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "created_at": self.created_at.isoformat(),
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "error": self.error,
            "max_price": self.max_price,
            "min_proceeds": self.min_proceeds,
            "decision": self.decision.to_dict(),
        }


@dataclass(slots=True)
class PortfolioHolding:
    """A position paired with the latest analysis of its token."""

    position: Position
    analysis: TokenAnalysis


@dataclass(slots=True)
class PortfolioRecommendation:
    token: str
    action: str
    reason: str
    urgency: str = "low"


@dataclass(slots=True)
class PortfolioAdvice:
    """Reasoning-service summary of a whole holding set."""

    recommendations: List[PortfolioRecommendation] = field(default_factory=list)
    overall_health: str = "unable to analyze"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": [
                {
                    "token": item.token,
                    "action": item.action,
                    "reason": item.reason,
                    "urgency": item.urgency,
                }
                for item in self.recommendations
            ],
            "overallPortfolioHealth": self.overall_health,
        }


__all__ = [
    "AIGuidance",
    "CurveState",
    "DecisionKind",
    "ExecutionStatus",
    "HolderProfile",
    "HolderValues",
    "IssuanceEvent",
    "PortfolioAdvice",
    "PortfolioHolding",
    "PortfolioRecommendation",
    "Position",
    "RiskTolerance",
    "Theme",
    "TokenAnalysis",
    "TokenMetadata",
    "TradeDecision",
    "TradeEvent",
    "TradeExecution",
    "TradeType",
    "TradingStyle",
    "parse_decimal",
]
