"""Turn a token analysis and a holder's values into a single trade decision."""

from __future__ import annotations

from typing import Any, List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config.settings import ReasoningConfig, get_app_config
from ..datalake.schemas import (
    DecisionKind,
    HolderProfile,
    PortfolioAdvice,
    PortfolioHolding,
    PortfolioRecommendation,
    Position,
    TokenAnalysis,
    TradeDecision,
    parse_decimal,
)
from ..errors import ReasoningServiceError
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.json_parser import parse_model_json
from .prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    PORTFOLIO_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_portfolio_prompt,
)
from .reasoning import ReasoningService

PARSE_FAILURE_REASON = "parse failure, defaulting to skip"
SERVICE_UNAVAILABLE_REASON = "reasoning service unavailable, defaulting to skip"
DEFAULT_ALIGNMENT_SCORE = 50.0
PORTFOLIO_FALLBACK_HEALTH = "unable to analyze"
EMPTY_PORTFOLIO_HEALTH = "no open positions"

logger = get_logger(__name__)


class DecisionPayload(BaseModel):
    """Validated shape of the reasoning service's decision object."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    decision: DecisionKind
    confidence: float = Field(ge=0.0, le=100.0)
    reasoning: str
    alignment_score: float = Field(default=DEFAULT_ALIGNMENT_SCORE, ge=0.0, le=100.0, alias="alignmentScore")
    recommended_amount: Optional[str] = Field(default=None, alias="recommendedAmount")
    key_factors: List[str] = Field(default_factory=list, alias="keyFactors")

    @field_validator("decision", mode="before")
    @classmethod
    def _normalize_decision(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("confidence", "alignment_score", mode="before")
    @classmethod
    def _reject_booleans(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("expected a number")
        return value

    @field_validator("alignment_score", mode="before")
    @classmethod
    def _default_alignment(cls, value: Any) -> Any:
        return DEFAULT_ALIGNMENT_SCORE if value is None else value

    @field_validator("reasoning")
    @classmethod
    def _require_reasoning(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reasoning must not be empty")
        return value.strip()

    @field_validator("recommended_amount", mode="before")
    @classmethod
    def _normalize_amount(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise ValueError("expected a decimal amount")
        return str(parse_decimal(value))

    @field_validator("key_factors", mode="before")
    @classmethod
    def _coerce_factors(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [str(item) for item in value]
        return value


class RecommendationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str
    action: Literal["sell", "hold", "buy_more"]
    reason: str
    urgency: Literal["low", "medium", "high"] = "low"


class PortfolioPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    recommendations: List[Any] = Field(default_factory=list)
    overall_health: str = Field(alias="overallPortfolioHealth")


class DecisionEngine:
    """Ask the reasoning service for a decision and fail closed on anything unusable."""

    def __init__(self, reasoning: ReasoningService, config: Optional[ReasoningConfig] = None) -> None:
        self._reasoning = reasoning
        self._config = config or get_app_config().reasoning

    async def analyze(
        self,
        analysis: TokenAnalysis,
        holder: HolderProfile,
        current_position: Optional[Position] = None,
    ) -> TradeDecision:
        prompt = build_analysis_prompt(analysis, holder.values, current_position)
        try:
            with METRICS.timer("decision_engine.latency_seconds"):
                raw = await self._reasoning.complete(
                    ANALYSIS_SYSTEM_PROMPT,
                    prompt,
                    temperature=self._config.temperature,
                    max_tokens=self._config.max_tokens,
                    json_mode=True,
                )
        except ReasoningServiceError as exc:
            logger.warning(
                "Reasoning service unavailable",
                extra={"token": analysis.token, "holder": holder.address, "error": str(exc)},
            )
            decision = self._fail_closed(analysis.token, holder.address, SERVICE_UNAVAILABLE_REASON)
        else:
            decision = self.parse_decision(raw, token=analysis.token, holder=holder.address)
        METRICS.increment(f"decisions.{decision.decision.value}")
        return decision

    def parse_decision(self, raw: str, *, token: str, holder: str) -> TradeDecision:
        """Map raw reasoning output to a decision, or to a skip when it is unusable."""

        try:
            payload = DecisionPayload.model_validate(parse_model_json(raw, context="trade decision"))
        except (ValueError, ValidationError) as exc:
            logger.warning(
                "Unusable decision payload",
                extra={"token": token, "holder": holder, "error": str(exc), "preview": raw[:300]},
            )
            return self._fail_closed(token, holder, PARSE_FAILURE_REASON)
        return TradeDecision(
            token=token,
            holder=holder,
            decision=payload.decision,
            confidence=payload.confidence,
            reasoning=payload.reasoning,
            alignment_score=payload.alignment_score,
            recommended_amount=payload.recommended_amount,
            key_factors=tuple(payload.key_factors),
        )

    def _fail_closed(self, token: str, holder: str, reason: str) -> TradeDecision:
        METRICS.increment("decisions.fail_closed")
        return TradeDecision(
            token=token,
            holder=holder,
            decision=DecisionKind.SKIP,
            confidence=0.0,
            reasoning=reason,
            alignment_score=0.0,
        )

    async def portfolio_advice(
        self,
        holder: HolderProfile,
        holdings: Sequence[PortfolioHolding],
    ) -> PortfolioAdvice:
        """Review every holding in one call. Never raises for bad service output."""

        if not holdings:
            return PortfolioAdvice([], EMPTY_PORTFOLIO_HEALTH)
        prompt = build_portfolio_prompt(holder.values, holdings)
        try:
            raw = await self._reasoning.complete(
                PORTFOLIO_SYSTEM_PROMPT,
                prompt,
                temperature=self._config.temperature,
                max_tokens=self._config.portfolio_max_tokens,
                json_mode=True,
            )
            payload = PortfolioPayload.model_validate(parse_model_json(raw, context="portfolio advice"))
        except (ReasoningServiceError, ValueError, ValidationError) as exc:
            logger.warning(
                "Portfolio advice unavailable", extra={"holder": holder.address, "error": str(exc)}
            )
            return PortfolioAdvice([], PORTFOLIO_FALLBACK_HEALTH)

        recommendations: List[PortfolioRecommendation] = []
        for entry in payload.recommendations:
            try:
                item = RecommendationPayload.model_validate(entry)
            except ValidationError:
                logger.debug("Dropping malformed recommendation", extra={"entry": entry})
                continue
            recommendations.append(
                PortfolioRecommendation(
                    token=item.token,
                    action=item.action,
                    reason=item.reason,
                    urgency=item.urgency,
                )
            )
        return PortfolioAdvice(recommendations, payload.overall_health)


__all__ = [
    "DecisionEngine",
    "DecisionPayload",
    "PARSE_FAILURE_REASON",
    "PORTFOLIO_FALLBACK_HEALTH",
    "SERVICE_UNAVAILABLE_REASON",
]
