"""Prompt builders for the reasoning service."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Sequence

from ..datalake.schemas import HolderValues, PortfolioHolding, Position, TokenAnalysis

ANALYSIS_SYSTEM_PROMPT = (
    "You are an AI trading advisor for a values-based investment platform called Valuestor. "
    "Analyze tokens and provide trading recommendations based on user values."
)

PORTFOLIO_SYSTEM_PROMPT = (
    "You are an AI portfolio advisor. Provide portfolio analysis and recommendations in JSON format."
)

UNKNOWN = "Unknown"

DECISION_CRITERIA = """DECISION CRITERIA:
1. Values Alignment: Does this token's category, description, and purpose align with the investor's themes?
2. Risk Assessment: Is the risk score acceptable given the investor's risk tolerance?
3. Financial Viability: Is the liquidity sufficient? Is the price reasonable?
4. Creator Trust: Does the creator have good reputation? Any rug history?
5. Holder Distribution: Is concentration acceptable?
6. Position Management: If holding, should we take profits, hold, or sell?"""

DECISION_RESPONSE_FORMAT = """RESPONSE FORMAT (JSON):
{
  "decision": "buy" | "sell" | "hold" | "skip",
  "confidence": 0-100,
  "alignmentScore": 0-100,
  "reasoning": "Your detailed reasoning here",
  "recommendedAmount": "0.01",
  "keyFactors": ["factor1", "factor2", "factor3"]
}"""

DECISION_RULES = """IMPORTANT:
- "skip" means don't trade (misaligned values or high risk)
- "buy" only if values align well and risk is acceptable
- "sell" if currently holding and should exit
- "hold" if currently holding and should continue
- Be conservative with risk - investor trust is paramount
- Consider the AI aggressiveness level: higher = more willing to take risks
- NEVER recommend buying if creator has rug history
- Match trading style: holders prefer long-term, day traders prefer quick trades

Provide your response as valid JSON only, no additional text."""

PORTFOLIO_RESPONSE_FORMAT = """Response format (JSON):
{
  "recommendations": [
    {
      "token": "0x...",
      "action": "sell" | "hold" | "buy_more",
      "reason": "why",
      "urgency": "low" | "medium" | "high"
    }
  ],
  "overallPortfolioHealth": "Assessment here"
}"""


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _or_default(value: Any, default: str = "N/A") -> str:
    if value is None or value == "":
        return default
    return str(value)


def _join(items: Optional[Iterable[str]], default: str = "N/A") -> str:
    values = sorted(items) if isinstance(items, (set, frozenset)) else list(items or [])
    return ", ".join(values) if values else default


def _values_section(values: HolderValues) -> List[str]:
    return [
        "INVESTOR VALUES:",
        f"- Risk Tolerance: {values.risk_tolerance.value}",
        f"- Max Investment Per Token: {values.max_investment_per_token} ETH",
        f"- Max Portfolio Allocation: {values.max_portfolio_allocation:g}%",
        f"- Investment Themes: {_join(sorted(theme.value for theme in values.themes))}",
        f"- Trading Style: {values.trading_style.value}",
        f"- Auto Trade: {_yes_no(values.auto_trade)}",
        f"- Min Liquidity USD: ${values.min_liquidity_usd:g}",
        f"- Min Creator Reputation: {values.min_creator_reputation}/100",
        f"- Avoid High Concentration: {_yes_no(values.avoid_high_concentration)}",
        f"- AI Aggressiveness: {values.ai_guidance.aggressiveness}/100",
    ]


def _token_section(analysis: TokenAnalysis) -> List[str]:
    metadata = analysis.metadata
    return [
        "TOKEN INFORMATION:",
        f"- Address: {analysis.token}",
        f"- Name: {metadata.name}",
        f"- Symbol: {metadata.symbol}",
        f"- Description: {_or_default(metadata.description)}",
        f"- Category: {_or_default(metadata.category)}",
        f"- Tags: {_join(metadata.tags)}",
        f"- Creator: {metadata.creator}",
    ]


def _curve_section(analysis: TokenAnalysis) -> List[str]:
    curve = analysis.curve_state
    liquidity = f"${curve.liquidity_usd:g}" if curve.liquidity_usd is not None else UNKNOWN
    return [
        "BONDING CURVE STATUS:",
        f"- Current Price: {curve.current_price} ETH",
        f"- Total Supply: {curve.total_supply}",
        f"- Reserve ETH: {curve.reserve_value} ETH",
        f"- Market Cap: {curve.market_cap} ETH",
        f"- Graduated: {_yes_no(curve.graduated)}",
        f"- Liquidity USD: {liquidity}",
    ]


def _risk_section(analysis: TokenAnalysis) -> List[str]:
    concentration = (
        f"{analysis.top_holder_concentration:g}%"
        if analysis.top_holder_concentration is not None
        else UNKNOWN
    )
    if analysis.creator_rug_history is None:
        rug_history = UNKNOWN
    else:
        rug_history = "YES - HIGH RISK" if analysis.creator_rug_history else "No"
    return [
        "RISK ASSESSMENT:",
        f"- Risk Score: {analysis.risk_score}/100",
        f"- Risk Flags: {_join(analysis.risk_flags, 'None')}",
        f"- Holder Count: {_or_default(analysis.holder_count, UNKNOWN)}",
        f"- Top Holder Concentration: {concentration}",
        f"- Creator Reputation: {_or_default(analysis.creator_reputation, UNKNOWN)}/100",
        f"- Creator Rug History: {rug_history}",
    ]


def _position_section(analysis: TokenAnalysis, position: Optional[Position]) -> List[str]:
    if position is None:
        return ["No current position in this token."]
    return [
        "CURRENT POSITION:",
        f"- Amount: {position.amount} tokens",
        f"- Average Buy Price: {position.average_buy_price} ETH",
        f"- Current Price: {analysis.curve_state.current_price} ETH",
    ]


def build_analysis_prompt(
    analysis: TokenAnalysis,
    values: HolderValues,
    position: Optional[Position] = None,
) -> str:
    """Render the per-holder trade analysis prompt."""

    sections: Sequence[List[str]] = (
        ["You are an AI trading advisor for a values-based investment platform called Valuestor."],
        _values_section(values),
        _token_section(analysis),
        _curve_section(analysis),
        _risk_section(analysis),
        _position_section(analysis, position),
        [
            "TASK:",
            "Analyze this token against the investor's values and provide a trading recommendation.",
        ],
        [DECISION_CRITERIA],
        [DECISION_RESPONSE_FORMAT],
        [DECISION_RULES],
    )
    return "\n\n".join("\n".join(lines) for lines in sections)


def _holding_lines(index: int, holding: PortfolioHolding) -> List[str]:
    position = holding.position
    metadata = holding.analysis.metadata
    return [
        f"{index}. {metadata.name} ({metadata.symbol})",
        f"   - Token: {position.token}",
        f"   - Category: {_or_default(metadata.category)}",
        f"   - Amount: {position.amount} tokens",
        f"   - Avg Buy Price: {position.average_buy_price} ETH",
        f"   - Current Value: {_or_default(position.current_value, UNKNOWN)} ETH",
        f"   - Unrealized P&L: {_or_default(position.unrealized_pnl, UNKNOWN)} ETH",
        f"   - Risk Score: {holding.analysis.risk_score}/100",
        f"   - Risk Flags: {_join(holding.analysis.risk_flags, 'None')}",
    ]


def build_portfolio_prompt(values: HolderValues, holdings: Sequence[PortfolioHolding]) -> str:
    """Render the whole-portfolio review prompt."""

    lines: List[str] = [
        "You are an AI portfolio advisor for Valuestor.",
        "",
        "INVESTOR VALUES:",
        f"- Risk Tolerance: {values.risk_tolerance.value}",
        f"- Trading Style: {values.trading_style.value}",
        f"- Investment Themes: {_join(sorted(theme.value for theme in values.themes))}",
        "",
        f"CURRENT PORTFOLIO ({len(holdings)} positions):",
    ]
    for index, holding in enumerate(holdings, start=1):
        lines.append("")
        lines.extend(_holding_lines(index, holding))
    lines.extend(
        [
            "",
            "Analyze this portfolio and provide:",
            "1. Recommendations for each position (sell, hold, or buy more)",
            "2. Overall portfolio health assessment",
            "3. Any urgent actions needed",
            "",
            PORTFOLIO_RESPONSE_FORMAT,
        ]
    )
    return "\n".join(lines)


__all__ = [
    "ANALYSIS_SYSTEM_PROMPT",
    "PORTFOLIO_SYSTEM_PROMPT",
    "build_analysis_prompt",
    "build_portfolio_prompt",
]
