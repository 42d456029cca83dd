"""Heuristic risk scoring for freshly issued tokens.

Scores start at 100 and lose points for thin metadata and a shallow bonding
curve reserve. Higher is safer.
"""

from __future__ import annotations

from decimal import Decimal
from typing import FrozenSet, List, Optional, Sequence

from ..datalake.schemas import CurveState, TokenMetadata
from ..utils.constants import LOW_RESERVE, MODEST_RESERVE, VERY_LOW_RESERVE

VERY_LOW_LIQUIDITY = "VERY_LOW_LIQUIDITY"

MAX_SCORE = 100
MIN_SCORE = 0

MISSING_DESCRIPTION_PENALTY = 10
MISSING_CATEGORY_PENALTY = 5
MISSING_TAGS_PENALTY = 5

# (reserve threshold, penalty); the first matching tier applies.
RESERVE_PENALTIES: Sequence[tuple[Decimal, int]] = (
    (Decimal(VERY_LOW_RESERVE), 30),
    (Decimal(LOW_RESERVE), 15),
    (Decimal(MODEST_RESERVE), 5),
)


def _metadata_penalty(
    description: Optional[str],
    category: Optional[str],
    tags: Optional[Sequence[str]],
) -> int:
    penalty = 0
    if not description:
        penalty += MISSING_DESCRIPTION_PENALTY
    if not category:
        penalty += MISSING_CATEGORY_PENALTY
    if not tags:
        penalty += MISSING_TAGS_PENALTY
    return penalty


def reserve_penalty(reserve: Decimal) -> int:
    for threshold, penalty in RESERVE_PENALTIES:
        if reserve < threshold:
            return penalty
    return 0


def score_issuance_risk(curve: CurveState, metadata: TokenMetadata) -> int:
    """Return the issuance risk score clamped to ``[0, 100]``."""

    score = MAX_SCORE
    score -= _metadata_penalty(metadata.description, metadata.category, metadata.tags)
    score -= reserve_penalty(curve.reserve_value)
    return max(MIN_SCORE, min(MAX_SCORE, score))


def identify_risk_flags(curve: CurveState) -> FrozenSet[str]:
    flags: List[str] = []
    if curve.reserve_value < Decimal(VERY_LOW_RESERVE):
        flags.append(VERY_LOW_LIQUIDITY)
    return frozenset(flags)


__all__ = [
    "VERY_LOW_LIQUIDITY",
    "identify_risk_flags",
    "reserve_penalty",
    "score_issuance_risk",
]
