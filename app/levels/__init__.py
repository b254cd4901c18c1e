"""
Seller levels and platform fee tiers (static table, pure functions).
"""
from app.levels.models import FeeTier, LevelProgress
from app.levels.tiers import (
    FEE_TIERS,
    fee_percent_for_level,
    next_tier,
    progress_to_next,
    tier_by_level,
    tier_for,
)

__all__ = [
    "FEE_TIERS",
    "FeeTier",
    "LevelProgress",
    "fee_percent_for_level",
    "next_tier",
    "progress_to_next",
    "tier_by_level",
    "tier_for",
]
