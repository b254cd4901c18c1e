"""
Level progression: pure functions over the static fee tier table. No I/O.
Earnings only grow during settlement, so the derived level never goes down.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.levels.models import FeeTier, LevelProgress

FEE_TIERS: tuple[FeeTier, ...] = (
    FeeTier(level=1, name="Starter", min_earnings=Decimal("0"), fee_percent=29),
    FeeTier(level=2, name="Rising Star", min_earnings=Decimal("100"), fee_percent=20),
    FeeTier(level=3, name="Creator", min_earnings=Decimal("500"), fee_percent=15),
    FeeTier(level=4, name="Pro", min_earnings=Decimal("2000"), fee_percent=12),
    FeeTier(level=5, name="Elite", min_earnings=Decimal("5000"), fee_percent=9),
)


def tier_for(total_earnings: Decimal | int | float) -> FeeTier:
    """Highest tier whose threshold is <= total_earnings."""
    earnings = Decimal(str(total_earnings))
    result = FEE_TIERS[0]
    for tier in FEE_TIERS:
        if earnings >= tier.min_earnings:
            result = tier
    return result


def tier_by_level(level: int) -> FeeTier:
    for tier in FEE_TIERS:
        if tier.level == level:
            return tier
    return FEE_TIERS[0]


def next_tier(level: int) -> FeeTier | None:
    for tier in FEE_TIERS:
        if tier.level > level:
            return tier
    return None


def fee_percent_for_level(level: int) -> int:
    return tier_by_level(level).fee_percent


def progress_to_next(total_earnings: Decimal | int | float, current_level: int) -> LevelProgress:
    """
    Percent of the way from the current tier threshold to the next one, clamped to [0, 100].
    Top tier: always 100 with nothing remaining.
    """
    earnings = Decimal(str(total_earnings))
    current = tier_by_level(current_level)
    upcoming = next_tier(current.level)
    if upcoming is None:
        return LevelProgress(current=current, next_tier=None, progress=100, amount_to_next=Decimal("0"))

    span = upcoming.min_earnings - current.min_earnings
    done = earnings - current.min_earnings
    percent = done / span * 100
    percent = max(Decimal("0"), min(Decimal("100"), percent))
    return LevelProgress(
        current=current,
        next_tier=upcoming,
        progress=int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
        amount_to_next=max(upcoming.min_earnings - earnings, Decimal("0")),
    )
