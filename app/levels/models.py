"""
DTO fee tiers: FeeTier (one row of the static table), LevelProgress (progress_to_next result).
"""
from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class FeeTier(BaseModel):
    """One seller level: earnings threshold and the platform fee charged at that level."""

    level: int
    name: str
    min_earnings: Decimal = Field(..., description="Cumulative earnings needed to reach this tier")
    fee_percent: int = Field(..., description="Platform fee in percent of the sale price")

    model_config = {"frozen": True}


class LevelProgress(BaseModel):
    """Progress from the current tier threshold to the next one."""

    current: FeeTier
    next_tier: FeeTier | None = None
    progress: int = Field(..., ge=0, le=100, description="Percent, rounded")
    amount_to_next: Decimal = Decimal("0")

    model_config = {"frozen": True}
