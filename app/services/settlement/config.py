"""
Typed wrappers over app.core.config.settings.
"""
from __future__ import annotations

from decimal import Decimal

from app.core.config import settings


def get_price_tolerance_abs() -> Decimal:
    return Decimal(str(settings.price_tolerance_abs))


def get_price_tolerance_ratio() -> Decimal:
    return Decimal(str(settings.price_tolerance_ratio))


def get_platform_fee_review_tolerance() -> Decimal:
    return Decimal(str(settings.platform_fee_review_tolerance))


def get_clearing_days() -> int:
    return settings.affiliate_clearing_days


def get_currency() -> str:
    return settings.currency
