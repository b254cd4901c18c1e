"""
DTO settlement: ValidationIssue, Breakdown, ValidationResult (validator output),
SettlementOutcome (engine output).
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """One accumulated error or warning: which field, machine code, human message."""

    field: str
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class Breakdown(BaseModel):
    """Validated three-way split of one sale plus the ids it settles between."""

    session_id: str
    payment_intent_id: str | None = None
    product_id: int
    buyer_id: int
    seller_id: int
    affiliate_id: int | None = None
    affiliate_link_code: str | None = None
    buyer_email: str | None = None
    total: Decimal
    platform_fee: Decimal
    affiliate_commission: Decimal = Decimal("0")
    seller_amount: Decimal
    currency: str = "EUR"
    needs_review: bool = False

    model_config = {"frozen": True}

    def to_log(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ValidationResult(BaseModel):
    valid: bool
    duplicate: bool = False
    existing_transaction_id: int | None = None
    breakdown: Breakdown | None = None
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    def has_error(self, code: str) -> bool:
        return any(e.code == code for e in self.errors)


class SettlementOutcome(BaseModel):
    status: Literal["settled", "duplicate"]
    transaction_id: int
    seller_level: int | None = None
    level_changed: bool = False
