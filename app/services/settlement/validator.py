"""
SessionValidator — cross-checks a checkout.session.completed payload against stored state.

Produces either a validated Breakdown or the accumulated list of errors/warnings.
Also the application-level idempotency check (the unique constraint on
transactions.stripe_session_id is the authoritative one).
Every call writes one WebhookValidationLog row; the caller commits.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from app.levels import FEE_TIERS
from app.models.affiliate_link import AffiliateLink
from app.models.product import Product
from app.models.transaction import Transaction
from app.models.user import User
from app.models.webhook_validation_log import WebhookValidationLog
from app.schemas.settlement import Breakdown, ValidationIssue, ValidationResult
from app.schemas.webhooks import CheckoutSession
from app.services.audit.service import AuditService
from app.services.settlement import errors as codes
from app.services.settlement.config import (
    get_currency,
    get_platform_fee_review_tolerance,
    get_price_tolerance_abs,
    get_price_tolerance_ratio,
)
from app.utils.currency import from_cents, quantize
from app.utils.metrics import settlement_duplicates_total, validation_failures_total

logger = logging.getLogger(__name__)

REQUIRED_IDS = ("product_id", "buyer_id", "seller_id")


def parse_id(value) -> int | None:
    """Positive integer id from metadata, None if missing or malformed."""
    if value is None:
        return None
    text = str(value).strip()
    # isdigit() also accepts superscripts and non-ASCII digits
    if not (text.isascii() and text.isdigit()):
        return None
    parsed = int(text)
    return parsed if parsed > 0 else None


class SessionValidator:
    def __init__(self, db: Session):
        self.db = db

    def validate(self, session: CheckoutSession, event_id: str | None = None) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        metadata = dict(session.metadata or {})

        # ------------------------------------------------------------------
        # 1. Identifiers
        # ------------------------------------------------------------------
        ids = {name: parse_id(metadata.get(name)) for name in REQUIRED_IDS}
        for name, value in ids.items():
            if value is None:
                errors.append(
                    ValidationIssue(
                        field=name,
                        code=codes.INVALID_ID,
                        message=f"{name} missing or not a positive integer",
                        details={"received": metadata.get(name)},
                    )
                )
        promoter_id = parse_id(metadata.get("promoter_id"))

        if errors:
            return self._finish(session, event_id, metadata, errors, warnings, None)

        product_id, buyer_id, seller_id = ids["product_id"], ids["buyer_id"], ids["seller_id"]

        # ------------------------------------------------------------------
        # 2. Idempotency
        # ------------------------------------------------------------------
        existing = (
            self.db.query(Transaction.id)
            .filter(Transaction.stripe_session_id == session.id)
            .one_or_none()
        )
        if existing:
            return self._duplicate(session, event_id, metadata, existing.id, warnings)

        # ------------------------------------------------------------------
        # 3. Entities
        # ------------------------------------------------------------------
        product = self.db.query(Product).filter(Product.id == product_id).one_or_none()
        if not product:
            errors.append(
                ValidationIssue(
                    field="product_id",
                    code=codes.ENTITY_NOT_FOUND,
                    message=f"product {product_id} does not exist",
                )
            )
        elif product.user_id != seller_id:
            errors.append(
                ValidationIssue(
                    field="seller_id",
                    code=codes.SELLER_MISMATCH,
                    message=f"product {product_id} belongs to user {product.user_id}, not {seller_id}",
                    details={"owner_id": product.user_id, "declared_seller_id": seller_id},
                )
            )

        buyer = self.db.query(User).filter(User.id == buyer_id).one_or_none()
        if not buyer:
            errors.append(
                ValidationIssue(
                    field="buyer_id",
                    code=codes.ENTITY_NOT_FOUND,
                    message=f"buyer {buyer_id} does not exist",
                )
            )

        seller = self.db.query(User).filter(User.id == seller_id).one_or_none()
        if not seller:
            errors.append(
                ValidationIssue(
                    field="seller_id",
                    code=codes.ENTITY_NOT_FOUND,
                    message=f"seller {seller_id} does not exist",
                )
            )

        # ------------------------------------------------------------------
        # 4. Affiliate (optional, never fatal)
        # ------------------------------------------------------------------
        affiliate_id = None
        if promoter_id:
            affiliate_id = self._check_affiliate(
                promoter_id, buyer_id, seller_id, product_id, metadata.get("promoter_code"), warnings
            )

        # ------------------------------------------------------------------
        # 5. Charged amount vs. product price
        # ------------------------------------------------------------------
        total = from_cents(session.amount_total)
        if total is None or total <= 0:
            errors.append(
                ValidationIssue(
                    field="amount_total",
                    code=codes.INVALID_ID,
                    message="amount_total missing or not positive",
                    details={"received": session.amount_total},
                )
            )
        elif product:
            self._check_price(Decimal(str(product.price)), total, errors, warnings)

        # ------------------------------------------------------------------
        # 6. Split (fixed at checkout, not recomputed)
        # ------------------------------------------------------------------
        platform_fee = self._parse_fee(metadata, "platform_fee", errors)
        commission = self._parse_fee(metadata, "affiliate_commission", errors)

        breakdown = None
        if total is not None and platform_fee is not None and commission is not None:
            declared_fee = platform_fee
            if affiliate_id is None and commission > 0:
                # Commission is funded from the platform margin; without a payee the platform keeps it.
                platform_fee = platform_fee + commission
                commission = Decimal("0.00")

            seller_amount = quantize(total - platform_fee - commission)
            if seller_amount < 0:
                errors.append(
                    ValidationIssue(
                        field="amounts",
                        code=codes.NEGATIVE_SETTLEMENT,
                        message=f"seller would receive {seller_amount}",
                        details={
                            "total": str(total),
                            "platform_fee": str(platform_fee),
                            "affiliate_commission": str(commission),
                        },
                    )
                )

            needs_review = False
            if seller and not errors:
                needs_review = self._check_platform_fee(seller, total, declared_fee, warnings)

            if not errors:
                breakdown = Breakdown(
                    session_id=session.id,
                    payment_intent_id=session.payment_intent,
                    product_id=product_id,
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    affiliate_id=affiliate_id,
                    affiliate_link_code=metadata.get("promoter_code") if affiliate_id else None,
                    buyer_email=session.email or (buyer.email if buyer else None),
                    total=total,
                    platform_fee=quantize(platform_fee),
                    affiliate_commission=quantize(commission),
                    seller_amount=seller_amount,
                    currency=(session.currency or get_currency()).upper(),
                    needs_review=needs_review,
                )

        return self._finish(session, event_id, metadata, errors, warnings, breakdown)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_affiliate(
        self,
        promoter_id: int,
        buyer_id: int,
        seller_id: int,
        product_id: int,
        promoter_code: str | None,
        warnings: list[ValidationIssue],
    ) -> int | None:
        """Return the affiliate id to credit, or None (with a warning) when the commission is skipped."""
        promoter = self.db.query(User.id).filter(User.id == promoter_id).one_or_none()
        if not promoter:
            warnings.append(
                ValidationIssue(
                    field="promoter_id",
                    code=codes.AFFILIATE_SKIPPED,
                    message=f"promoter {promoter_id} does not exist, commission skipped",
                )
            )
            return None

        if promoter_id in (buyer_id, seller_id):
            warnings.append(
                ValidationIssue(
                    field="promoter_id",
                    code=codes.AFFILIATE_SKIPPED,
                    message=f"promoter {promoter_id} is a party to the sale, commission skipped",
                )
            )
            return None

        if promoter_code:
            link = self.db.query(AffiliateLink).filter(AffiliateLink.code == promoter_code).one_or_none()
            if (
                not link
                or not link.is_active
                or link.promoter_id != promoter_id
                or link.product_id != product_id
            ):
                warnings.append(
                    ValidationIssue(
                        field="promoter_code",
                        code=codes.AFFILIATE_SKIPPED,
                        message=f"affiliate link {promoter_code!r} not valid for this sale, commission skipped",
                    )
                )
                return None

        return promoter_id

    def _check_price(
        self,
        expected: Decimal,
        actual: Decimal,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        difference = abs(expected - actual)
        if difference <= get_price_tolerance_abs():
            return

        issue = ValidationIssue(
            field="amount",
            code=codes.AMOUNT_MISMATCH,
            message=f"price deviation: expected {expected}, charged {actual}",
            details={"expected": str(expected), "actual": str(actual), "difference": str(difference)},
        )
        if expected <= 0 or difference / expected > get_price_tolerance_ratio():
            errors.append(issue)
        else:
            warnings.append(issue)

    def _parse_fee(self, metadata: dict, name: str, errors: list[ValidationIssue]) -> Decimal | None:
        raw = metadata.get(name)
        if raw is None or raw == "":
            return Decimal("0.00")
        value = from_cents(raw)
        if value is None or value < 0:
            errors.append(
                ValidationIssue(
                    field=name,
                    code=codes.INVALID_ID,
                    message=f"{name} must be a non-negative amount in cents",
                    details={"received": raw},
                )
            )
            return None
        return value

    def _check_platform_fee(
        self,
        seller: User,
        total: Decimal,
        fee: Decimal,
        warnings: list[ValidationIssue],
    ) -> bool:
        """
        Compare the checkout-time fee with what the seller's tiers would charge.
        The seller may have levelled up since checkout, so any tier up to the current level is acceptable.
        Mismatch does not block settlement; the transaction is flagged for review.
        """
        tolerance = get_platform_fee_review_tolerance()
        level = seller.level or 1
        candidates = [
            quantize(total * tier.fee_percent / 100) for tier in FEE_TIERS if tier.level <= level
        ]
        if any(abs(fee - c) <= tolerance for c in candidates):
            return False

        warnings.append(
            ValidationIssue(
                field="platform_fee",
                code=codes.PLATFORM_FEE_DEVIATION,
                message=f"platform fee {fee} does not match any tier fee up to level {level}",
                details={"platform_fee": str(fee), "tier_fees": [str(c) for c in candidates]},
            )
        )
        return True

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _duplicate(
        self,
        session: CheckoutSession,
        event_id: str | None,
        metadata: dict,
        transaction_id: int,
        warnings: list[ValidationIssue],
    ) -> ValidationResult:
        settlement_duplicates_total.labels(detected_by="lookup").inc()
        AuditService(self.db).alert(
            "duplicate_processing_attempt",
            entity_type="transaction",
            entity_id=str(transaction_id),
            payload={"session_id": session.id, "event_id": event_id},
        )
        self._write_log(session, event_id, metadata, False, [], warnings, None, is_duplicate=True)
        logger.info(
            "settlement_duplicate_session",
            extra={"session_id": session.id, "event_id": event_id, "transaction_id": transaction_id},
        )
        return ValidationResult(
            valid=False,
            duplicate=True,
            existing_transaction_id=transaction_id,
            warnings=warnings,
        )

    def _finish(
        self,
        session: CheckoutSession,
        event_id: str | None,
        metadata: dict,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
        breakdown: Breakdown | None,
    ) -> ValidationResult:
        valid = not errors and breakdown is not None
        self._write_log(session, event_id, metadata, valid, errors, warnings, breakdown)

        for issue in errors:
            validation_failures_total.labels(code=issue.code).inc()

        logger.info(
            "session_validated" if valid else "session_validation_failed",
            extra={
                "session_id": session.id,
                "event_id": event_id,
                "errors": [e.model_dump() for e in errors] or None,
                "warnings": [w.model_dump() for w in warnings] or None,
            },
        )
        return ValidationResult(
            valid=valid,
            breakdown=breakdown if valid else None,
            errors=errors,
            warnings=warnings,
        )

    def _write_log(
        self,
        session: CheckoutSession,
        event_id: str | None,
        metadata: dict,
        passed: bool,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
        breakdown: Breakdown | None,
        is_duplicate: bool = False,
    ) -> WebhookValidationLog:
        row = WebhookValidationLog(
            stripe_session_id=session.id,
            stripe_event_id=event_id,
            validation_passed=passed,
            is_duplicate=is_duplicate,
            validation_errors=[e.model_dump(mode="json") for e in errors],
            validation_warnings=[w.model_dump(mode="json") for w in warnings],
            metadata_received={k: (v if isinstance(v, (str, int, float, bool)) or v is None else str(v)) for k, v in metadata.items()},
            validated_data=breakdown.to_log() if breakdown else None,
        )
        self.db.add(row)
        self.db.flush()
        return row
