"""
SettlementEngine — commits a validated Breakdown as one ledger transaction.

Order:
  1. insert Transaction (unique stripe_session_id; IntegrityError -> duplicate)
  2. seller: relative UPDATE of total_earnings / available_balance, level via SQL CASE
  3. affiliate: relative UPDATE of pending_balance + AffiliateCommission row
  4. commit, then schedule side effects (tokens, invoice, confirmation) on Celery

Balances are never read-modified-written in Python.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.levels import FEE_TIERS
from app.models.affiliate_commission import AffiliateCommission
from app.models.affiliate_link import AffiliateLink
from app.models.product import Product
from app.models.transaction import Transaction
from app.models.user import User
from app.schemas.settlement import Breakdown, SettlementOutcome
from app.services.audit.service import AuditService
from app.services.settlement.config import get_clearing_days
from app.utils.metrics import settlement_amount, settlement_duplicates_total, settlements_total
from app.utils.time import utcnow
from app.workers.tasks.fulfillment import schedule_side_effects

logger = logging.getLogger(__name__)


def level_expression(new_total):
    """SQL expression: tier level for new_total, never below the stored level."""
    derived = case(
        *[(new_total >= tier.min_earnings, tier.level) for tier in reversed(FEE_TIERS)],
        else_=FEE_TIERS[0].level,
    )
    return case((derived > User.level, derived), else_=User.level)


class SettlementEngine:
    def __init__(self, db: Session):
        self.db = db

    def settle(self, breakdown: Breakdown) -> SettlementOutcome:
        """Apply the financial effects of one sale exactly once. Commits."""
        now = utcnow()
        has_affiliate = breakdown.affiliate_id is not None and breakdown.affiliate_commission > 0
        available_at = now + timedelta(days=get_clearing_days()) if has_affiliate else None

        transaction = Transaction(
            product_id=breakdown.product_id,
            buyer_id=breakdown.buyer_id,
            buyer_email=breakdown.buyer_email,
            seller_id=breakdown.seller_id,
            promoter_id=breakdown.affiliate_id if has_affiliate else None,
            amount=breakdown.total,
            platform_fee=breakdown.platform_fee,
            seller_amount=breakdown.seller_amount,
            promoter_commission=breakdown.affiliate_commission if has_affiliate else 0,
            currency=breakdown.currency,
            stripe_session_id=breakdown.session_id,
            stripe_payment_id=breakdown.payment_intent_id,
            status="completed",
            affiliate_available_at=available_at,
            needs_review=breakdown.needs_review,
            created_at=now,
        )
        self.db.add(transaction)
        try:
            self.db.flush()
        except IntegrityError:
            # Concurrent delivery of the same session won the unique constraint.
            self.db.rollback()
            return self._duplicate(breakdown)

        old_level = self.db.query(User.level).filter(User.id == breakdown.seller_id).scalar()

        self._credit_seller(breakdown)
        if has_affiliate:
            self._hold_commission(transaction, breakdown, available_at)

        self.db.query(Product).filter(Product.id == breakdown.product_id).update(
            {Product.sales_count: Product.sales_count + 1},
            synchronize_session=False,
        )

        if breakdown.needs_review:
            AuditService(self.db).alert(
                "platform_fee_review",
                entity_type="transaction",
                entity_id=str(transaction.id),
                payload=breakdown.to_log(),
            )

        self.db.commit()

        new_level = self.db.query(User.level).filter(User.id == breakdown.seller_id).scalar()
        settlements_total.inc()
        settlement_amount.observe(float(breakdown.total))

        logger.info(
            "settlement_committed",
            extra={
                "transaction_id": transaction.id,
                "session_id": breakdown.session_id,
                "product_id": breakdown.product_id,
                "buyer_id": breakdown.buyer_id,
                "seller_id": breakdown.seller_id,
                "affiliate_id": breakdown.affiliate_id if has_affiliate else None,
                "amount": str(breakdown.total),
                "seller_amount": str(breakdown.seller_amount),
                "platform_fee": str(breakdown.platform_fee),
                "affiliate_commission": str(breakdown.affiliate_commission),
            },
        )
        if old_level is not None and new_level != old_level:
            logger.info(
                "seller_level_changed",
                extra={"seller_id": breakdown.seller_id, "old_level": old_level, "new_level": new_level},
            )

        self._schedule(transaction.id)

        return SettlementOutcome(
            status="settled",
            transaction_id=transaction.id,
            seller_level=new_level,
            level_changed=old_level is not None and new_level != old_level,
        )

    # ------------------------------------------------------------------
    # Balance updates
    # ------------------------------------------------------------------

    def _credit_seller(self, breakdown: Breakdown) -> None:
        amount = breakdown.seller_amount
        new_total = User.total_earnings + amount
        updated = (
            self.db.query(User)
            .filter(User.id == breakdown.seller_id)
            .update(
                {
                    User.level: level_expression(new_total),
                    User.total_earnings: new_total,
                    User.available_balance: User.available_balance + amount,
                    User.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            # Validated a moment ago; a missing seller now means the row was removed mid-flight.
            raise LookupError(f"seller {breakdown.seller_id} not found during settlement")

    def _hold_commission(self, transaction: Transaction, breakdown: Breakdown, available_at) -> None:
        commission = breakdown.affiliate_commission
        self.db.query(User).filter(User.id == breakdown.affiliate_id).update(
            {User.pending_balance: User.pending_balance + commission},
            synchronize_session=False,
        )
        self.db.add(
            AffiliateCommission(
                transaction_id=transaction.id,
                affiliate_id=breakdown.affiliate_id,
                amount=commission,
                status="pending",
                available_at=available_at,
            )
        )
        if breakdown.affiliate_link_code:
            self.db.query(AffiliateLink).filter(AffiliateLink.code == breakdown.affiliate_link_code).update(
                {AffiliateLink.conversions: AffiliateLink.conversions + 1},
                synchronize_session=False,
            )
        self.db.flush()
        logger.info(
            "affiliate_commission_held",
            extra={
                "transaction_id": transaction.id,
                "affiliate_id": breakdown.affiliate_id,
                "affiliate_commission": str(commission),
            },
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _duplicate(self, breakdown: Breakdown) -> SettlementOutcome:
        existing = (
            self.db.query(Transaction.id)
            .filter(Transaction.stripe_session_id == breakdown.session_id)
            .one()
        )
        settlement_duplicates_total.labels(detected_by="constraint").inc()
        AuditService(self.db).alert(
            "duplicate_processing_attempt",
            entity_type="transaction",
            entity_id=str(existing.id),
            payload={"session_id": breakdown.session_id, "detected_by": "constraint"},
        )
        self.db.commit()
        logger.warning(
            "settlement_duplicate_constraint",
            extra={"session_id": breakdown.session_id, "transaction_id": existing.id},
        )
        return SettlementOutcome(status="duplicate", transaction_id=existing.id)

    def _schedule(self, transaction_id: int) -> None:
        """Hand side effects to the workers. The ledger is already committed."""
        try:
            schedule_side_effects(transaction_id)
        except Exception:
            logger.exception("side_effects_schedule_failed", extra={"transaction_id": transaction_id})
