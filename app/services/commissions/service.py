"""
CommissionClearingService — moves held affiliate commissions from pending to available.

Called by Celery beat. Safe to run concurrently or repeatedly: each row is claimed with
UPDATE ... WHERE status = 'pending', and money moves only when that claim hit a row.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.affiliate_commission import AffiliateCommission
from app.models.user import User
from app.utils.metrics import commissions_cleared_total
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class CommissionClearingService:
    def __init__(self, db: Session):
        self.db = db

    def due(self, limit: int | None = None) -> list[AffiliateCommission]:
        query = (
            self.db.query(AffiliateCommission)
            .filter(
                AffiliateCommission.status == "pending",
                AffiliateCommission.available_at <= utcnow(),
            )
            .order_by(AffiliateCommission.available_at)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def clear(self, commission: AffiliateCommission) -> bool:
        """Release one commission. Returns False if another run already cleared it. Caller commits."""
        now = utcnow()
        claimed = (
            self.db.query(AffiliateCommission)
            .filter(AffiliateCommission.id == commission.id, AffiliateCommission.status == "pending")
            .update(
                {AffiliateCommission.status: "cleared", AffiliateCommission.cleared_at: now},
                synchronize_session=False,
            )
        )
        if claimed != 1:
            return False

        self.db.query(User).filter(User.id == commission.affiliate_id).update(
            {
                User.pending_balance: User.pending_balance - commission.amount,
                User.available_balance: User.available_balance + commission.amount,
                User.updated_at: now,
            },
            synchronize_session=False,
        )
        logger.info(
            "affiliate_commission_cleared",
            extra={
                "commission_id": commission.id,
                "affiliate_id": commission.affiliate_id,
                "transaction_id": commission.transaction_id,
                "affiliate_commission": str(commission.amount),
            },
        )
        return True

    def process_pending(self, limit: int | None = None) -> int:
        """Clear every commission whose clearing period is over. Commits per row."""
        count = 0
        for commission in self.due(limit):
            if self.clear(commission):
                count += 1
            self.db.commit()
        if count:
            commissions_cleared_total.inc(count)
        return count
