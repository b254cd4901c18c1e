"""
Held affiliate commission, awaiting the clearing period.
The clearing sweep flips status pending -> cleared with a conditional UPDATE,
so a row can move money from pending to available at most once.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from app.db.base import Base


class AffiliateCommission(Base):
    __tablename__ = "affiliate_commissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(Integer, unique=True, nullable=False)
    affiliate_id = Column(Integer, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending / cleared
    available_at = Column(DateTime(timezone=True), nullable=False, index=True)
    cleared_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
