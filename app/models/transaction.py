"""
Transaction — immutable ledger row for one settled sale.
stripe_session_id is unique: the storage-level idempotency guard.
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, UniqueConstraint

from app.db.base import Base


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (UniqueConstraint("stripe_session_id", name="uq_transactions_stripe_session"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, nullable=False, index=True)
    buyer_id = Column(Integer, nullable=True, index=True)  # null = guest checkout
    buyer_email = Column(String, nullable=True)
    seller_id = Column(Integer, nullable=False, index=True)
    promoter_id = Column(Integer, nullable=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    seller_amount = Column(Numeric(12, 2), nullable=False)
    promoter_commission = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="EUR")

    stripe_session_id = Column(String, nullable=False)
    stripe_payment_id = Column(String, nullable=True)  # payment_intent
    status = Column(String, nullable=False, default="completed")
    affiliate_available_at = Column(DateTime(timezone=True), nullable=True)
    # Set when the platform fee in metadata disagrees with the seller's tier fee
    needs_review = Column(Boolean, nullable=False, default=False)
    # Lease held by the worker sending the confirmation; a stale lease may be taken over
    confirmation_claimed_at = Column(DateTime(timezone=True), nullable=True)
    confirmation_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
