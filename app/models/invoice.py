"""
Invoice row: issued only for business sellers, one per transaction, immutable.
Seller identity fields are a snapshot taken at issue time.
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from app.db.base import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(Integer, unique=True, nullable=False)
    buyer_id = Column(Integer, nullable=True)
    seller_id = Column(Integer, nullable=False, index=True)
    invoice_number = Column(String, unique=True, nullable=True)  # assigned right after insert
    access_token = Column(String(64), unique=True, nullable=False, index=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)

    net_amount = Column(Numeric(12, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # percent
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    gross_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="EUR")

    product_title = Column(String, nullable=False)
    product_description = Column(Text, nullable=True)

    seller_name = Column(String, nullable=False)
    seller_address = Column(Text, nullable=False)
    seller_tax_id = Column(String, nullable=True)
    seller_is_small_business = Column(Boolean, nullable=False, default=False)

    buyer_email = Column(String, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
