from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False, index=True)
    username = Column(String, unique=True, nullable=True)
    display_name = Column(String, nullable=True)
    # "private" | "business"; only business sellers get invoices
    seller_type = Column(String, nullable=False, default="private")

    # Seller account balance. Changed only through relative UPDATEs
    # (settlement engine, commission clearing sweep).
    total_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    available_balance = Column(Numeric(12, 2), nullable=False, default=0)
    pending_balance = Column(Numeric(12, 2), nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def is_business_seller(self) -> bool:
        return self.seller_type == "business"
