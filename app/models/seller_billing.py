from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from app.db.base import Base


class SellerBilling(Base):
    """Business identity of a seller, snapshotted onto every invoice."""

    __tablename__ = "seller_billing"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    business_name = Column(String, nullable=False)
    street = Column(String, nullable=False)
    zip = Column(String, nullable=False)
    city = Column(String, nullable=False)
    country = Column(String, nullable=False, default="DE")
    # Kleinunternehmer (§ 19 UStG): no VAT charged or itemized
    is_small_business = Column(Boolean, nullable=False, default=False)
    tax_id = Column(String, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def format_address(self) -> str:
        lines = [
            (self.street or "").strip(),
            f"{(self.zip or '').strip()} {(self.city or '').strip()}".strip(),
            (self.country or "").strip(),
        ]
        return "\n".join(line for line in lines if line)
