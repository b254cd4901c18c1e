from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from app.db.base import Base


class DownloadToken(Base):
    __tablename__ = "download_tokens"
    __table_args__ = (
        UniqueConstraint("transaction_id", "module_id", name="uq_download_tokens_transaction_module"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    transaction_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    module_id = Column(Integer, nullable=False)
    buyer_id = Column(Integer, nullable=True)  # null for guest checkout
    buyer_email = Column(String, nullable=True)
    click_count = Column(Integer, nullable=False, default=0)
    max_clicks = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    last_ip = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
