from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from app.db.base import Base, JSONType


class WebhookValidationLog(Base):
    """Append-only audit row per inbound payment-completion payload, whatever the outcome."""

    __tablename__ = "webhook_validation_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stripe_session_id = Column(String, nullable=True, index=True)
    stripe_event_id = Column(String, nullable=True, index=True)
    validation_passed = Column(Boolean, nullable=False)
    is_duplicate = Column(Boolean, nullable=False, default=False)
    validation_errors = Column(JSONType, nullable=False, default=list)
    validation_warnings = Column(JSONType, nullable=False, default=list)
    metadata_received = Column(JSONType, nullable=False, default=dict)
    validated_data = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
