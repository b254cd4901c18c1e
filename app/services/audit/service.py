import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Operational alerts and admin-visible events. Flushes only; the caller owns the commit."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        actor_type: str,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def alert(self, action: str, entity_type: str, entity_id: str | None, payload: dict[str, Any] | None = None) -> AuditLog:
        """System-raised alert: logged at WARNING and kept in audit_logs for review."""
        logger.warning(action, extra={"reason": entity_type, "error": str(payload or {})})
        return self.log(
            actor_type="system",
            actor_id="settlement",
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
        )
