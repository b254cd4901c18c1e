"""
WebhookReceiver — verifies a Stripe webhook and routes it into settlement.

Signature is checked over the unmodified raw body before anything is parsed or stored.
Unknown event types are acknowledged and ignored.
Validation failures are permanent (same payload fails the same way on redelivery):
acknowledged as "rejected" and left for review. Infrastructure errors propagate so the
processor retries.
"""
from __future__ import annotations

import json
import logging
import time

import stripe
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.webhook_event import WebhookEvent
from app.schemas.webhooks import CheckoutSession, WebhookAck, WebhookEnvelope
from app.services.audit.service import AuditService
from app.services.settlement.engine import SettlementEngine
from app.services.settlement.errors import InvalidPayload, SignatureInvalid
from app.services.settlement.validator import SessionValidator
from app.utils.metrics import (
    webhook_events_total,
    webhook_processing_seconds,
    webhook_signature_failures_total,
)

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

# Ack status -> webhook_events.status
EVENT_STATUS = {
    "settled": "processed",
    "duplicate": "processed",
    "ignored": "ignored",
    "rejected": "rejected",
}


def verify_signature(payload: bytes, signature: str | None, secret: str, tolerance: int) -> None:
    if not signature:
        raise SignatureInvalid("missing Stripe-Signature header")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), signature, secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
        raise SignatureInvalid(str(e)) from e


def parse_envelope(payload: bytes) -> WebhookEnvelope:
    try:
        return WebhookEnvelope.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as e:
        raise InvalidPayload(str(e)) from e


class WebhookReceiver:
    def __init__(self, db: Session, secret: str | None = None, tolerance: int | None = None):
        self.db = db
        self.secret = secret or settings.stripe_webhook_secret
        self.tolerance = tolerance if tolerance is not None else settings.stripe_webhook_tolerance_seconds

    def handle(self, payload: bytes, signature: str | None) -> WebhookAck:
        try:
            verify_signature(payload, signature, self.secret, self.tolerance)
        except SignatureInvalid:
            webhook_signature_failures_total.inc()
            logger.warning("webhook_signature_invalid")
            raise

        envelope = parse_envelope(payload)
        start = time.time()

        event = WebhookEvent(event_id=envelope.id, event_type=envelope.type, status="processing")
        self.db.add(event)
        self.db.commit()
        event_pk = event.id
        logger.info("webhook_event_processing", extra={"event_id": envelope.id, "event_type": envelope.type})

        try:
            if envelope.type == CHECKOUT_COMPLETED:
                ack = self._checkout_completed(envelope)
            else:
                logger.info("webhook_event_ignored", extra={"event_id": envelope.id, "event_type": envelope.type})
                ack = WebhookAck(status="ignored")
        except Exception as e:
            self.db.rollback()
            self._mark(event_pk, "failed", str(e)[:1000])
            webhook_events_total.labels(event_type=envelope.type, outcome="failed").inc()
            logger.exception("webhook_event_failed", extra={"event_id": envelope.id, "event_type": envelope.type})
            raise

        self._mark(event_pk, EVENT_STATUS[ack.status])
        webhook_events_total.labels(event_type=envelope.type, outcome=ack.status).inc()
        webhook_processing_seconds.observe(time.time() - start)
        logger.info(
            "webhook_event_processed",
            extra={
                "event_id": envelope.id,
                "event_type": envelope.type,
                "transaction_id": ack.transaction_id,
                "reason": ack.status,
            },
        )
        return ack

    def _checkout_completed(self, envelope: WebhookEnvelope) -> WebhookAck:
        try:
            session = CheckoutSession.model_validate(envelope.data.object)
        except ValidationError as e:
            raise InvalidPayload(str(e)) from e

        result = SessionValidator(self.db).validate(session, event_id=envelope.id)
        # Validation log is durable before any money moves.
        self.db.commit()

        if result.duplicate:
            return WebhookAck(status="duplicate", transaction_id=result.existing_transaction_id)

        if not result.valid:
            errors = [e.model_dump(mode="json") for e in result.errors]
            AuditService(self.db).alert(
                "settlement_rejected",
                entity_type="checkout_session",
                entity_id=session.id,
                payload={"event_id": envelope.id, "errors": errors},
            )
            self.db.commit()
            return WebhookAck(status="rejected", errors=errors)

        outcome = SettlementEngine(self.db).settle(result.breakdown)
        return WebhookAck(status=outcome.status, transaction_id=outcome.transaction_id)

    def _mark(self, event_pk: int, status: str, error: str | None = None) -> None:
        self.db.query(WebhookEvent).filter(WebhookEvent.id == event_pk).update(
            {WebhookEvent.status: status, WebhookEvent.error_message: error},
            synchronize_session=False,
        )
        self.db.commit()
