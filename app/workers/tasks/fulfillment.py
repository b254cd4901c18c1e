"""
Celery tasks: post-settlement side effects.

Each runs after the ledger commit, retries on its own and never touches balances:
  issue_download_tokens -> send_purchase_confirmation (with links)
  generate_invoice (business sellers only)

reschedule_missing_side_effects (beat) re-enqueues both for sales left unconfirmed.
"""
import logging
from datetime import timedelta

from sqlalchemy import or_

from app.core.celery_app import celery_app
from app.core.config import settings
from app.db.session import SessionLocal
from app.models.product import Product
from app.models.transaction import Transaction
from app.models.user import User
from app.services.downloads.service import DownloadTokenService
from app.services.email.client import EmailClient, send_purchase_confirmation as send_confirmation_email
from app.services.invoices.service import InvoiceService
from app.utils.metrics import side_effect_failures_total
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


def _enqueue(task, effect: str, transaction_id: int) -> bool:
    try:
        task.delay(transaction_id)
    except Exception:
        side_effect_failures_total.labels(effect=f"{effect}_enqueue").inc()
        logger.exception("side_effect_enqueue_failed", extra={"transaction_id": transaction_id, "reason": effect})
        return False
    return True


def schedule_side_effects(transaction_id: int) -> bool:
    """
    Enqueue side effects for a committed transaction. Confirmation is chained after tokens.
    Each enqueue is independent; returns False if any failed (the recovery sweep picks it up).
    """
    tokens_ok = _enqueue(issue_download_tokens, "download_tokens", transaction_id)
    invoice_ok = _enqueue(generate_invoice, "invoice", transaction_id)
    return tokens_ok and invoice_ok


def _retry_countdown(retries: int) -> int:
    return settings.celery_task_retry_delay * (2 ** retries)


@celery_app.task(
    bind=True,
    name="app.workers.tasks.fulfillment.issue_download_tokens",
    max_retries=settings.celery_task_max_retries,
)
def issue_download_tokens(self, transaction_id: int) -> dict:
    """One download token per file module; then hand over to the confirmation e-mail."""
    db = SessionLocal()
    try:
        tx = db.query(Transaction).filter(Transaction.id == transaction_id).one_or_none()
        if not tx:
            logger.error("issue_tokens_transaction_not_found", extra={"transaction_id": transaction_id})
            return {"ok": False, "error": "transaction_not_found"}

        issued = DownloadTokenService(db).issue_for_transaction(tx)
        db.commit()
    except Exception as exc:
        db.rollback()
        side_effect_failures_total.labels(effect="download_tokens").inc()
        logger.exception("issue_tokens_failed", extra={"transaction_id": transaction_id})
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=_retry_countdown(self.request.retries))
        # Out of retries: the buyer still gets a confirmation, without links.
        _enqueue(send_purchase_confirmation, "confirmation", transaction_id)
        return {"ok": False, "error": "tokens_failed"}
    finally:
        db.close()

    logger.info("issue_tokens_done", extra={"transaction_id": transaction_id, "count": len(issued)})
    _enqueue(send_purchase_confirmation, "confirmation", transaction_id)
    return {"ok": True, "issued": len(issued)}


@celery_app.task(
    bind=True,
    name="app.workers.tasks.fulfillment.generate_invoice",
    max_retries=settings.celery_task_max_retries,
)
def generate_invoice(self, transaction_id: int) -> dict:
    db = SessionLocal()
    try:
        tx = db.query(Transaction).filter(Transaction.id == transaction_id).one_or_none()
        if not tx:
            logger.error("generate_invoice_transaction_not_found", extra={"transaction_id": transaction_id})
            return {"ok": False, "error": "transaction_not_found"}

        invoice = InvoiceService(db).create_for_transaction(tx)
        if invoice is None:
            return {"ok": True, "invoice": None}
        return {"ok": True, "invoice": invoice.invoice_number}
    except Exception as exc:
        db.rollback()
        side_effect_failures_total.labels(effect="invoice").inc()
        logger.exception("generate_invoice_failed", extra={"transaction_id": transaction_id})
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=_retry_countdown(self.request.retries))
        return {"ok": False, "error": "invoice_failed"}
    finally:
        db.close()


def _claim_confirmation(db, transaction_id: int) -> bool:
    """Take the send lease. A lease older than the task time limit belongs to a dead worker."""
    now = utcnow()
    stale = now - timedelta(seconds=settings.celery_task_time_limit)
    claimed = (
        db.query(Transaction)
        .filter(
            Transaction.id == transaction_id,
            Transaction.confirmation_sent_at.is_(None),
            or_(
                Transaction.confirmation_claimed_at.is_(None),
                Transaction.confirmation_claimed_at < stale,
            ),
        )
        .update({Transaction.confirmation_claimed_at: now}, synchronize_session=False)
    ) == 1
    db.commit()
    return claimed


def _finish_confirmation(db, transaction_id: int, sent: bool) -> None:
    """Record the send, or drop the lease so a retry or the sweep can send later."""
    values = {Transaction.confirmation_sent_at: utcnow()} if sent else {Transaction.confirmation_claimed_at: None}
    db.query(Transaction).filter(Transaction.id == transaction_id).update(values, synchronize_session=False)
    db.commit()


@celery_app.task(
    bind=True,
    name="app.workers.tasks.fulfillment.send_purchase_confirmation",
    max_retries=settings.celery_task_max_retries,
)
def send_purchase_confirmation(self, transaction_id: int) -> dict:
    """
    Purchase confirmation with whatever download links exist.

    The transaction is leased via confirmation_claimed_at while sending; confirmation_sent_at
    is set only once the provider accepted the message. A worker that dies mid-send leaves a
    lease that the next delivery takes over after the task time limit.
    """
    db = SessionLocal()
    client = EmailClient()
    claimed = False
    try:
        tx = db.query(Transaction).filter(Transaction.id == transaction_id).one_or_none()
        if not tx:
            logger.error("confirmation_transaction_not_found", extra={"transaction_id": transaction_id})
            return {"ok": False, "error": "transaction_not_found"}
        if tx.confirmation_sent_at is not None:
            logger.info("confirmation_already_sent", extra={"transaction_id": transaction_id})
            return {"ok": True, "already_sent": True}

        email = tx.buyer_email
        if not email and tx.buyer_id:
            email = db.query(User.email).filter(User.id == tx.buyer_id).scalar()
        if not email:
            logger.warning("confirmation_no_recipient", extra={"transaction_id": transaction_id})
            return {"ok": False, "error": "no_recipient"}

        claimed = _claim_confirmation(db, transaction_id)
        if not claimed:
            logger.info("confirmation_in_progress", extra={"transaction_id": transaction_id})
            return {"ok": True, "in_progress": True}

        product = db.query(Product).filter(Product.id == tx.product_id).one_or_none()
        seller_name = db.query(User.display_name).filter(User.id == tx.seller_id).scalar()
        links = DownloadTokenService.build_links(DownloadTokenService(db).issued_for_transaction(tx.id))
        invoice = InvoiceService(db).get_for_transaction(tx.id)

        result = send_confirmation_email(
            client,
            buyer_email=email,
            product_title=product.title if product else f"Product {tx.product_id}",
            seller_name=seller_name,
            amount=tx.amount,
            currency=tx.currency,
            download_links=links,
            invoice_url=InvoiceService.public_url(invoice.access_token) if invoice else None,
        )
        sent = bool(result.get("success"))
        _finish_confirmation(db, transaction_id, sent)
        claimed = False
        logger.info(
            "confirmation_done",
            extra={"transaction_id": transaction_id, "count": len(links), "reason": result.get("reason")},
        )
        return {"ok": sent, "links": len(links)}
    except Exception as exc:
        db.rollback()
        if claimed:
            _finish_confirmation(db, transaction_id, sent=False)
        side_effect_failures_total.labels(effect="confirmation").inc()
        logger.exception("confirmation_failed", extra={"transaction_id": transaction_id})
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=_retry_countdown(self.request.retries))
        return {"ok": False, "error": "confirmation_failed"}
    finally:
        client.close()
        db.close()


@celery_app.task(name="app.workers.tasks.fulfillment.reschedule_missing_side_effects")
def reschedule_missing_side_effects() -> dict:
    """
    Re-enqueue side effects for settled sales that were never confirmed: the enqueue after
    commit failed, or every retry ran out. Both enqueued tasks are idempotent per transaction.
    """
    now = utcnow()
    db = SessionLocal()
    try:
        ids = [
            row.id
            for row in db.query(Transaction.id)
            .filter(
                Transaction.status == "completed",
                Transaction.confirmation_sent_at.is_(None),
                Transaction.created_at < now - timedelta(minutes=settings.side_effect_sweep_grace_minutes),
                Transaction.created_at > now - timedelta(hours=settings.side_effect_sweep_lookback_hours),
            )
            .order_by(Transaction.id)
            .all()
        ]
    finally:
        db.close()

    rescheduled = sum(1 for transaction_id in ids if schedule_side_effects(transaction_id))
    logger.info(
        "reschedule_missing_side_effects_done",
        extra={"count": len(ids), "processed": rescheduled},
    )
    return {"found": len(ids), "rescheduled": rescheduled}
