"""Tests for post-settlement Celery tasks: tokens -> confirmation chain, invoice, at-most-once e-mail."""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.models.download_token import DownloadToken
from app.models.invoice import Invoice
from app.models.transaction import Transaction
from app.utils.time import utcnow
from app.workers.tasks import clearing, fulfillment


@pytest.fixture
def task_db(db):
    """Tasks open their own session; point SessionLocal at the test database."""
    factory = sessionmaker(bind=db.get_bind(), autocommit=False, autoflush=False)
    with patch.object(fulfillment, "SessionLocal", factory), patch.object(clearing, "SessionLocal", factory):
        yield db


@pytest.fixture
def sale(db, make_user, make_product, make_module):
    seller = make_user(display_name="Anna", seller_type="business")
    buyer = make_user(email="buyer@example.com")
    product = make_product(seller, title="Brand Kit", price=Decimal("119.00"))
    make_module(product, "file", title="Kit files")
    tx = Transaction(
        product_id=product.id,
        buyer_id=buyer.id,
        seller_id=seller.id,
        amount=Decimal("119.00"),
        platform_fee=Decimal("34.51"),
        seller_amount=Decimal("84.49"),
        stripe_session_id="cs_tasks",
    )
    db.add(tx)
    db.commit()
    return tx.id, seller


@pytest.fixture
def email_client():
    with patch.object(fulfillment, "EmailClient") as client_cls:
        client = client_cls.return_value
        client.send.return_value = {"success": True, "id": "email_1"}
        yield client


def test_schedule_enqueues_tokens_and_invoice():
    with patch.object(fulfillment.issue_download_tokens, "delay") as tokens, \
            patch.object(fulfillment.generate_invoice, "delay") as invoice:
        fulfillment.schedule_side_effects(42)
    tokens.assert_called_once_with(42)
    invoice.assert_called_once_with(42)


def test_failed_token_enqueue_does_not_block_invoice():
    with patch.object(fulfillment.issue_download_tokens, "delay", side_effect=ConnectionError("broker down")), \
            patch.object(fulfillment.generate_invoice, "delay") as invoice:
        assert fulfillment.schedule_side_effects(42) is False
    invoice.assert_called_once_with(42)


def test_failed_invoice_enqueue_does_not_block_tokens():
    with patch.object(fulfillment.issue_download_tokens, "delay") as tokens, \
            patch.object(fulfillment.generate_invoice, "delay", side_effect=ConnectionError("broker down")):
        assert fulfillment.schedule_side_effects(42) is False
    tokens.assert_called_once_with(42)


class TestIssueDownloadTokens:
    def test_issues_then_chains_confirmation(self, task_db, sale):
        tx_id, _ = sale
        with patch.object(fulfillment.send_purchase_confirmation, "delay") as confirm:
            result = fulfillment.issue_download_tokens.run(tx_id)

        assert result == {"ok": True, "issued": 1}
        assert task_db.query(DownloadToken).filter(DownloadToken.transaction_id == tx_id).count() == 1
        confirm.assert_called_once_with(tx_id)

    def test_unknown_transaction(self, task_db):
        with patch.object(fulfillment.send_purchase_confirmation, "delay") as confirm:
            result = fulfillment.issue_download_tokens.run(999)
        assert result["error"] == "transaction_not_found"
        confirm.assert_not_called()

    def test_out_of_retries_still_confirms(self, task_db, sale):
        tx_id, _ = sale
        with patch.object(fulfillment, "DownloadTokenService") as svc_cls, \
                patch.object(fulfillment.issue_download_tokens, "max_retries", 0), \
                patch.object(fulfillment.send_purchase_confirmation, "delay") as confirm:
            svc_cls.return_value.issue_for_transaction.side_effect = RuntimeError("storage down")
            result = fulfillment.issue_download_tokens.run(tx_id)

        assert result == {"ok": False, "error": "tokens_failed"}
        confirm.assert_called_once_with(tx_id)


class TestGenerateInvoice:
    def test_business_seller(self, task_db, sale, make_billing):
        tx_id, seller = sale
        make_billing(seller)
        task_db.commit()

        result = fulfillment.generate_invoice.run(tx_id)

        assert result["ok"] is True
        assert result["invoice"].startswith("INV-")
        assert task_db.query(Invoice).count() == 1

    def test_no_billing_profile_is_not_an_error(self, task_db, sale):
        tx_id, _ = sale
        assert fulfillment.generate_invoice.run(tx_id) == {"ok": True, "invoice": None}


class TestSendPurchaseConfirmation:
    def _sent_at(self, db, tx_id):
        db.expire_all()
        return db.query(Transaction.confirmation_sent_at).filter(Transaction.id == tx_id).scalar()

    def test_sends_links_once(self, task_db, sale, email_client):
        tx_id, _ = sale
        with patch.object(fulfillment.send_purchase_confirmation, "delay"):
            fulfillment.issue_download_tokens.run(tx_id)
        token = task_db.query(DownloadToken.token).filter(DownloadToken.transaction_id == tx_id).scalar()

        first = fulfillment.send_purchase_confirmation.run(tx_id)
        second = fulfillment.send_purchase_confirmation.run(tx_id)

        assert first == {"ok": True, "links": 1}
        assert second == {"ok": True, "already_sent": True}
        email_client.send.assert_called_once()
        to, subject, html = email_client.send.call_args[0]
        assert to == "buyer@example.com"
        assert subject == "Your purchase: Brand Kit"
        assert f"/downloads/{token}" in html
        assert "Kit files" in html
        assert self._sent_at(task_db, tx_id) is not None

    def test_includes_invoice_link(self, task_db, sale, make_billing, email_client):
        tx_id, seller = sale
        make_billing(seller)
        task_db.commit()
        fulfillment.generate_invoice.run(tx_id)
        access_token = task_db.query(Invoice.access_token).scalar()

        fulfillment.send_purchase_confirmation.run(tx_id)

        html = email_client.send.call_args[0][2]
        assert f"/invoice/{access_token}" in html

    def test_failure_releases_claim(self, task_db, sale, email_client):
        tx_id, _ = sale
        email_client.send.side_effect = RuntimeError("provider down")

        with patch.object(fulfillment.send_purchase_confirmation, "max_retries", 0):
            result = fulfillment.send_purchase_confirmation.run(tx_id)

        assert result == {"ok": False, "error": "confirmation_failed"}
        assert self._sent_at(task_db, tx_id) is None
        assert self._claimed_at(task_db, tx_id) is None

    def _claimed_at(self, db, tx_id):
        db.expire_all()
        return db.query(Transaction.confirmation_claimed_at).filter(Transaction.id == tx_id).scalar()

    def test_stale_lease_from_dead_worker_is_taken_over(self, task_db, sale, email_client):
        tx_id, _ = sale
        task_db.query(Transaction).filter(Transaction.id == tx_id).update(
            {Transaction.confirmation_claimed_at: utcnow() - timedelta(seconds=settings.celery_task_time_limit + 60)}
        )
        task_db.commit()

        result = fulfillment.send_purchase_confirmation.run(tx_id)

        assert result["ok"] is True
        email_client.send.assert_called_once()
        assert self._sent_at(task_db, tx_id) is not None

    def test_live_lease_is_left_alone(self, task_db, sale, email_client):
        tx_id, _ = sale
        task_db.query(Transaction).filter(Transaction.id == tx_id).update(
            {Transaction.confirmation_claimed_at: utcnow()}
        )
        task_db.commit()

        assert fulfillment.send_purchase_confirmation.run(tx_id) == {"ok": True, "in_progress": True}
        email_client.send.assert_not_called()
        assert self._sent_at(task_db, tx_id) is None

    def test_unsent_message_keeps_transaction_open(self, task_db, sale, email_client):
        tx_id, _ = sale
        email_client.send.return_value = {"success": False, "reason": "not_configured"}

        result = fulfillment.send_purchase_confirmation.run(tx_id)

        assert result["ok"] is False
        assert self._sent_at(task_db, tx_id) is None
        assert self._claimed_at(task_db, tx_id) is None


    def test_no_recipient(self, task_db, db, make_user, make_product):
        seller = make_user()
        product = make_product(seller)
        tx = Transaction(
            product_id=product.id,
            buyer_id=None,
            seller_id=seller.id,
            amount=Decimal("5.00"),
            platform_fee=Decimal("1.45"),
            seller_amount=Decimal("3.55"),
            stripe_session_id="cs_guest",
        )
        db.add(tx)
        db.commit()

        with patch.object(fulfillment, "EmailClient", MagicMock()):
            assert fulfillment.send_purchase_confirmation.run(tx.id) == {"ok": False, "error": "no_recipient"}


class TestRescheduleMissingSideEffects:
    def _tx(self, db, seller, session_id, age, confirmed=False):
        tx = Transaction(
            product_id=1,
            buyer_id=None,
            seller_id=seller.id,
            amount=Decimal("5.00"),
            platform_fee=Decimal("1.45"),
            seller_amount=Decimal("3.55"),
            stripe_session_id=session_id,
            created_at=utcnow() - age,
            confirmation_sent_at=utcnow() if confirmed else None,
        )
        db.add(tx)
        db.commit()
        return tx.id

    def test_reenqueues_only_stuck_sales(self, task_db, make_user):
        seller = make_user()
        stuck = self._tx(task_db, seller, "cs_stuck", timedelta(hours=1))
        self._tx(task_db, seller, "cs_fresh", timedelta(minutes=1))
        self._tx(task_db, seller, "cs_done", timedelta(hours=1), confirmed=True)
        self._tx(task_db, seller, "cs_ancient", timedelta(days=30))

        with patch.object(fulfillment, "schedule_side_effects", return_value=True) as schedule:
            result = fulfillment.reschedule_missing_side_effects.run()

        assert result == {"found": 1, "rescheduled": 1}
        schedule.assert_called_once_with(stuck)

    def test_broker_still_down_is_reported(self, task_db, make_user):
        seller = make_user()
        self._tx(task_db, seller, "cs_stuck", timedelta(hours=1))

        with patch.object(fulfillment.issue_download_tokens, "delay", side_effect=ConnectionError("down")), \
                patch.object(fulfillment.generate_invoice, "delay", side_effect=ConnectionError("down")):
            result = fulfillment.reschedule_missing_side_effects.run()

        assert result == {"found": 1, "rescheduled": 0}


class TestClearingTasks:
    def test_release_and_purge_report_counts(self, task_db):
        assert clearing.release_cleared_commissions.run() == {"processed": 0}
        assert clearing.purge_expired_download_tokens.run() == {"purged": 0}
