"""
Invoices for business sellers only, one per transaction.

Numbering: <prefix>-<year>-<id:06d>, taken from the row's sequence id right after insert,
so numbers are unique and strictly increasing without a separate counter table.
Public retrieval is by an opaque access token with its own expiry.
"""
from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.invoice import Invoice
from app.models.product import Product
from app.models.seller_billing import SellerBilling
from app.models.transaction import Transaction
from app.models.user import User
from app.schemas.invoices import InvoiceItem, InvoiceOut, InvoiceParty, InvoiceTotals
from app.utils.currency import quantize
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

SMALL_BUSINESS_NOTE = "Gemäß § 19 UStG wird keine Umsatzsteuer berechnet."


class InvoiceNotFound(Exception):
    pass


def should_create_invoice(seller: User) -> bool:
    return seller.is_business_seller()


def compute_amounts(gross: Decimal, is_small_business: bool, vat_rate: Decimal | None = None) -> tuple[Decimal, Decimal, Decimal]:
    """
    Returns (net, tax, tax_rate_percent).
    Small business: net == gross, tax 0. Otherwise net = gross / (1 + R), tax = gross - net.
    """
    gross = quantize(gross)
    if is_small_business:
        return gross, Decimal("0.00"), Decimal("0.00")
    rate = Decimal(str(settings.invoice_vat_rate if vat_rate is None else vat_rate))
    net = quantize(gross / (1 + rate))
    return net, gross - net, quantize(rate * 100)


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db

    def get_for_transaction(self, transaction_id: int) -> Invoice | None:
        return self.db.query(Invoice).filter(Invoice.transaction_id == transaction_id).one_or_none()

    def create_for_transaction(self, transaction: Transaction) -> Invoice | None:
        """
        Issue the invoice for a settled transaction. Idempotent: an existing invoice is returned.
        Returns None when the seller is not a business or has no billing profile. Commits.
        """
        existing = self.get_for_transaction(transaction.id)
        if existing:
            return existing

        seller = self.db.query(User).filter(User.id == transaction.seller_id).one_or_none()
        if not seller or not should_create_invoice(seller):
            return None

        billing = self.db.query(SellerBilling).filter(SellerBilling.user_id == seller.id).one_or_none()
        if not billing:
            logger.warning(
                "invoice_skipped_no_billing",
                extra={"transaction_id": transaction.id, "seller_id": seller.id},
            )
            return None

        product = self.db.query(Product).filter(Product.id == transaction.product_id).one_or_none()
        buyer_email = transaction.buyer_email
        if not buyer_email and transaction.buyer_id:
            buyer_email = self.db.query(User.email).filter(User.id == transaction.buyer_id).scalar()

        gross = Decimal(str(transaction.amount))
        net, tax, rate = compute_amounts(gross, billing.is_small_business)
        now = utcnow()

        invoice = Invoice(
            transaction_id=transaction.id,
            buyer_id=transaction.buyer_id,
            seller_id=seller.id,
            access_token=secrets.token_hex(32),
            token_expires_at=now + timedelta(days=settings.invoice_token_valid_days),
            net_amount=net,
            tax_rate=rate,
            tax_amount=tax,
            gross_amount=quantize(gross),
            currency=transaction.currency,
            product_title=product.title if product else f"Product {transaction.product_id}",
            product_description=product.description if product else None,
            seller_name=billing.business_name,
            seller_address=billing.format_address(),
            seller_tax_id=billing.tax_id,
            seller_is_small_business=billing.is_small_business,
            buyer_email=buyer_email,
            issued_at=now,
        )
        self.db.add(invoice)
        try:
            self.db.flush()
            invoice.invoice_number = f"{settings.invoice_number_prefix}-{now.year}-{invoice.id:06d}"
            self.db.flush()
            self.db.commit()
        except IntegrityError:
            # Another worker issued it first
            self.db.rollback()
            existing = self.get_for_transaction(transaction.id)
            if existing:
                return existing
            raise

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "transaction_id": transaction.id,
                "seller_id": seller.id,
            },
        )
        return invoice

    def get_by_access_token(self, access_token: str) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.access_token == access_token).one_or_none()
        if not invoice or utcnow() > as_utc(invoice.token_expires_at):
            raise InvoiceNotFound(access_token)
        return invoice

    @staticmethod
    def public_url(access_token: str) -> str:
        return f"{settings.platform_url.rstrip('/')}/invoice/{access_token}"

    @staticmethod
    def render_data(invoice: Invoice) -> InvoiceOut:
        issued_at = as_utc(invoice.issued_at)
        net = quantize(invoice.net_amount)
        return InvoiceOut(
            invoice_number=invoice.invoice_number,
            issued_at=issued_at,
            service_date=issued_at,
            seller=InvoiceParty(
                name=invoice.seller_name,
                address=invoice.seller_address,
                tax_id=invoice.seller_tax_id,
                is_small_business=invoice.seller_is_small_business,
            ),
            buyer=InvoiceParty(email=invoice.buyer_email),
            items=[InvoiceItem(description=invoice.product_title, quantity=1, unit_price=net, total=net)],
            totals=InvoiceTotals(
                net=net,
                tax_rate=quantize(invoice.tax_rate),
                tax=quantize(invoice.tax_amount),
                gross=quantize(invoice.gross_amount),
                currency=invoice.currency,
            ),
            notes=SMALL_BUSINESS_NOTE if invoice.seller_is_small_business else None,
        )
