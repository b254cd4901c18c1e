"""Import every model so Base.metadata knows all tables (create_all, tests)."""
from app.models.affiliate_commission import AffiliateCommission
from app.models.affiliate_link import AffiliateLink
from app.models.audit_log import AuditLog
from app.models.download_token import DownloadToken
from app.models.invoice import Invoice
from app.models.product import Product, ProductModule
from app.models.seller_billing import SellerBilling
from app.models.transaction import Transaction
from app.models.user import User
from app.models.webhook_event import WebhookEvent
from app.models.webhook_validation_log import WebhookValidationLog

__all__ = [
    "AffiliateCommission",
    "AffiliateLink",
    "AuditLog",
    "DownloadToken",
    "Invoice",
    "Product",
    "ProductModule",
    "SellerBilling",
    "Transaction",
    "User",
    "WebhookEvent",
    "WebhookValidationLog",
]
