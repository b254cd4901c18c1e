"""
E-mail client over the Resend HTTP API using httpx sync client.
Sync interface for Celery workers; calls go through the e-mail circuit breaker.
"""
import logging
from html import escape

import httpx
import pybreaker

from app.core.config import settings
from app.schemas.downloads import DownloadLink
from app.services.circuit_breaker import EMAIL_BREAKER, get_circuit_breaker
from app.utils.currency import format_amount
from app.utils.metrics import email_requests_total

logger = logging.getLogger(__name__)


class EmailSendError(Exception):
    pass


class EmailClient:
    def __init__(self) -> None:
        self._api_key = settings.email_provider_api_key
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=settings.email_timeout)
        return self._client

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _post(self, payload: dict) -> dict:
        resp = self.client.post(
            settings.email_api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        if resp.status_code >= 400:
            raise EmailSendError(f"{resp.status_code}: {resp.text[:200]}")
        return resp.json()

    def send(self, to: str, subject: str, html: str) -> dict:
        """
        Send one message. Returns {"success": bool, "id": ...}.
        Not configured -> logged and skipped (no retry). Provider errors raise for the caller to retry.
        """
        if not self.is_configured():
            email_requests_total.labels(status="skipped").inc()
            logger.warning("email_not_configured", extra={"reason": subject})
            return {"success": False, "reason": "not_configured"}

        try:
            result = get_circuit_breaker(EMAIL_BREAKER).call(
                self._post,
                {"from": settings.email_from, "to": [to], "subject": subject, "html": html},
            )
        except pybreaker.CircuitBreakerError:
            email_requests_total.labels(status="circuit_open").inc()
            raise
        except Exception as e:
            email_requests_total.labels(status="error").inc()
            logger.error("email_send_failed", extra={"error": str(e)})
            raise
        email_requests_total.labels(status="success").inc()
        logger.info("email_sent", extra={"reason": subject})
        return {"success": True, "id": result.get("id")}

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def purchase_confirmation_html(
    product_title: str,
    seller_name: str | None,
    amount,
    currency: str,
    download_links: list[DownloadLink],
    purchases_url: str,
    invoice_url: str | None = None,
) -> str:
    parts = [
        "<h1>Thank you for your purchase!</h1>",
        f"<p><strong>{escape(product_title)}</strong>",
    ]
    if seller_name:
        parts.append(f" by {escape(seller_name)}")
    parts.append(f"<br>{escape(format_amount(amount, currency))}</p>")

    if download_links:
        parts.append("<h2>Your downloads</h2><ul>")
        for link in download_links:
            parts.append(
                f'<li><a href="{escape(link.url)}">{escape(link.title)}</a>'
                f" (valid until {link.expires_at:%Y-%m-%d})</li>"
            )
        parts.append("</ul>")

    if invoice_url:
        parts.append(f'<p><a href="{escape(invoice_url)}">View invoice</a></p>')

    parts.append(f'<p>All purchases: <a href="{escape(purchases_url)}">{escape(purchases_url)}</a></p>')
    return "".join(parts)


def send_purchase_confirmation(
    client: EmailClient,
    buyer_email: str,
    product_title: str,
    seller_name: str | None,
    amount,
    currency: str,
    download_links: list[DownloadLink] | None = None,
    invoice_url: str | None = None,
) -> dict:
    html = purchase_confirmation_html(
        product_title=product_title,
        seller_name=seller_name,
        amount=amount,
        currency=currency,
        download_links=download_links or [],
        purchases_url=f"{settings.platform_url.rstrip('/')}/dashboard/purchases",
        invoice_url=invoice_url,
    )
    return client.send(buyer_email, f"Your purchase: {product_title}", html)
