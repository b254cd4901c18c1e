"""
DownloadTokenService — unguessable, click-capped, expiring access tokens for purchased files.

Redemption is a single conditional UPDATE (click_count < max_clicks AND expires_at > now):
two concurrent redemptions at the limit cannot both succeed.
"""
from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.download_token import DownloadToken
from app.models.product import ProductModule
from app.models.transaction import Transaction
from app.schemas.downloads import DownloadLink, TokenInfoOut
from app.schemas.modules import FileModule, to_deliverable
from app.utils.metrics import download_redemptions_total
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    reason = "error"


class TokenNotFound(DownloadError):
    reason = "not_found"


class TokenExpired(DownloadError):
    reason = "expired"


class TokenLimitReached(DownloadError):
    reason = "limit_reached"


def generate_token() -> str:
    """64 hex chars, 256 bits of entropy."""
    return secrets.token_hex(32)


def download_url(token: str) -> str:
    return f"{settings.api_base_url.rstrip('/')}/downloads/{token}"


class DownloadTokenService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(
        self,
        transaction_id: int,
        module: FileModule,
        buyer_id: int | None,
        buyer_email: str | None = None,
    ) -> DownloadToken:
        now = utcnow()
        row = DownloadToken(
            token=generate_token(),
            transaction_id=transaction_id,
            product_id=module.product_id,
            module_id=module.id,
            buyer_id=buyer_id,
            buyer_email=buyer_email,
            click_count=0,
            max_clicks=settings.download_token_max_clicks,
            expires_at=now + timedelta(days=settings.download_token_expiry_days),
            created_at=now,
        )
        self.db.add(row)
        self.db.flush()
        logger.info(
            "download_token_issued",
            extra={"token_id": row.id, "transaction_id": transaction_id, "module_id": module.id},
        )
        return row

    def issue_for_transaction(self, transaction: Transaction) -> list[tuple[DownloadToken, FileModule]]:
        """
        One token per file module of the purchased product. Re-running returns the
        tokens already issued and only fills in the missing ones.
        Other module types (link/text/embed) are shown on the purchase page, not tokenized.
        """
        files = self.file_modules(transaction.product_id)
        existing = {
            t.module_id: t
            for t in self.db.query(DownloadToken)
            .filter(DownloadToken.transaction_id == transaction.id)
            .all()
        }
        result = []
        for module in files:
            token = existing.get(module.id)
            if token is None:
                token = self.issue(transaction.id, module, transaction.buyer_id, transaction.buyer_email)
            result.append((token, module))
        return result

    def issued_for_transaction(self, transaction_id: int) -> list[tuple[DownloadToken, FileModule]]:
        """Tokens already issued for a transaction, paired with their file modules. Issues nothing."""
        tokens = (
            self.db.query(DownloadToken)
            .filter(DownloadToken.transaction_id == transaction_id)
            .order_by(DownloadToken.id)
            .all()
        )
        if not tokens:
            return []
        rows = {
            row.id: row
            for row in self.db.query(ProductModule)
            .filter(ProductModule.id.in_([t.module_id for t in tokens]))
            .all()
        }
        result = []
        for token in tokens:
            row = rows.get(token.module_id)
            module = to_deliverable(row) if row else None
            if isinstance(module, FileModule):
                result.append((token, module))
        return result

    def file_modules(self, product_id: int) -> list[FileModule]:
        rows = (
            self.db.query(ProductModule)
            .filter(ProductModule.product_id == product_id)
            .order_by(ProductModule.sort_order, ProductModule.id)
            .all()
        )
        modules = []
        for row in rows:
            deliverable = to_deliverable(row)
            if isinstance(deliverable, FileModule):
                modules.append(deliverable)
        return modules

    @staticmethod
    def build_links(issued: list[tuple[DownloadToken, FileModule]]) -> list[DownloadLink]:
        return [
            DownloadLink(url=download_url(token.token), title=module.display_title, expires_at=token.expires_at)
            for token, module in issued
        ]

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    def redeem(self, token: str, request_ip: str | None = None) -> FileModule:
        """Count one click and return the file behind the token. Caller commits."""
        row = self.db.query(DownloadToken).filter(DownloadToken.token == token).one_or_none()
        if not row:
            return self._fail(TokenNotFound(token), None)

        now = utcnow()
        if now > as_utc(row.expires_at):
            return self._fail(TokenExpired(token), row)
        if row.click_count >= row.max_clicks:
            return self._fail(TokenLimitReached(token), row)

        module_row = self.db.query(ProductModule).filter(ProductModule.id == row.module_id).one_or_none()
        module = to_deliverable(module_row) if module_row else None
        if not isinstance(module, FileModule):
            return self._fail(TokenNotFound(token), row)

        updated = (
            self.db.query(DownloadToken)
            .filter(
                DownloadToken.id == row.id,
                DownloadToken.click_count < DownloadToken.max_clicks,
                DownloadToken.expires_at > now,
            )
            .update(
                {
                    DownloadToken.click_count: DownloadToken.click_count + 1,
                    DownloadToken.last_used_at: now,
                    DownloadToken.last_ip: request_ip,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            # Lost the race for the last click.
            return self._fail(TokenLimitReached(token), row)

        self.db.expire(row)
        download_redemptions_total.labels(result="ok").inc()
        logger.info(
            "download_token_redeemed",
            extra={"token_id": row.id, "transaction_id": row.transaction_id, "module_id": row.module_id},
        )
        return module

    def _fail(self, exc: DownloadError, row: DownloadToken | None):
        download_redemptions_total.labels(result=exc.reason).inc()
        logger.info(
            "download_token_rejected",
            extra={"reason": exc.reason, "token_id": row.id if row else None},
        )
        raise exc

    # ------------------------------------------------------------------
    # Info / cleanup
    # ------------------------------------------------------------------

    def token_info(self, token: str) -> TokenInfoOut:
        row = self.db.query(DownloadToken).filter(DownloadToken.token == token).one_or_none()
        if not row:
            raise TokenNotFound(token)

        reason = None
        if utcnow() > as_utc(row.expires_at):
            reason = TokenExpired.reason
        elif row.click_count >= row.max_clicks:
            reason = TokenLimitReached.reason

        return TokenInfoOut(
            valid=reason is None,
            reason=reason,
            module_id=row.module_id,
            click_count=row.click_count,
            max_clicks=row.max_clicks,
            remaining_clicks=max(row.max_clicks - row.click_count, 0),
            expires_at=as_utc(row.expires_at),
        )

    def purge_expired(self) -> int:
        """Delete expired tokens. Returns number of rows removed. Caller commits."""
        purged = (
            self.db.query(DownloadToken)
            .filter(DownloadToken.expires_at < utcnow())
            .delete(synchronize_session=False)
        )
        logger.info("download_tokens_purged", extra={"purged": purged})
        return purged
