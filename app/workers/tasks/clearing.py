"""
Celery periodic tasks: affiliate commission clearing and download token cleanup.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.commissions.service import CommissionClearingService
from app.services.downloads.service import DownloadTokenService

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.tasks.clearing.release_cleared_commissions")
def release_cleared_commissions() -> dict:
    """Move commissions past their clearing period from pending to available balance."""
    db = SessionLocal()
    try:
        processed = CommissionClearingService(db).process_pending()
        logger.info("release_cleared_commissions_done", extra={"processed": processed})
        return {"processed": processed}
    except Exception:
        db.rollback()
        logger.exception("release_cleared_commissions_error")
        return {"processed": 0, "error": "exception"}
    finally:
        db.close()


@celery_app.task(name="app.workers.tasks.clearing.purge_expired_download_tokens")
def purge_expired_download_tokens() -> dict:
    db = SessionLocal()
    try:
        purged = DownloadTokenService(db).purge_expired()
        db.commit()
        return {"purged": purged}
    except Exception:
        db.rollback()
        logger.exception("purge_expired_download_tokens_error")
        return {"purged": 0, "error": "exception"}
    finally:
        db.close()
