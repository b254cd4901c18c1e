"""
Public token-based downloads. No auth: security is the token itself plus expiry and click cap.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.downloads import TokenInfoOut
from app.services.downloads.service import DownloadError, DownloadTokenService, TokenNotFound
from app.utils.request import get_client_ip

router = APIRouter(prefix="/downloads", tags=["downloads"])

MESSAGES = {
    "not_found": "Download link not found",
    "expired": "Download link has expired",
    "limit_reached": "Download limit reached",
}


@router.get("/{token}")
def redeem_download(token: str, request: Request, db: Session = Depends(get_db)):
    """Count one click and redirect to the file. 410 Gone when the link can no longer be used."""
    svc = DownloadTokenService(db)
    try:
        module = svc.redeem(token, get_client_ip(request))
    except DownloadError as e:
        db.rollback()
        return JSONResponse(
            status_code=status.HTTP_410_GONE,
            content={"error": MESSAGES.get(e.reason, "Download unavailable"), "reason": e.reason},
        )
    db.commit()
    return RedirectResponse(module.file_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/{token}/info", response_model=TokenInfoOut)
def download_info(token: str, db: Session = Depends(get_db)):
    try:
        return DownloadTokenService(db).token_info(token)
    except TokenNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MESSAGES["not_found"])
