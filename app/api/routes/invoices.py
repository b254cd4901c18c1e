from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.invoices import InvoiceOut
from app.services.invoices.service import InvoiceNotFound, InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("/public/{access_token}", response_model=InvoiceOut)
def public_invoice(access_token: str, db: Session = Depends(get_db)):
    """Invoice by its opaque access token (no auth). Unknown or expired token -> 404."""
    svc = InvoiceService(db)
    try:
        invoice = svc.get_by_access_token(access_token)
    except InvoiceNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return svc.render_data(invoice)
