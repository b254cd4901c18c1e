"""
Payment processor webhooks. Raw body is handed to the receiver untouched
(the signature covers the exact bytes).
"""
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.db.session import get_db
from app.schemas.webhooks import WebhookAck
from app.services.settlement.errors import InvalidPayload, SignatureInvalid
from app.services.webhooks.receiver import WebhookReceiver

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """
    200: settled / duplicate / ignored / rejected (permanent validation failure, not retried).
    400: bad signature or unusable body. 500: transient failure, processor retries.
    """
    payload = await request.body()
    try:
        return await run_in_threadpool(WebhookReceiver(db).handle, payload, stripe_signature)
    except SignatureInvalid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")
    except InvalidPayload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
