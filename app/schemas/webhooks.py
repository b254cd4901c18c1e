"""
DTO processor webhooks: event envelope and the checkout session payload.
Only the fields the settlement flow reads are modelled; the rest is ignored.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class EventData(BaseModel):
    object: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}


class WebhookEnvelope(BaseModel):
    id: str
    type: str
    data: EventData = Field(default_factory=EventData)

    model_config = {"extra": "ignore"}


class CheckoutSession(BaseModel):
    id: str
    amount_total: int | None = None  # cents
    currency: str | None = None
    payment_intent: str | None = None
    customer: str | None = None
    customer_email: str | None = None
    customer_details: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}

    @property
    def email(self) -> str | None:
        if self.customer_email:
            return self.customer_email
        if self.customer_details:
            return self.customer_details.get("email")
        return None


class WebhookAck(BaseModel):
    received: bool = True
    status: Literal["settled", "duplicate", "ignored", "rejected"]
    transaction_id: int | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
