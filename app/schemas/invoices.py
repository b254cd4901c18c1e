from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class InvoiceParty(BaseModel):
    name: str | None = None
    address: str | None = None
    tax_id: str | None = None
    is_small_business: bool = False
    email: str | None = None


class InvoiceItem(BaseModel):
    description: str
    quantity: int = 1
    unit_price: Decimal
    total: Decimal


class InvoiceTotals(BaseModel):
    net: Decimal
    tax_rate: Decimal
    tax: Decimal
    gross: Decimal
    currency: str


class InvoiceOut(BaseModel):
    invoice_number: str
    issued_at: datetime
    service_date: datetime
    seller: InvoiceParty
    buyer: InvoiceParty
    items: list[InvoiceItem]
    totals: InvoiceTotals
    notes: str | None = None
