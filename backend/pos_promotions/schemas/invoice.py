"""POS invoice schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from pos_promotions.models.invoice import Invoice, InvoiceStatus


class InvoiceResponse(BaseModel):
    """Invoice with its promotion stamp and amount still due."""

    id: int
    order_id: int
    amount: float
    payment_method: str
    status: InvoiceStatus
    customer_id: Optional[int] = None
    customer_phone: Optional[str] = None
    promotion_id: Optional[int] = None
    promotion_code: Optional[str] = None
    promotion_discount: float
    total_due: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            order_id=invoice.order_id,
            amount=float(invoice.amount),
            payment_method=invoice.payment_method,
            status=invoice.status,
            customer_id=invoice.customer_id,
            customer_phone=invoice.customer_phone,
            promotion_id=invoice.promotion_id,
            promotion_code=invoice.promotion_code,
            promotion_discount=float(invoice.promotion_discount or 0),
            total_due=float(invoice.total_due),
            created_at=invoice.created_at,
            updated_at=invoice.updated_at,
        )
