"""POS invoice model."""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from pos_promotions.db.base import Base, TimestampMixin
from pos_promotions.models.validators import non_negative, positive

if TYPE_CHECKING:
    from pos_promotions.models.customer import Customer
    from pos_promotions.models.promotion import Promotion


class InvoiceStatus(str, enum.Enum):
    """Settlement state of an invoice."""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Invoice(Base, TimestampMixin):
    """Bill for a dining order. A promotion may be applied while it is pending."""

    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_invoices_amount_positive"),
        CheckConstraint("promotion_discount >= 0", name="ck_invoices_discount_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), default="cash", nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus), default=InvoiceStatus.PENDING, nullable=False,
    )

    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True,
    )
    customer_phone: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    # Promotion stamp, written together with the PromotionUsage row
    promotion_id: Mapped[Optional[int]] = mapped_column(ForeignKey("promotions.id"), nullable=True)
    promotion_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    promotion_discount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), server_default="0", nullable=False,
    )

    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    customer: Mapped[Optional["Customer"]] = relationship()
    promotion: Mapped[Optional["Promotion"]] = relationship()

    @validates("amount")
    def _validate_amount(self, key, value):
        return positive(key, value)

    @validates("promotion_discount")
    def _validate_discount(self, key, value):
        return non_negative(key, value)

    @property
    def total_due(self) -> Decimal:
        return self.amount - (self.promotion_discount or Decimal("0"))
