"""Promotion and promotion usage models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from pos_promotions.db.base import Base, TimestampMixin
from pos_promotions.models.validators import non_negative, percentage, positive
from pos_promotions.services.discounts import DiscountSpec, FixedDiscount, PercentDiscount

if TYPE_CHECKING:
    from pos_promotions.models.invoice import Invoice


class Promotion(Base, TimestampMixin):
    """A discount code redeemable against invoices.

    Exactly one of ``discount_percent`` / ``discount_amount`` is set;
    ``max_discount_amount`` only caps percentage discounts.
    """

    __tablename__ = "promotions"
    __table_args__ = (
        CheckConstraint(
            "(discount_percent IS NULL) <> (discount_amount IS NULL)",
            name="ck_promotions_single_discount_type",
        ),
        CheckConstraint(
            "discount_percent IS NULL OR (discount_percent >= 0 AND discount_percent <= 100)",
            name="ck_promotions_percent_range",
        ),
        CheckConstraint("discount_amount IS NULL OR discount_amount >= 0", name="ck_promotions_amount_non_negative"),
        CheckConstraint("max_discount_amount IS NULL OR max_discount_amount >= 0", name="ck_promotions_cap_non_negative"),
        CheckConstraint("min_order_amount >= 0", name="ck_promotions_min_order_non_negative"),
        CheckConstraint("end_date > start_date", name="ck_promotions_date_order"),
        CheckConstraint("usage_limit IS NULL OR usage_limit >= 1", name="ck_promotions_usage_limit_positive"),
        CheckConstraint("usage_count >= 0", name="ck_promotions_usage_count_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_promotions_usage_within_limit",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Discount specification
    discount_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    discount_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Validity window (naive UTC)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    min_order_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), server_default="0", nullable=False,
    )
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False, index=True)

    usages: Mapped[List["PromotionUsage"]] = relationship(back_populates="promotion")

    @validates("discount_amount", "max_discount_amount", "min_order_amount", "usage_count")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @validates("discount_percent")
    def _validate_percentage(self, key, value):
        return percentage(key, value)

    @validates("usage_limit")
    def _validate_usage_limit(self, key, value):
        return positive(key, value)

    @property
    def discount_spec(self) -> DiscountSpec:
        if self.discount_percent is not None:
            return PercentDiscount(percent=self.discount_percent, cap=self.max_discount_amount)
        if self.discount_amount is not None:
            return FixedDiscount(amount=self.discount_amount)
        raise ValueError(f"Promotion {self.code} has no discount configured")

    @property
    def discount_type(self) -> str:
        return "percent" if self.discount_percent is not None else "fixed"

    @property
    def remaining_usage(self) -> Optional[int]:
        if self.usage_limit is None:
            return None
        return max(self.usage_limit - self.usage_count, 0)

    def is_exhausted(self) -> bool:
        return self.usage_limit is not None and self.usage_count >= self.usage_limit

    def is_expired(self, now: datetime) -> bool:
        return now > self.end_date

    def is_usable(self, now: datetime) -> bool:
        """Active, inside the validity window and below the usage limit."""
        return (
            self.active
            and self.start_date <= now <= self.end_date
            and not self.is_exhausted()
        )


class PromotionUsage(Base):
    """Append-only record of one promotion redemption on one invoice."""

    __tablename__ = "promotion_usages"
    __table_args__ = (
        # One redemption per customer identity per promotion
        Index(
            "uq_promotion_usages_promotion_customer",
            "promotion_id", "customer_id",
            unique=True,
            sqlite_where=text("customer_id IS NOT NULL"),
            postgresql_where=text("customer_id IS NOT NULL"),
        ),
        Index(
            "uq_promotion_usages_promotion_phone",
            "promotion_id", "customer_phone",
            unique=True,
            sqlite_where=text("customer_phone IS NOT NULL"),
            postgresql_where=text("customer_phone IS NOT NULL"),
        ),
        Index("idx_promotion_usages_used_at", "used_at"),
        CheckConstraint("discount_applied >= 0", name="ck_promotion_usages_discount_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    promotion_id: Mapped[int] = mapped_column(ForeignKey("promotions.id"), nullable=False, index=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id"), nullable=False, index=True)
    # Walk-in guests have no customer record; the phone still identifies them
    customer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    discount_applied: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    promotion: Mapped["Promotion"] = relationship(back_populates="usages")
    invoice: Mapped["Invoice"] = relationship()
