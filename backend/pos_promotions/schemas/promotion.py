"""Promotion schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from pos_promotions.core.timeutils import to_utc_naive
from pos_promotions.models.promotion import Promotion, PromotionUsage

if TYPE_CHECKING:
    from pos_promotions.services.promotion_service import ValidationResult

CODE_PATTERN = r"^[A-Z0-9]+$"
PHONE_PATTERN = r"^[0-9]{10,15}$"


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


class PromotionCreate(BaseModel):
    """Create promotion body.

    Whether exactly one discount type is set and the date order are business
    rules checked by the service, so they surface as 400 rather than 422.
    """

    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=20, pattern=CODE_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    start_date: datetime
    end_date: datetime
    min_order_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    active: bool = True

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("start_date", "end_date")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        return to_utc_naive(v)


class PromotionUpdate(BaseModel):
    """Partial update body. Only fields present in the request are applied.

    Sending ``null`` for a discount field clears it, which is how a promotion
    switches between percentage and fixed-amount discounts. The code is
    immutable once created.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    active: Optional[bool] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(v)

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "PromotionUpdate":
        for field in ("name", "start_date", "end_date", "min_order_amount", "active"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class PromotionResponse(BaseModel):
    """Public view of a promotion, with state derived at read time."""

    id: int
    name: str
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_percent: Optional[float] = None
    discount_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    start_date: datetime
    end_date: datetime
    min_order_amount: float
    usage_limit: Optional[int] = None
    usage_count: int
    active: bool
    is_expired: bool
    is_valid: bool
    remaining_usage: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, promotion: Promotion, now: datetime) -> "PromotionResponse":
        return cls(
            id=promotion.id,
            name=promotion.name,
            code=promotion.code,
            description=promotion.description,
            discount_type=promotion.discount_type,
            discount_percent=_money(promotion.discount_percent),
            discount_amount=_money(promotion.discount_amount),
            max_discount_amount=_money(promotion.max_discount_amount),
            start_date=promotion.start_date,
            end_date=promotion.end_date,
            min_order_amount=float(promotion.min_order_amount),
            usage_limit=promotion.usage_limit,
            usage_count=promotion.usage_count,
            active=promotion.active,
            is_expired=promotion.is_expired(now),
            is_valid=promotion.is_usable(now),
            remaining_usage=promotion.remaining_usage,
            created_at=promotion.created_at,
            updated_at=promotion.updated_at,
        )


class PromotionCheckRequest(BaseModel):
    """Code plus order context, shared by validate and apply."""

    code: str = Field(..., min_length=1)
    customer_id: Optional[int] = Field(default=None, gt=0)
    customer_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("customer_phone", mode="before")
    @classmethod
    def blank_phone_is_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class ValidatePromotionRequest(PromotionCheckRequest):
    """Validate body: the order amount is always supplied by the caller."""

    order_amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)


class ApplyPromotionRequest(PromotionCheckRequest):
    """Apply body. Omitted amount and customer fall back to the invoice."""

    order_amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=14, decimal_places=2)


class PromotionValidationResponse(BaseModel):
    """Outcome of validating or applying a code."""

    valid: bool
    reason: Optional[str] = None
    message: str
    discount_amount: Optional[float] = None
    final_amount: Optional[float] = None
    promotion: Optional[PromotionResponse] = None

    @classmethod
    def from_result(cls, result: "ValidationResult", now: datetime) -> "PromotionValidationResponse":
        return cls(
            valid=result.valid,
            reason=result.reason.value if result.reason is not None else None,
            message=result.message,
            discount_amount=_money(result.discount_amount),
            final_amount=_money(result.final_amount),
            promotion=PromotionResponse.from_model(result.promotion, now) if result.promotion is not None else None,
        )


class PromotionUsageResponse(BaseModel):
    """One redemption, joined with promotion and customer names."""

    id: int
    promotion_id: int
    promotion_name: str
    promotion_code: str
    invoice_id: int
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    discount_applied: float
    used_at: datetime

    @classmethod
    def from_model(cls, usage: PromotionUsage, customer_name: Optional[str] = None) -> "PromotionUsageResponse":
        return cls(
            id=usage.id,
            promotion_id=usage.promotion_id,
            promotion_name=usage.promotion.name,
            promotion_code=usage.promotion.code,
            invoice_id=usage.invoice_id,
            customer_id=usage.customer_id,
            customer_name=customer_name,
            customer_phone=usage.customer_phone,
            discount_applied=float(usage.discount_applied),
            used_at=usage.used_at,
        )
