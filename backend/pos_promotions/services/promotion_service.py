"""Promotion Service - validates, prices and redeems promotion codes.

Flow for a code entered at the POS:
1. validate(): look the code up and run the checks in order, stopping at
   the first failure:
   a. code exists
   b. promotion is active
   c. validity window has started
   d. validity window has not ended
   e. usage limit not reached
   f. order amount meets the minimum
   g. customer (by id or phone) has not used it before
2. On success the discount is computed from the promotion's discount spec
   (percentage with optional cap, or fixed amount), clamped to the order
   amount and rounded to 2 decimal places.
3. apply_to_invoice(): re-run validate() against current state, then in one
   transaction:
   - stamp the invoice with a conditional UPDATE (pending, no promotion yet)
   - increment usage_count with a conditional UPDATE (count < limit)
   - insert the PromotionUsage row
   - write the audit entry

Validation failures are returned as data (ValidationResult) and never
raised. Exceptions are reserved for CRUD rule violations and missing
records, and are mapped to HTTP statuses by the routes.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_promotions.core.config import settings
from pos_promotions.core.timeutils import Clock, utc_now
from pos_promotions.models.customer import Customer
from pos_promotions.models.invoice import Invoice, InvoiceStatus
from pos_promotions.models.promotion import Promotion, PromotionUsage
from pos_promotions.schemas.promotion import PromotionCreate, PromotionUpdate
from pos_promotions.services.audit_service import AuditContext, log_action, log_entity_change
from pos_promotions.services.discounts import calculate_discount, round_money

logger = logging.getLogger(__name__)


class PromotionError(Exception):
    """Base class for promotion management errors."""


class PromotionNotFoundError(PromotionError):
    """Raised when a promotion id or code does not exist."""
    def __init__(self, promotion_id: Optional[int] = None, code: Optional[str] = None):
        self.promotion_id = promotion_id
        self.code = code
        if code is not None:
            super().__init__(f"Promotion code not found: {code}")
        else:
            super().__init__(f"Promotion not found: {promotion_id}")


class DuplicatePromotionCodeError(PromotionError):
    """Raised when creating a promotion whose code is already taken."""
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Promotion code '{code}' already exists")


class PromotionRuleError(PromotionError):
    """Raised when a create/update would break a promotion business rule."""


class InvoiceNotFoundError(PromotionError):
    """Raised when the invoice to apply a promotion to does not exist."""
    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class InvoiceStateError(PromotionError):
    """Raised when an invoice cannot take a promotion in its current state."""


class ValidationFailure(str, enum.Enum):
    """Why a promotion code was rejected."""
    NOT_FOUND = "not_found"
    DEACTIVATED = "deactivated"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    USAGE_EXHAUSTED = "usage_exhausted"
    BELOW_MINIMUM = "below_minimum"
    ALREADY_USED = "already_used"


MSG_NOT_FOUND = "Promotion code does not exist"
MSG_DEACTIVATED = "Promotion code has been deactivated"
MSG_USAGE_EXHAUSTED = "Promotion code has reached its usage limit"
MSG_ALREADY_USED = "You have already used this promotion code"
MSG_VALID = "Promotion code is valid"
MSG_APPLIED = "Promotion applied successfully"


@dataclass
class ValidationResult:
    """Verdict on a code for a given order.

    ``promotion`` is set whenever the code was found, including failures,
    so callers can show the promotion next to the error.
    """
    valid: bool
    message: str
    reason: Optional[ValidationFailure] = None
    promotion: Optional[Promotion] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None

    @classmethod
    def failure(
        cls,
        reason: ValidationFailure,
        message: str,
        promotion: Optional[Promotion] = None,
    ) -> "ValidationResult":
        return cls(valid=False, message=message, reason=reason, promotion=promotion)


def _format_date(value: datetime) -> str:
    return value.strftime(settings.datetime_display_format)


def _format_amount(value: Decimal) -> str:
    return f"{value:,.0f} {settings.currency}"


def check_discount_fields(percent: Optional[Decimal], amount: Optional[Decimal]) -> None:
    """Exactly one of percent / fixed amount must be set."""
    if percent is None and amount is None:
        raise PromotionRuleError("A discount percent or a discount amount is required")
    if percent is not None and amount is not None:
        raise PromotionRuleError("Only one discount type (percent or amount) may be set")


def check_dates(start_date: datetime, end_date: datetime) -> None:
    if end_date <= start_date:
        raise PromotionRuleError("End date must be after start date")


class PromotionService:
    """Promotion CRUD, validation and redemption over one DB session."""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, promotion_id: int) -> Promotion:
        promotion = self.db.get(Promotion, promotion_id)
        if promotion is None:
            raise PromotionNotFoundError(promotion_id=promotion_id)
        return promotion

    def find_by_code(self, code: str) -> Optional[Promotion]:
        """Case-insensitive lookup; codes are stored uppercase."""
        normalized = (code or "").strip().upper()
        if not normalized:
            return None
        return self.db.execute(
            select(Promotion).where(Promotion.code == normalized)
        ).scalar_one_or_none()

    def get_by_code(self, code: str) -> Promotion:
        promotion = self.find_by_code(code)
        if promotion is None:
            raise PromotionNotFoundError(code=code)
        return promotion

    def list_promotions(self, active_only: bool = False, currently_usable: bool = False) -> List[Promotion]:
        """Promotions, newest first.

        ``currently_usable`` additionally requires the validity window to
        contain now and the usage limit not to be reached.
        """
        stmt = select(Promotion).order_by(Promotion.created_at.desc(), Promotion.id.desc())
        if active_only or currently_usable:
            stmt = stmt.where(Promotion.active.is_(True))
        if currently_usable:
            now = self.clock()
            stmt = stmt.where(
                Promotion.start_date <= now,
                Promotion.end_date >= now,
                or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
            )
        return list(self.db.execute(stmt).scalars().all())

    def list_active(self) -> List[Promotion]:
        return self.list_promotions(currently_usable=True)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, data: PromotionCreate, context: Optional[AuditContext] = None) -> Promotion:
        """Create a promotion.

        Raises:
            PromotionRuleError: discount fields or date order are invalid
            DuplicatePromotionCodeError: the uppercased code already exists
        """
        code = data.code.upper()
        check_discount_fields(data.discount_percent, data.discount_amount)
        check_dates(data.start_date, data.end_date)
        if self.find_by_code(code) is not None:
            raise DuplicatePromotionCodeError(code)

        promotion = Promotion(
            name=data.name.strip(),
            code=code,
            description=data.description,
            discount_percent=data.discount_percent,
            discount_amount=data.discount_amount,
            max_discount_amount=data.max_discount_amount,
            start_date=data.start_date,
            end_date=data.end_date,
            min_order_amount=data.min_order_amount,
            usage_limit=data.usage_limit,
            usage_count=0,
            active=data.active,
        )
        self.db.add(promotion)
        try:
            self.db.flush()
            log_action(
                self.db, "create", "promotion", promotion.id, context,
                details={"code": code, "name": promotion.name},
            )
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent create with the same code
            self.db.rollback()
            raise DuplicatePromotionCodeError(code)

        self.db.refresh(promotion)
        logger.info(f"Created promotion {promotion.code} (ID: {promotion.id})")
        return promotion

    def update(
        self,
        promotion_id: int,
        data: PromotionUpdate,
        context: Optional[AuditContext] = None,
    ) -> Promotion:
        """Apply the fields present in ``data``.

        Discount exclusivity is re-checked only when a discount field is in
        the update, date order only when a date is.
        """
        promotion = self.get(promotion_id)
        changes = data.model_dump(exclude_unset=True)

        if "discount_percent" in changes or "discount_amount" in changes:
            check_discount_fields(
                changes.get("discount_percent", promotion.discount_percent),
                changes.get("discount_amount", promotion.discount_amount),
            )
        if "start_date" in changes or "end_date" in changes:
            check_dates(
                changes.get("start_date", promotion.start_date),
                changes.get("end_date", promotion.end_date),
            )
        new_limit = changes.get("usage_limit")
        if new_limit is not None and new_limit < promotion.usage_count:
            raise PromotionRuleError(
                f"Usage limit cannot be below the current usage count ({promotion.usage_count})"
            )

        old_values = {field: getattr(promotion, field) for field in changes}
        for field, value in changes.items():
            setattr(promotion, field, value)

        log_entity_change(
            self.db, "update", "promotion", promotion.id, context,
            old_value=old_values, new_value=changes,
        )
        self.db.commit()
        self.db.refresh(promotion)
        logger.info(f"Updated promotion {promotion.code}: {sorted(changes)}")
        return promotion

    def set_active(
        self,
        promotion_id: int,
        active: Optional[bool] = None,
        context: Optional[AuditContext] = None,
    ) -> Promotion:
        """Set the administrative flag, or flip it when ``active`` is None."""
        promotion = self.get(promotion_id)
        promotion.active = (not promotion.active) if active is None else active
        log_action(
            self.db, "update", "promotion", promotion.id, context,
            details={"active": promotion.active},
        )
        self.db.commit()
        self.db.refresh(promotion)
        return promotion

    def has_usages(self, promotion_id: int) -> bool:
        return bool(self.db.scalar(
            select(exists().where(PromotionUsage.promotion_id == promotion_id))
        ))

    def delete(self, promotion_id: int, context: Optional[AuditContext] = None) -> bool:
        """Delete a promotion.

        Promotions with usage history are only deactivated so the history
        keeps its reference. Returns True for a soft delete.
        """
        promotion = self.get(promotion_id)
        code = promotion.code
        soft = self.has_usages(promotion_id)
        if soft:
            promotion.active = False
        else:
            self.db.delete(promotion)

        log_action(
            self.db, "delete", "promotion", promotion_id, context,
            details={"code": code, "soft": soft},
        )
        self.db.commit()
        logger.info(
            f"{'Deactivated' if soft else 'Deleted'} promotion {code} (ID: {promotion_id})"
        )
        return soft

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def customer_has_used(
        self,
        promotion_id: int,
        customer_id: Optional[int],
        customer_phone: Optional[str],
    ) -> bool:
        """True if a usage matches the customer id or the phone."""
        matches = []
        if customer_id is not None:
            matches.append(PromotionUsage.customer_id == customer_id)
        if customer_phone:
            matches.append(PromotionUsage.customer_phone == customer_phone)
        if not matches:
            return False
        return bool(self.db.scalar(
            select(exists().where(
                PromotionUsage.promotion_id == promotion_id,
                or_(*matches),
            ))
        ))

    def validate(
        self,
        code: str,
        order_amount: Decimal,
        customer_id: Optional[int] = None,
        customer_phone: Optional[str] = None,
    ) -> ValidationResult:
        """Check a code against an order; see the module docstring for the order of checks."""
        promotion = self.find_by_code(code)
        if promotion is None:
            return ValidationResult.failure(ValidationFailure.NOT_FOUND, MSG_NOT_FOUND)

        now = self.clock()
        failure = None
        if not promotion.active:
            failure = (ValidationFailure.DEACTIVATED, MSG_DEACTIVATED)
        elif now < promotion.start_date:
            failure = (
                ValidationFailure.NOT_STARTED,
                f"Promotion code is not active yet (starts {_format_date(promotion.start_date)})",
            )
        elif now > promotion.end_date:
            failure = (
                ValidationFailure.EXPIRED,
                f"Promotion code has expired (ended {_format_date(promotion.end_date)})",
            )
        elif promotion.is_exhausted():
            failure = (ValidationFailure.USAGE_EXHAUSTED, MSG_USAGE_EXHAUSTED)
        elif order_amount < promotion.min_order_amount:
            failure = (
                ValidationFailure.BELOW_MINIMUM,
                f"Minimum order of {_format_amount(promotion.min_order_amount)} required to use this code",
            )
        elif self.customer_has_used(promotion.id, customer_id, customer_phone):
            failure = (ValidationFailure.ALREADY_USED, MSG_ALREADY_USED)

        if failure is not None:
            logger.debug(f"Promotion {promotion.code} rejected: {failure[0].value}")
            return ValidationResult.failure(failure[0], failure[1], promotion)

        discount = calculate_discount(promotion.discount_spec, order_amount)
        return ValidationResult(
            valid=True,
            message=MSG_VALID,
            promotion=promotion,
            discount_amount=discount,
            final_amount=round_money(order_amount - discount),
        )

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def apply_to_invoice(
        self,
        invoice_id: int,
        code: str,
        order_amount: Optional[Decimal] = None,
        customer_id: Optional[int] = None,
        customer_phone: Optional[str] = None,
        context: Optional[AuditContext] = None,
    ) -> ValidationResult:
        """Redeem a code on a pending invoice.

        The order amount and customer default to the invoice's own. Either
        everything (counter, usage row, invoice stamp, audit entry) commits,
        or nothing does.

        Raises:
            InvoiceNotFoundError: no such invoice
            InvoiceStateError: invoice is not pending or already has a promotion
            PromotionRuleError: ``order_amount`` exceeds the invoice amount
        """
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        if invoice.status != InvoiceStatus.PENDING:
            raise InvoiceStateError(f"Invoice {invoice_id} is {invoice.status.value}; only pending invoices take promotions")
        if invoice.promotion_id is not None:
            raise InvoiceStateError(f"Invoice {invoice_id} already has promotion {invoice.promotion_code}")

        if order_amount is not None and order_amount > invoice.amount:
            raise PromotionRuleError(
                f"Order amount {order_amount} exceeds invoice {invoice_id} amount {invoice.amount}"
            )
        amount = order_amount if order_amount is not None else invoice.amount
        if customer_id is None and not customer_phone:
            customer_id = invoice.customer_id
            customer_phone = invoice.customer_phone

        result = self.validate(code, amount, customer_id, customer_phone)
        if not result.valid:
            return result

        promotion = result.promotion
        now = self.clock()

        # Claim the invoice: only one promotion may ever stamp it, even when
        # two tills apply codes to it at the same time.
        stamped = self.db.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.status == InvoiceStatus.PENDING,
                Invoice.promotion_id.is_(None),
            )
            .values(
                promotion_id=promotion.id,
                promotion_code=promotion.code,
                promotion_discount=result.discount_amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if stamped != 1:
            self.db.rollback()
            logger.warning(f"Invoice {invoice_id} was claimed by another promotion during apply of {promotion.code}")
            raise InvoiceStateError(f"Invoice {invoice_id} already has a promotion or is no longer pending")

        # Conditional increment: a concurrent redemption that took the last
        # slot makes this match zero rows.
        claimed = self.db.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion.id,
                Promotion.active.is_(True),
                or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
            )
            .values(usage_count=Promotion.usage_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            self.db.rollback()
            logger.warning(f"Promotion {promotion.code} usage limit reached during apply to invoice {invoice_id}")
            return ValidationResult.failure(
                ValidationFailure.USAGE_EXHAUSTED, MSG_USAGE_EXHAUSTED, promotion,
            )

        self.db.add(PromotionUsage(
            promotion_id=promotion.id,
            invoice_id=invoice.id,
            customer_id=customer_id,
            customer_phone=customer_phone or None,
            discount_applied=result.discount_amount,
            used_at=now,
        ))

        try:
            self.db.flush()
            log_action(
                self.db, "apply", "promotion", promotion.id, context,
                details={
                    "invoice_id": invoice.id,
                    "discount": str(result.discount_amount),
                    "customer_id": customer_id,
                    "customer_phone": customer_phone,
                },
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if customer_id is None and not customer_phone:
                logger.error(f"Failed to apply promotion {promotion.code} to invoice {invoice_id}", exc_info=True)
                raise
            # Another request redeemed for the same customer after our check
            logger.warning(f"Duplicate redemption of {promotion.code} for customer {customer_id or customer_phone}")
            return ValidationResult.failure(ValidationFailure.ALREADY_USED, MSG_ALREADY_USED, promotion)
        except Exception:
            self.db.rollback()
            logger.error(f"Failed to apply promotion {promotion.code} to invoice {invoice_id}", exc_info=True)
            raise

        self.db.refresh(promotion)
        self.db.refresh(invoice)
        logger.info(
            f"Applied promotion {promotion.code} to invoice {invoice_id}: "
            f"discount={result.discount_amount}, usage {promotion.usage_count}/{promotion.usage_limit or '-'}"
        )
        result.message = MSG_APPLIED
        return result

    # ------------------------------------------------------------------
    # Usage history
    # ------------------------------------------------------------------

    def _usage_rows(self, *criteria) -> List[Tuple[PromotionUsage, Optional[str]]]:
        stmt = (
            select(PromotionUsage, Customer.name)
            .outerjoin(Customer, Customer.id == PromotionUsage.customer_id)
            .where(*criteria)
            .order_by(PromotionUsage.used_at.desc(), PromotionUsage.id.desc())
        )
        return [(usage, name) for usage, name in self.db.execute(stmt).all()]

    def usage_history(self, promotion_id: int) -> List[Tuple[PromotionUsage, Optional[str]]]:
        """Redemptions of one promotion with the customer's name when known."""
        self.get(promotion_id)
        return self._usage_rows(PromotionUsage.promotion_id == promotion_id)

    def customer_usage(
        self,
        customer_id: Optional[int] = None,
        customer_phone: Optional[str] = None,
    ) -> List[Tuple[PromotionUsage, Optional[str]]]:
        """Redemptions by customer id, else by phone, else none."""
        if customer_id is not None:
            return self._usage_rows(PromotionUsage.customer_id == customer_id)
        if customer_phone:
            return self._usage_rows(PromotionUsage.customer_phone == customer_phone)
        return []
