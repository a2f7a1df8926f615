"""Tests for redeeming promotions on invoices.

Covers the all-or-nothing write (counter, usage row, invoice stamp, audit
entry) and the guards against concurrent redemptions.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from pos_promotions.db.base import Base
from pos_promotions.db.session import build_engine
from pos_promotions.models import AuditLogEntry, Invoice, InvoiceStatus, Promotion, PromotionUsage
from pos_promotions.services.audit_service import AuditContext
from pos_promotions.services.promotion_service import (
    MSG_APPLIED,
    InvoiceNotFoundError,
    InvoiceStateError,
    PromotionRuleError,
    PromotionService,
    ValidationFailure,
)


def _usage_count(db_session) -> int:
    return db_session.scalar(select(func.count(PromotionUsage.id)))


# ============== Successful redemption ==============

class TestApplySuccess:
    def test_apply_stamps_invoice_and_counts_usage(self, service, db_session, promotion, make_invoice):
        invoice = make_invoice("1000000", customer_phone="0901234567")

        result = service.apply_to_invoice(invoice.id, "sale10")

        assert result.valid
        assert result.message == MSG_APPLIED
        assert result.discount_amount == Decimal("50000.00")
        assert result.final_amount == Decimal("950000.00")

        db_session.refresh(invoice)
        assert invoice.promotion_id == promotion.id
        assert invoice.promotion_code == "SALE10"
        assert invoice.promotion_discount == Decimal("50000.00")
        assert invoice.total_due == Decimal("950000.00")

        db_session.refresh(promotion)
        assert promotion.usage_count == 1

        usage = db_session.execute(select(PromotionUsage)).scalar_one()
        assert usage.invoice_id == invoice.id
        assert usage.customer_phone == "0901234567"
        assert usage.discount_applied == Decimal("50000.00")

    def test_apply_writes_audit_entry(self, service, db_session, promotion, make_invoice):
        invoice = make_invoice()
        context = AuditContext(user_id=7, user_name="cashier@bistro.vn", ip_address="10.0.0.5")

        service.apply_to_invoice(invoice.id, "SALE10", context=context)

        entry = db_session.execute(
            select(AuditLogEntry).where(AuditLogEntry.action == "apply")
        ).scalar_one()
        assert entry.user_id == 7
        assert entry.ip_address == "10.0.0.5"
        assert entry.entity_id == str(promotion.id)
        assert entry.details["invoice_id"] == invoice.id

    def test_explicit_order_amount_overrides_invoice(self, service, promotion, make_invoice):
        invoice = make_invoice("1000000")
        result = service.apply_to_invoice(invoice.id, "SALE10", order_amount=Decimal("200000"))
        assert result.discount_amount == Decimal("20000.00")

    def test_customer_defaults_to_invoice(self, service, db_session, promotion, make_invoice, customer):
        invoice = make_invoice(customer_id=customer.id)
        service.apply_to_invoice(invoice.id, "SALE10")

        usage = db_session.execute(select(PromotionUsage)).scalar_one()
        assert usage.customer_id == customer.id
        assert usage.customer_phone is None

    def test_unlimited_promotion_keeps_counting(self, service, db_session, make_promotion, make_invoice):
        promotion = make_promotion()
        for _ in range(3):
            assert service.apply_to_invoice(make_invoice().id, "SALE10").valid
        db_session.refresh(promotion)
        assert promotion.usage_count == 3
        assert promotion.remaining_usage is None


# ============== Rejected redemption ==============

class TestApplyRejected:
    def test_same_phone_twice_is_already_used(self, service, db_session, promotion, make_invoice):
        first = make_invoice(customer_phone="0901234567")
        second = make_invoice(customer_phone="0901234567")

        assert service.apply_to_invoice(first.id, "SALE10").valid
        result = service.apply_to_invoice(second.id, "SALE10")

        assert not result.valid
        assert result.reason == ValidationFailure.ALREADY_USED
        db_session.refresh(promotion)
        assert promotion.usage_count == 1
        assert _usage_count(db_session) == 1

    def test_failure_changes_nothing(self, service, db_session, promotion, make_invoice):
        invoice = make_invoice("50000")

        result = service.apply_to_invoice(invoice.id, "SALE10")

        assert result.reason == ValidationFailure.BELOW_MINIMUM
        db_session.refresh(invoice)
        db_session.refresh(promotion)
        assert invoice.promotion_id is None
        assert invoice.promotion_discount == Decimal("0")
        assert promotion.usage_count == 0
        assert _usage_count(db_session) == 0
        assert db_session.scalar(select(func.count(AuditLogEntry.id))) == 0

    def test_usage_limit_allows_exactly_n(self, service, db_session, make_promotion, make_invoice):
        promotion = make_promotion(usage_limit=3)
        results = [service.apply_to_invoice(make_invoice().id, "SALE10") for _ in range(5)]

        assert [r.valid for r in results] == [True, True, True, False, False]
        assert all(r.reason == ValidationFailure.USAGE_EXHAUSTED for r in results[3:])
        db_session.refresh(promotion)
        assert promotion.usage_count == 3
        assert promotion.remaining_usage == 0
        assert _usage_count(db_session) == 3

    def test_missing_invoice(self, service, promotion):
        with pytest.raises(InvoiceNotFoundError):
            service.apply_to_invoice(99999, "SALE10")

    def test_paid_invoice(self, service, promotion, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.PAID)
        with pytest.raises(InvoiceStateError):
            service.apply_to_invoice(invoice.id, "SALE10")

    def test_order_amount_above_invoice_rejected(self, service, db_session, make_promotion, make_invoice):
        """The stamped discount can never exceed what the invoice bills."""
        promotion = make_promotion(code="VOUCHER20K", discount_amount=Decimal("20000"))
        invoice = make_invoice("15000")

        with pytest.raises(PromotionRuleError):
            service.apply_to_invoice(invoice.id, "VOUCHER20K", order_amount=Decimal("1000000"))

        db_session.refresh(invoice)
        db_session.refresh(promotion)
        assert invoice.promotion_id is None
        assert promotion.usage_count == 0
        assert _usage_count(db_session) == 0

    def test_fixed_discount_clamped_to_invoice(self, service, db_session, make_promotion, make_invoice):
        make_promotion(code="VOUCHER20K", discount_amount=Decimal("20000"))
        invoice = make_invoice("15000")

        result = service.apply_to_invoice(invoice.id, "VOUCHER20K")

        assert result.discount_amount == Decimal("15000.00")
        db_session.refresh(invoice)
        assert invoice.total_due == Decimal("0.00")

    def test_invoice_with_promotion_already(self, service, make_promotion, make_invoice):
        make_promotion(code="SALE10")
        make_promotion(code="FIXED5K", discount_amount=Decimal("5000"))
        invoice = make_invoice()
        assert service.apply_to_invoice(invoice.id, "SALE10").valid
        with pytest.raises(InvoiceStateError):
            service.apply_to_invoice(invoice.id, "FIXED5K")


# ============== Concurrency guards ==============

class TestConcurrentRedemption:
    def test_unique_index_catches_duplicate_customer(
        self, service, db_session, promotion, make_invoice, monkeypatch
    ):
        """A redemption that slips past the history check still cannot commit."""
        first = make_invoice(customer_phone="0901234567")
        second = make_invoice(customer_phone="0901234567")
        assert service.apply_to_invoice(first.id, "SALE10").valid

        monkeypatch.setattr(PromotionService, "customer_has_used", lambda self, *args: False)
        result = service.apply_to_invoice(second.id, "SALE10")

        assert result.reason == ValidationFailure.ALREADY_USED
        db_session.refresh(promotion)
        db_session.refresh(second)
        assert promotion.usage_count == 1
        assert second.promotion_id is None
        assert _usage_count(db_session) == 1

    def test_last_slot_goes_to_one_session(self, tmp_path, now):
        """Two tills race for the final use; the later commit is rejected."""
        engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        try:
            with Session() as setup:
                setup.add(Promotion(
                    name="Last one",
                    code="LAST1",
                    discount_amount=Decimal("10000"),
                    start_date=now - timedelta(days=1),
                    end_date=now + timedelta(days=1),
                    usage_limit=1,
                ))
                till_a = Invoice(order_id=1, amount=Decimal("500000"))
                till_b = Invoice(order_id=2, amount=Decimal("500000"))
                setup.add_all([till_a, till_b])
                setup.commit()
                invoice_a, invoice_b = till_a.id, till_b.id

            with Session() as session_a, Session() as session_b:
                service_b = PromotionService(session_b, clock=lambda: now)
                # Till B has already seen the promotion with a free slot
                assert service_b.validate("LAST1", Decimal("500000")).valid

                result_a = PromotionService(session_a, clock=lambda: now).apply_to_invoice(invoice_a, "LAST1")
                result_b = service_b.apply_to_invoice(invoice_b, "LAST1")

            assert result_a.valid
            assert not result_b.valid
            assert result_b.reason == ValidationFailure.USAGE_EXHAUSTED

            with Session() as check:
                promotion = check.execute(select(Promotion).where(Promotion.code == "LAST1")).scalar_one()
                assert promotion.usage_count == 1
                assert check.scalar(select(func.count(PromotionUsage.id))) == 1
                assert check.get(Invoice, invoice_b).promotion_id is None
        finally:
            Base.metadata.drop_all(bind=engine)
            engine.dispose()

    def test_invoice_takes_one_promotion_across_sessions(self, tmp_path, now):
        """Two tills apply different codes to the same open bill."""
        engine = build_engine(f"sqlite:///{tmp_path / 'invoice_race.db'}")
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        try:
            with Session() as setup:
                for code in ("AAA", "BBB"):
                    setup.add(Promotion(
                        name=f"Code {code}",
                        code=code,
                        discount_amount=Decimal("10000"),
                        start_date=now - timedelta(days=1),
                        end_date=now + timedelta(days=1),
                    ))
                bill = Invoice(order_id=1, amount=Decimal("500000"))
                setup.add(bill)
                setup.commit()
                invoice_id = bill.id

            with Session() as session_a, Session() as session_b:
                # Till B has the bill open with no promotion on it
                assert session_b.get(Invoice, invoice_id).promotion_id is None

                result_a = PromotionService(session_a, clock=lambda: now).apply_to_invoice(invoice_id, "AAA")
                assert result_a.valid
                with pytest.raises(InvoiceStateError):
                    PromotionService(session_b, clock=lambda: now).apply_to_invoice(invoice_id, "BBB")

            with Session() as check:
                assert check.get(Invoice, invoice_id).promotion_code == "AAA"
                usages = check.execute(
                    select(PromotionUsage).where(PromotionUsage.invoice_id == invoice_id)
                ).scalars().all()
                assert [u.promotion.code for u in usages] == ["AAA"]
                counts = dict(check.execute(select(Promotion.code, Promotion.usage_count)).all())
                assert counts == {"AAA": 1, "BBB": 0}
        finally:
            Base.metadata.drop_all(bind=engine)
            engine.dispose()
