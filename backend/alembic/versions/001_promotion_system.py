"""Promotion system schema

Revision ID: 001
Revises:
Create Date: 2025-11-26 17:02:38.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.Enum("OWNER", "MANAGER", "STAFF", name="userrole"), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Customers table
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(15), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_customers_phone", "customers", ["phone"])

    # Promotions table
    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("max_discount_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("min_order_amount", sa.Numeric(10, 2), server_default="0", nullable=False),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("usage_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("active", sa.Boolean(), server_default="1", nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "(discount_percent IS NULL) <> (discount_amount IS NULL)",
            name="ck_promotions_single_discount_type",
        ),
        sa.CheckConstraint(
            "discount_percent IS NULL OR (discount_percent >= 0 AND discount_percent <= 100)",
            name="ck_promotions_percent_range",
        ),
        sa.CheckConstraint("discount_amount IS NULL OR discount_amount >= 0", name="ck_promotions_amount_non_negative"),
        sa.CheckConstraint("max_discount_amount IS NULL OR max_discount_amount >= 0", name="ck_promotions_cap_non_negative"),
        sa.CheckConstraint("min_order_amount >= 0", name="ck_promotions_min_order_non_negative"),
        sa.CheckConstraint("end_date > start_date", name="ck_promotions_date_order"),
        sa.CheckConstraint("usage_limit IS NULL OR usage_limit >= 1", name="ck_promotions_usage_limit_positive"),
        sa.CheckConstraint("usage_count >= 0", name="ck_promotions_usage_count_non_negative"),
        sa.CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_promotions_usage_within_limit",
        ),
    )
    op.create_index("ix_promotions_code", "promotions", ["code"], unique=True)
    op.create_index("ix_promotions_active", "promotions", ["active"])

    # Invoices table (promotion stamp columns included)
    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(30), nullable=False),
        sa.Column("status", sa.Enum("PENDING", "PAID", "CANCELLED", name="invoicestatus"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("customer_phone", sa.String(15), nullable=True),
        sa.Column("promotion_id", sa.Integer(), sa.ForeignKey("promotions.id"), nullable=True),
        sa.Column("promotion_code", sa.String(20), nullable=True),
        sa.Column("promotion_discount", sa.Numeric(10, 2), server_default="0", nullable=False),
        sa.Column("notes", sa.String(500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_invoices_amount_positive"),
        sa.CheckConstraint("promotion_discount >= 0", name="ck_invoices_discount_non_negative"),
    )
    op.create_index("ix_invoices_order_id", "invoices", ["order_id"])

    # Promotion usage ledger (append-only)
    op.create_table(
        "promotion_usages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("promotion_id", sa.Integer(), sa.ForeignKey("promotions.id"), nullable=False),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("customer_phone", sa.String(15), nullable=True),
        sa.Column("discount_applied", sa.Numeric(10, 2), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("discount_applied >= 0", name="ck_promotion_usages_discount_non_negative"),
    )
    op.create_index("ix_promotion_usages_promotion_id", "promotion_usages", ["promotion_id"])
    op.create_index("ix_promotion_usages_invoice_id", "promotion_usages", ["invoice_id"])
    op.create_index("idx_promotion_usages_used_at", "promotion_usages", ["used_at"])

    # One redemption per customer identity per promotion (NULLs excluded)
    op.execute("""
        CREATE UNIQUE INDEX uq_promotion_usages_promotion_customer
        ON promotion_usages(promotion_id, customer_id) WHERE customer_id IS NOT NULL
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_promotion_usages_promotion_phone
        ON promotion_usages(promotion_id, customer_phone) WHERE customer_phone IS NOT NULL
    """)

    # Audit log
    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("user_name", sa.String(200), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(50), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_audit_entity", "audit_log_entries", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_log_entries")
    op.execute("DROP INDEX IF EXISTS uq_promotion_usages_promotion_phone")
    op.execute("DROP INDEX IF EXISTS uq_promotion_usages_promotion_customer")
    op.drop_table("promotion_usages")
    op.drop_table("invoices")
    op.drop_table("promotions")
    op.drop_table("customers")
    op.drop_table("users")
    sa.Enum(name="invoicestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)
