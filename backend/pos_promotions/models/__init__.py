"""SQLAlchemy models."""

from pos_promotions.models.user import User
from pos_promotions.models.customer import Customer
from pos_promotions.models.invoice import Invoice, InvoiceStatus
from pos_promotions.models.promotion import Promotion, PromotionUsage
from pos_promotions.models.audit import AuditLogEntry

__all__ = [
    "User",
    "Customer",
    "Invoice",
    "InvoiceStatus",
    "Promotion",
    "PromotionUsage",
    "AuditLogEntry",
]
