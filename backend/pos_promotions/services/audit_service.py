"""Audit logging service.

Writes audit log entries for state-changing promotion operations. Entries
are added to the caller's session and flushed, so they commit or roll back
together with the change they describe.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from pos_promotions.core.timeutils import utc_now
from pos_promotions.models.audit import AuditLogEntry

logger = logging.getLogger("audit")


@dataclass(frozen=True)
class AuditContext:
    """The user and client behind a request."""

    user_id: Optional[int] = None
    user_name: str = ""
    ip_address: str = ""


SYSTEM = AuditContext(user_name="system")


def log_action(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: Any = "",
    context: Optional[AuditContext] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLogEntry:
    """Write an audit log entry.

    Args:
        db: The session carrying the audited change.
        action: The action performed (create, update, delete, apply, ...)
        entity_type: Type of entity affected (promotion, invoice, ...)
        entity_id: ID of the affected entity
        context: Who performed the action and from where
        details: Additional details (changed fields, amounts, description, ...)
    """
    context = context or SYSTEM
    entry = AuditLogEntry(
        user_id=context.user_id,
        user_name=context.user_name[:200],
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id else "",
        details=details or {},
        ip_address=context.ip_address[:45],
        created_at=utc_now(),
    )
    db.add(entry)
    db.flush()
    logger.info(f"{action} {entity_type}#{entry.entity_id} by {context.user_name or context.user_id}")
    return entry


def log_entity_change(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: Any,
    context: Optional[AuditContext] = None,
    old_value: Any = None,
    new_value: Any = None,
    description: str = "",
) -> AuditLogEntry:
    """Log a create/update/delete on an entity with old/new values."""
    details: dict[str, Any] = {}
    if description:
        details["description"] = description
    if old_value is not None:
        details["old_value"] = str(old_value)[:1000]
    if new_value is not None:
        details["new_value"] = str(new_value)[:1000]

    return log_action(
        db,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        context=context,
        details=details,
    )
