"""
Audit logging service for customer and ledger events.

Audit rows are flushed, not committed: they join the caller's unit of
work and are discarded with it on rollback.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    CUSTOMER_CREATED = "CUSTOMER_CREATED"
    PAYMENT_APPLIED = "PAYMENT_APPLIED"


async def log_event(
    db: AsyncSession,
    action: str,
    account_number: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an audit event to the current transaction.

    Args:
        db: Database session (transaction managed by caller)
        action: Action being performed (use AuditAction constants)
        account_number: Account the event concerns
        metadata: Additional context as JSON

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        action=action,
        account_number=account_number,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log

