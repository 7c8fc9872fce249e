"""
Data access for the generic audit_logs table, narrowed to custody-chain rows.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import CUSTODY_ACTION, CUSTODY_ENTITY_TYPE
from app.models import AuditLog


async def get_custody_entries(db: AsyncSession, resource_id: int) -> list[AuditLog]:
    """Custody rows of one resource, newest first; id breaks ties between equal timestamps."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == CUSTODY_ENTITY_TYPE)
        .where(AuditLog.action == CUSTODY_ACTION)
        .where(AuditLog.entity_id == resource_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    )
    return list(result.scalars().all())
