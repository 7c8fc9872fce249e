"""
Data access for resources and assignments: lookups by id, per-resource assignment
lists, overdue assignments.
"""
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models import Resource, ResourceAssignment
from app.models.resource import AssignmentStatus, as_utc

OPEN_ASSIGNMENT_STATUSES = (AssignmentStatus.IN_USE, AssignmentStatus.PENDING_RETURN)


async def get_resource_by_id(db: AsyncSession, resource_id: int) -> Resource | None:
    """Resource by id without relations."""
    result = await db.execute(select(Resource).where(Resource.id == resource_id))
    return result.scalar_one_or_none()


async def get_resources_by_ids(db: AsyncSession, resource_ids: list[int]) -> list[Resource]:
    """Resources for the given ids, ordered by id. Missing ids are simply absent."""
    if not resource_ids:
        return []
    result = await db.execute(
        select(Resource).where(Resource.id.in_(resource_ids)).order_by(Resource.id)
    )
    return list(result.scalars().all())


async def get_assignment_by_id(db: AsyncSession, assignment_id: int) -> ResourceAssignment | None:
    result = await db.execute(select(ResourceAssignment).where(ResourceAssignment.id == assignment_id))
    return result.scalar_one_or_none()


async def get_assignment_by_idempotency_key(db: AsyncSession, key: str) -> ResourceAssignment | None:
    result = await db.execute(select(ResourceAssignment).where(ResourceAssignment.idempotency_key == key))
    return result.scalar_one_or_none()


async def list_assignments_for_resource(db: AsyncSession, resource_id: int) -> list[ResourceAssignment]:
    """All assignments a resource ever had, newest first (returned ones included)."""
    result = await db.execute(
        select(ResourceAssignment)
        .where(ResourceAssignment.resource_id == resource_id)
        .order_by(ResourceAssignment.assigned_at.desc(), ResourceAssignment.id.desc())
    )
    return list(result.scalars().all())


async def list_overdue_assignments(
    db: AsyncSession,
    now: datetime | None = None,
    organization_id: int | None = None,
) -> list[ResourceAssignment]:
    """
    Open assignments (IN_USE / PENDING_RETURN) whose expected_return_at has passed.
    organization_id narrows the result to resources owned by that organization.
    """
    now = as_utc(now) or datetime.now(UTC)
    q = (
        select(ResourceAssignment)
        .join(Resource, Resource.id == ResourceAssignment.resource_id)
        .options(selectinload(ResourceAssignment.resource))
        .where(ResourceAssignment.status.in_(OPEN_ASSIGNMENT_STATUSES))
        .where(ResourceAssignment.expected_return_at.isnot(None))
        .where(ResourceAssignment.expected_return_at < now)
        .order_by(ResourceAssignment.expected_return_at.asc(), ResourceAssignment.id.asc())
    )
    if organization_id is not None:
        q = q.where(Resource.organization_id == organization_id)
    result = await db.execute(q)
    return list(result.scalars().all())
