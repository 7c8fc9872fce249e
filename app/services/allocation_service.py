"""
Allocation service: provision, distribute, request_return, confirm_return.

Each function runs inside the caller's request transaction and is all-or-nothing:
ledger mutation, assignment change and the custody entry are only flushed here,
get_db commits them together or rolls everything back on any raised error.
Assignment transitions are compare-and-set updates guarded by ALLOWED_TRANSITIONS,
so a lender and a borrower racing on the same assignment cannot both win.
Organization scoping always comes from Resource.organization_id. Resource values
written into custody entries are read under the resource row lock (ledger.lock).
"""
import logging
from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import is_lender
from app.exceptions import (
    IdempotencyConflict,
    InvalidStateTransition,
    NotFound,
    ResourceUnavailable,
    Unauthorized,
)
from app.models import Resource, ResourceAssignment, User
from app.models.resource import (
    ALLOWED_TRANSITIONS,
    AssignmentStatus,
    AssignmentType,
    ResourceStatus,
    as_utc,
    can_transition,
)
from app.models.user import UserRole
from app.repositories import reference_repo, resource_repo
from app.services import custody_trail, ledger
from app.services.custody_trail import Distributed, Provisioned, ReturnConfirmed, ReturnRequested

logger = logging.getLogger(__name__)


def _ensure_lender(resource: Resource, actor: User) -> None:
    if not is_lender(resource, actor):
        raise Unauthorized(
            "Only a coordinator of the owning organization can do this",
            resource_id=resource.id,
            actor_id=actor.id,
        )


def _is_issuable(resource: Resource) -> bool:
    if resource.status == ResourceStatus.maintenance:
        return False
    if resource.is_serialized and resource.status == ResourceStatus.in_use:
        return False
    return resource.quantity_available >= 1


async def _get_assignment(db: AsyncSession, assignment_id: int) -> ResourceAssignment:
    assignment = await resource_repo.get_assignment_by_id(db, assignment_id)
    if not assignment:
        raise NotFound("Assignment not found", assignment_id=assignment_id)
    return assignment


async def _get_resource(db: AsyncSession, resource_id: int) -> Resource:
    resource = await resource_repo.get_resource_by_id(db, resource_id)
    if not resource:
        raise NotFound("Resource not found", resource_id=resource_id)
    return resource


async def _transition(
    db: AsyncSession,
    assignment: ResourceAssignment,
    target: AssignmentStatus,
    **values,
) -> ResourceAssignment:
    """
    Moves the assignment to target only if its stored status is still an allowed
    source state. InvalidStateTransition otherwise (RETURNED is terminal).
    """
    # Statuses only move forward, so a status refused here is refused in the row too.
    if not can_transition(assignment.status, target):
        raise InvalidStateTransition(
            f"Assignment cannot move from {assignment.status.value} to {target.value}",
            assignment_id=assignment.id,
            current=assignment.status.value,
            target=target.value,
        )
    allowed = ALLOWED_TRANSITIONS[target]
    result = await db.execute(
        update(ResourceAssignment)
        .where(ResourceAssignment.id == assignment.id)
        .where(ResourceAssignment.status.in_(allowed))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    refreshed = await db.get(ResourceAssignment, assignment.id, populate_existing=True)
    if result.rowcount == 0:
        current = refreshed.status if refreshed else None
        raise InvalidStateTransition(
            f"Assignment cannot move from {getattr(current, 'value', current)} to {target.value}",
            assignment_id=assignment.id,
            current=getattr(current, "value", current),
            target=target.value,
        )
    return refreshed


async def provision(
    db: AsyncSession,
    resource_ids: list[int],
    organization_id: int,
    actor: User,
) -> list[Resource]:
    """
    Admin reassigns stock to an organization. One custody entry per resource, also
    when the organization does not change (the timeline stays complete).
    Any unknown resource id aborts the whole call.
    """
    if not actor.is_admin:
        raise Unauthorized("Only admins can provision resources", actor_id=actor.id)
    organization = await reference_repo.get_organization_by_id(db, organization_id)
    if not organization:
        raise NotFound("Organization not found", organization_id=organization_id)
    ids = list(dict.fromkeys(resource_ids))
    found = {r.id: r for r in await resource_repo.get_resources_by_ids(db, ids)}
    missing = [rid for rid in ids if rid not in found]
    if missing:
        raise NotFound("Resource not found", resource_ids=missing)

    provisioned = []
    for rid in ids:
        previous_org = found[rid].organization_id
        resource = await ledger.set_owner(db, rid, organization.id)
        await custody_trail.append(
            db,
            Provisioned(
                resource_id=resource.id,
                actor_id=actor.id,
                resource_status=resource.status,
                quantity_available=resource.quantity_available,
                organization_id=organization.id,
                previous_organization_id=previous_org,
                organization_name=organization.name,
            ),
        )
        provisioned.append(resource)
    logger.info(
        "resources_provisioned organization_id=%s count=%s actor_id=%s",
        organization.id, len(provisioned), actor.id,
    )
    return provisioned


async def distribute(
    db: AsyncSession,
    resource_id: int,
    volunteer_id: int,
    actor: User,
    notes: str | None = None,
    expected_return_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> ResourceAssignment:
    """
    Lender issues one unit to a volunteer: IN_USE assignment, available stock - 1,
    serialized items become in_use, one "Assigned to Volunteer" entry.
    With idempotency_key, a retried call returns the first assignment unchanged.
    """
    resource = await _get_resource(db, resource_id)
    _ensure_lender(resource, actor)
    volunteer = await reference_repo.get_user_by_id(db, volunteer_id)
    if not volunteer:
        raise NotFound("Volunteer not found", volunteer_id=volunteer_id)

    if idempotency_key:
        existing = await resource_repo.get_assignment_by_idempotency_key(db, idempotency_key)
        if existing:
            if existing.resource_id == resource.id and existing.related_id == volunteer.id:
                logger.info(
                    "resource_distribute_replayed assignment_id=%s idempotency_key=%s",
                    existing.id, idempotency_key,
                )
                return existing
            raise IdempotencyConflict(
                "Idempotency key already used for another distribution",
                idempotency_key=idempotency_key,
            )

    if not _is_issuable(resource):
        raise ResourceUnavailable(
            "Resource is not available",
            resource_id=resource.id,
            status=resource.status.value,
            quantity_available=resource.quantity_available,
        )

    resource = await ledger.decrement_available(db, resource.id, 1)
    assignment = ResourceAssignment(
        resource_id=resource.id,
        assignment_type=AssignmentType.volunteer,
        related_id=volunteer.id,
        quantity=1,
        status=AssignmentStatus.IN_USE,
        assigned_at=datetime.now(UTC),
        expected_return_at=as_utc(expected_return_at),
        notes=notes or None,
        idempotency_key=idempotency_key or None,
    )
    db.add(assignment)
    try:
        await db.flush()
    except IntegrityError as exc:
        if idempotency_key:
            raise IdempotencyConflict(
                "Idempotency key already used",
                idempotency_key=idempotency_key,
            ) from exc
        raise

    new_status = ledger.status_after_issue(resource)
    if new_status != resource.status:
        resource = await ledger.set_status(db, resource.id, new_status)

    await custody_trail.append(
        db,
        Distributed(
            resource_id=resource.id,
            actor_id=actor.id,
            resource_status=resource.status,
            quantity_available=resource.quantity_available,
            organization_id=resource.organization_id,
            assignment_id=assignment.id,
            volunteer_id=volunteer.id,
        ),
    )
    logger.info(
        "resource_distributed resource_id=%s assignment_id=%s volunteer_id=%s actor_id=%s",
        resource.id, assignment.id, volunteer.id, actor.id,
    )
    return assignment


async def request_return(
    db: AsyncSession,
    assignment_id: int,
    volunteer: User,
) -> ResourceAssignment:
    """Borrower signals intent to return: IN_USE -> PENDING_RETURN. Ledger is untouched."""
    assignment = await _get_assignment(db, assignment_id)
    if assignment.assignment_type != AssignmentType.volunteer or assignment.related_id != volunteer.id:
        raise Unauthorized(
            "Unauthorized return request",
            assignment_id=assignment.id,
            actor_id=volunteer.id,
        )
    resource = await _get_resource(db, assignment.resource_id)
    if not resource.is_returnable:
        raise ResourceUnavailable("This resource is not returnable", resource_id=resource.id)

    previous = assignment.status
    assignment = await _transition(db, assignment, AssignmentStatus.PENDING_RETURN)
    resource = await ledger.lock(db, resource.id)
    await custody_trail.append(
        db,
        ReturnRequested(
            resource_id=resource.id,
            actor_id=volunteer.id,
            resource_status=resource.status,
            quantity_available=resource.quantity_available,
            organization_id=resource.organization_id,
            assignment_id=assignment.id,
            volunteer_id=volunteer.id,
            previous_status=previous,
        ),
    )
    logger.info("resource_return_requested assignment_id=%s volunteer_id=%s", assignment.id, volunteer.id)
    return assignment


async def confirm_return(
    db: AsyncSession,
    assignment_id: int,
    actor: User,
    condition: str,
    notes: str | None = None,
) -> ResourceAssignment:
    """
    Lender reconciles a physical return from IN_USE or PENDING_RETURN to RETURNED.
    The unit goes back to available stock unless the condition is "damaged", in which
    case the resource is marked damaged instead. A second confirmation fails with
    InvalidStateTransition, so stock is restored at most once.
    """
    assignment = await _get_assignment(db, assignment_id)
    resource = await _get_resource(db, assignment.resource_id)
    _ensure_lender(resource, actor)

    previous = assignment.status
    damaged = ledger.is_damaged(condition)
    combined_notes = assignment.notes
    if notes:
        combined_notes = f"{assignment.notes}\n{notes}" if assignment.notes else notes

    assignment = await _transition(
        db,
        assignment,
        AssignmentStatus.RETURNED,
        returned_at=datetime.now(UTC),
        condition=condition,
        notes=combined_notes,
    )
    resource = await ledger.lock(db, resource.id)
    if not damaged:
        resource = await ledger.increment_available(db, resource.id, assignment.quantity or 1)
    new_status = ledger.status_after_return(resource, damaged)
    if new_status != resource.status:
        resource = await ledger.set_status(db, resource.id, new_status)

    await custody_trail.append(
        db,
        ReturnConfirmed(
            resource_id=resource.id,
            actor_id=actor.id,
            resource_status=resource.status,
            quantity_available=resource.quantity_available,
            organization_id=resource.organization_id,
            assignment_id=assignment.id,
            condition=condition,
            previous_status=previous,
        ),
    )
    logger.info(
        "resource_return_confirmed assignment_id=%s condition=%s resource_status=%s actor_id=%s",
        assignment.id, condition, resource.status.value, actor.id,
    )
    return assignment


async def list_assignments(db: AsyncSession, resource_id: int) -> list[ResourceAssignment]:
    """Every assignment of a resource, newest first. NotFound for an unknown resource."""
    resource = await _get_resource(db, resource_id)
    return await resource_repo.list_assignments_for_resource(db, resource.id)


async def list_overdue_assignments(
    db: AsyncSession,
    actor: User,
    now: datetime | None = None,
) -> list[ResourceAssignment]:
    """Admins see every overdue assignment, coordinators only those of their organization."""
    if actor.is_admin:
        return await resource_repo.list_overdue_assignments(db, now=now)
    if actor.role != UserRole.coordinator or actor.organization_id is None:
        raise Unauthorized("Only coordinators can list overdue assignments", actor_id=actor.id)
    return await resource_repo.list_overdue_assignments(db, now=now, organization_id=actor.organization_id)
