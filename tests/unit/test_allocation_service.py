"""
Unit tests: allocation operations, state-machine guards and their custody entries.
"""
from datetime import UTC, datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    IdempotencyConflict,
    InvalidStateTransition,
    NotFound,
    ResourceUnavailable,
    Unauthorized,
)
from app.models.resource import AssignmentStatus, ResourceStatus, can_transition
from app.models.user import UserRole
from app.repositories import audit_repo
from app.services import allocation_service, custody_trail
from app.services.custody_trail import Distributed, Provisioned, ReturnConfirmed, ReturnRequested


@pytest_asyncio.fixture
async def actors(db: AsyncSession, factory):
    org = await factory.organization(db)
    return {
        "org": org,
        "admin": await factory.user(db, UserRole.admin),
        "coordinator": await factory.user(db, UserRole.coordinator, org),
        "volunteer": await factory.user(db, UserRole.volunteer, org),
    }


async def _entries(db, resource_id) -> int:
    return len(await audit_repo.get_custody_entries(db, resource_id))


# --- provision ---

@pytest.mark.asyncio
async def test_provision_sets_owner_and_logs_each_resource(db: AsyncSession, factory, actors):
    a = await factory.resource(db)
    b = await factory.resource(db, serial=True, quantity=1)
    resources = await allocation_service.provision(db, [a.id, b.id], actors["org"].id, actors["admin"])
    assert [r.organization_id for r in resources] == [actors["org"].id, actors["org"].id]
    for r in (a, b):
        events = await custody_trail.history(db, r.id)
        assert len(events) == 1
        assert isinstance(events[0], Provisioned)
        assert events[0].label == "Allocated to Organization"
        assert events[0].organization_id == actors["org"].id


@pytest.mark.asyncio
async def test_provision_to_same_org_still_logs(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"])
    await allocation_service.provision(db, [resource.id], actors["org"].id, actors["admin"])
    await allocation_service.provision(db, [resource.id], actors["org"].id, actors["admin"])
    assert await _entries(db, resource.id) == 2


@pytest.mark.asyncio
async def test_provision_duplicate_ids_processed_once(db: AsyncSession, factory, actors):
    resource = await factory.resource(db)
    result = await allocation_service.provision(db, [resource.id, resource.id], actors["org"].id, actors["admin"])
    assert len(result) == 1
    assert await _entries(db, resource.id) == 1


@pytest.mark.asyncio
async def test_provision_requires_admin(db: AsyncSession, factory, actors):
    resource = await factory.resource(db)
    with pytest.raises(Unauthorized):
        await allocation_service.provision(db, [resource.id], actors["org"].id, actors["coordinator"])
    assert await _entries(db, resource.id) == 0


@pytest.mark.asyncio
async def test_provision_unknown_resource_aborts(db: AsyncSession, factory, actors):
    resource = await factory.resource(db)
    with pytest.raises(NotFound):
        await allocation_service.provision(db, [resource.id, 999_999], actors["org"].id, actors["admin"])
    await db.refresh(resource)
    assert resource.organization_id is None
    assert await _entries(db, resource.id) == 0


@pytest.mark.asyncio
async def test_provision_unknown_organization(db: AsyncSession, factory, actors):
    resource = await factory.resource(db)
    with pytest.raises(NotFound):
        await allocation_service.provision(db, [resource.id], 999_999, actors["admin"])


# --- distribute ---

@pytest.mark.asyncio
async def test_distribute_bulk(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=3)
    due = datetime.now(UTC) + timedelta(days=7)
    assignment = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], notes="event kit", expected_return_at=due
    )
    assert assignment.status == AssignmentStatus.IN_USE
    assert assignment.quantity == 1
    assert assignment.related_id == actors["volunteer"].id
    assert assignment.notes == "event kit"
    await db.refresh(resource)
    assert resource.quantity_available == 2
    assert resource.status == ResourceStatus.available

    events = await custody_trail.history(db, resource.id)
    assert len(events) == 1
    assert isinstance(events[0], Distributed)
    assert events[0].assignment_id == assignment.id
    assert events[0].volunteer_id == actors["volunteer"].id
    assert events[0].status_change == "Allocated -> In Use"


@pytest.mark.asyncio
async def test_distribute_with_nothing_available_fails_without_audit(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=2, available=0)
    with pytest.raises(ResourceUnavailable):
        await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    assert await _entries(db, resource.id) == 0
    await db.refresh(resource)
    assert resource.quantity_available == 0


@pytest.mark.asyncio
async def test_distribute_serialized_in_use_rejected(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=1, serial=True, status=ResourceStatus.in_use)
    with pytest.raises(ResourceUnavailable):
        await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])


@pytest.mark.asyncio
async def test_distribute_in_maintenance_rejected(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], status=ResourceStatus.maintenance)
    with pytest.raises(ResourceUnavailable):
        await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])


@pytest.mark.asyncio
async def test_distribute_scoped_to_resource_organization(db: AsyncSession, factory, actors):
    """A coordinator of another organization cannot lend this organization's stock."""
    other_org = await factory.organization(db)
    outsider = await factory.user(db, UserRole.coordinator, other_org)
    resource = await factory.resource(db, actors["org"])
    with pytest.raises(Unauthorized):
        await allocation_service.distribute(db, resource.id, actors["volunteer"].id, outsider)
    with pytest.raises(Unauthorized):
        await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["volunteer"])
    assert await _entries(db, resource.id) == 0


@pytest.mark.asyncio
async def test_distribute_unowned_resource_needs_admin(db: AsyncSession, factory, actors):
    resource = await factory.resource(db)
    with pytest.raises(Unauthorized):
        await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["admin"])
    assert assignment.status == AssignmentStatus.IN_USE


@pytest.mark.asyncio
async def test_distribute_unknown_volunteer_or_resource(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"])
    with pytest.raises(NotFound):
        await allocation_service.distribute(db, resource.id, 999_999, actors["coordinator"])
    with pytest.raises(NotFound):
        await allocation_service.distribute(db, 999_999, actors["volunteer"].id, actors["coordinator"])


@pytest.mark.asyncio
async def test_distribute_idempotency_key_replay(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=3)
    first = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], idempotency_key="retry-1"
    )
    again = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], idempotency_key="retry-1"
    )
    assert again.id == first.id
    await db.refresh(resource)
    assert resource.quantity_available == 2
    assert await _entries(db, resource.id) == 1


@pytest.mark.asyncio
async def test_distribute_idempotency_key_reused_elsewhere(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=3)
    other_volunteer = await factory.user(db, UserRole.volunteer, actors["org"])
    await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], idempotency_key="retry-2"
    )
    with pytest.raises(IdempotencyConflict):
        await allocation_service.distribute(
            db, resource.id, other_volunteer.id, actors["coordinator"], idempotency_key="retry-2"
        )


# --- request_return ---

@pytest.mark.asyncio
async def test_request_return(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"])
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    updated = await allocation_service.request_return(db, assignment.id, actors["volunteer"])
    assert updated.status == AssignmentStatus.PENDING_RETURN
    await db.refresh(resource)
    assert resource.quantity_available == 4

    latest = (await custody_trail.history(db, resource.id))[0]
    assert isinstance(latest, ReturnRequested)
    assert latest.status_change == "In Use -> Pending Return"


@pytest.mark.asyncio
async def test_request_return_by_other_volunteer_mutates_nothing(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"])
    stranger = await factory.user(db, UserRole.volunteer, actors["org"])
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    with pytest.raises(Unauthorized):
        await allocation_service.request_return(db, assignment.id, stranger)
    await db.refresh(assignment)
    assert assignment.status == AssignmentStatus.IN_USE
    assert await _entries(db, resource.id) == 1


@pytest.mark.asyncio
async def test_request_return_twice_rejected(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"])
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    await allocation_service.request_return(db, assignment.id, actors["volunteer"])
    with pytest.raises(InvalidStateTransition):
        await allocation_service.request_return(db, assignment.id, actors["volunteer"])
    assert await _entries(db, resource.id) == 2


@pytest.mark.asyncio
async def test_request_return_non_returnable(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], is_returnable=False)
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    with pytest.raises(ResourceUnavailable):
        await allocation_service.request_return(db, assignment.id, actors["volunteer"])


@pytest.mark.asyncio
async def test_request_return_unknown_assignment(db: AsyncSession, actors):
    with pytest.raises(NotFound):
        await allocation_service.request_return(db, 999_999, actors["volunteer"])


# --- confirm_return ---

@pytest.mark.asyncio
async def test_confirm_return_without_request(db: AsyncSession, factory, actors):
    """The lender may confirm straight from IN_USE."""
    resource = await factory.resource(db, actors["org"], quantity=2)
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    updated = await allocation_service.confirm_return(db, assignment.id, actors["coordinator"], "good")
    assert updated.status == AssignmentStatus.RETURNED
    assert updated.returned_at is not None
    assert updated.condition == "good"
    await db.refresh(resource)
    assert resource.quantity_available == 2

    latest = (await custody_trail.history(db, resource.id))[0]
    assert isinstance(latest, ReturnConfirmed)
    assert latest.previous_status == AssignmentStatus.IN_USE
    assert latest.condition == "good"


@pytest.mark.asyncio
async def test_confirm_return_damaged_does_not_restore_stock(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=3)
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    await allocation_service.confirm_return(db, assignment.id, actors["coordinator"], "Damaged")
    await db.refresh(resource)
    assert resource.quantity_available == 2
    assert resource.status == ResourceStatus.damaged
    latest = (await custody_trail.history(db, resource.id))[0]
    assert latest.status_change == "In Use -> Damaged"


@pytest.mark.asyncio
async def test_confirm_return_twice_increments_once(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=2)
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    await allocation_service.confirm_return(db, assignment.id, actors["coordinator"], "good")
    with pytest.raises(InvalidStateTransition):
        await allocation_service.confirm_return(db, assignment.id, actors["coordinator"], "good")
    await db.refresh(resource)
    assert resource.quantity_available == 2
    assert await _entries(db, resource.id) == 2


@pytest.mark.asyncio
async def test_confirm_return_appends_notes(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"])
    assignment = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], notes="issued at gate"
    )
    updated = await allocation_service.confirm_return(
        db, assignment.id, actors["coordinator"], "good", notes="strap worn"
    )
    assert updated.notes == "issued at gate\nstrap worn"


@pytest.mark.asyncio
async def test_confirm_return_requires_lender(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"])
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    with pytest.raises(Unauthorized):
        await allocation_service.confirm_return(db, assignment.id, actors["volunteer"], "good")
    await db.refresh(assignment)
    assert assignment.status == AssignmentStatus.IN_USE


# --- end to end ---

@pytest.mark.asyncio
async def test_serialized_item_full_cycle(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=1, serial=True)

    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    assert assignment.status == AssignmentStatus.IN_USE
    await db.refresh(resource)
    assert resource.quantity_available == 0
    assert resource.status == ResourceStatus.in_use

    assignment = await allocation_service.request_return(db, assignment.id, actors["volunteer"])
    assert assignment.status == AssignmentStatus.PENDING_RETURN

    assignment = await allocation_service.confirm_return(db, assignment.id, actors["coordinator"], "good")
    assert assignment.status == AssignmentStatus.RETURNED
    await db.refresh(resource)
    assert resource.quantity_available == 1
    assert resource.status == ResourceStatus.available

    events = await custody_trail.history(db, resource.id)
    assert len(events) == 3
    oldest_first = list(reversed(events))
    assert [type(e) for e in oldest_first] == [Distributed, ReturnRequested, ReturnConfirmed]
    assert [e.entry_id for e in oldest_first] == sorted(e.entry_id for e in events)
    assert oldest_first[-1].status_change == "Pending Return -> Available"


@pytest.mark.asyncio
async def test_list_assignments_and_overdue(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=3)
    past = datetime.now(UTC) - timedelta(days=1)
    late = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], expected_return_at=past
    )
    on_time = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"],
        expected_return_at=datetime.now(UTC) + timedelta(days=1),
    )
    returned = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], expected_return_at=past
    )
    await allocation_service.confirm_return(db, returned.id, actors["coordinator"], "good")

    listed = await allocation_service.list_assignments(db, resource.id)
    assert {a.id for a in listed} == {late.id, on_time.id, returned.id}

    overdue = await allocation_service.list_overdue_assignments(db, actors["coordinator"])
    assert late.id in {a.id for a in overdue}
    assert on_time.id not in {a.id for a in overdue}
    assert returned.id not in {a.id for a in overdue}

    with pytest.raises(Unauthorized):
        await allocation_service.list_overdue_assignments(db, actors["volunteer"])


@pytest.mark.parametrize("current,target,allowed", [
    (AssignmentStatus.IN_USE, AssignmentStatus.PENDING_RETURN, True),
    (AssignmentStatus.IN_USE, AssignmentStatus.RETURNED, True),
    (AssignmentStatus.PENDING_RETURN, AssignmentStatus.RETURNED, True),
    (AssignmentStatus.PENDING_RETURN, AssignmentStatus.IN_USE, False),
    (AssignmentStatus.RETURNED, AssignmentStatus.IN_USE, False),
    (AssignmentStatus.RETURNED, AssignmentStatus.PENDING_RETURN, False),
    (AssignmentStatus.RETURNED, AssignmentStatus.RETURNED, False),
])
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


@pytest.mark.asyncio
async def test_deadline_with_offset_counts_in_utc(db: AsyncSession, factory, actors):
    """An hour ago written as +05:00 wall time is still overdue."""
    resource = await factory.resource(db, actors["org"], quantity=2)
    due = (datetime.now(UTC) - timedelta(hours=1)).astimezone(timezone(timedelta(hours=5)))
    assignment = await allocation_service.distribute(
        db, resource.id, actors["volunteer"].id, actors["coordinator"], expected_return_at=due
    )
    assert assignment.expected_return_at.utcoffset() == timedelta(0)
    overdue = await allocation_service.list_overdue_assignments(db, actors["coordinator"])
    assert assignment.id in {a.id for a in overdue}


@pytest.mark.asyncio
async def test_refused_transition_reports_current_and_target(db: AsyncSession, factory, actors):
    resource = await factory.resource(db, actors["org"], quantity=2)
    assignment = await allocation_service.distribute(db, resource.id, actors["volunteer"].id, actors["coordinator"])
    await allocation_service.confirm_return(db, assignment.id, actors["coordinator"], "good")
    with pytest.raises(InvalidStateTransition) as exc_info:
        await allocation_service.request_return(db, assignment.id, actors["volunteer"])
    assert exc_info.value.details["current"] == "RETURNED"
    assert exc_info.value.details["target"] == "PENDING_RETURN"
