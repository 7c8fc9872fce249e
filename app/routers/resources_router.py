"""
JSON API of the allocation engine. Each mutating endpoint commits the request
transaction itself and only then schedules the notification, so the side channel
never sees state that could still roll back.
"""
from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import require_coordinator, require_user, viewable_resource
from app.database import get_db
from app.models import Resource, User
from app.schemas.resources import (
    AssignmentOut,
    CustodyEntryOut,
    DistributeIn,
    ProvisionIn,
    ResourceOut,
    ReturnConfirmIn,
    ReturnRequestIn,
)
from app.services import allocation_service, custody_trail
from app.services.event_sink import (
    EVENT_DISTRIBUTED,
    EVENT_RETURN_REQUESTED,
    CustodyNotification,
    EventSink,
    get_event_sink,
)
from app.services.export_xlsx import export_custody_history_xlsx, export_overdue_assignments_xlsx

router = APIRouter(prefix="/resources", tags=["resources"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post("/provision")
async def provision(
    payload: ProvisionIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_user),
):
    resources = await allocation_service.provision(
        db, payload.resource_ids, payload.organization_id, current_user
    )
    data = [ResourceOut.from_resource(r).model_dump(by_alias=True) for r in resources]
    await db.commit()
    return {"message": "Resources allocated successfully", "data": data}


@router.post("/distribute")
async def distribute(
    payload: DistributeIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_user),
    sink: EventSink = Depends(get_event_sink),
):
    assignment = await allocation_service.distribute(
        db,
        payload.resource_id,
        payload.volunteer_id,
        current_user,
        notes=payload.notes,
        expected_return_at=payload.expected_return_at,
        idempotency_key=payload.idempotency_key,
    )
    data = AssignmentOut.from_assignment(assignment).model_dump(mode="json", by_alias=True)
    await db.commit()
    background_tasks.add_task(
        sink.publish,
        CustodyNotification(EVENT_DISTRIBUTED, assignment.resource_id, assignment.id, current_user.id),
    )
    return {"message": "Resource assigned to volunteer", "data": data}


@router.post("/return/request")
async def request_return(
    payload: ReturnRequestIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_user),
    sink: EventSink = Depends(get_event_sink),
):
    assignment = await allocation_service.request_return(db, payload.assignment_id, current_user)
    data = AssignmentOut.from_assignment(assignment).model_dump(mode="json", by_alias=True)
    await db.commit()
    background_tasks.add_task(
        sink.publish,
        CustodyNotification(EVENT_RETURN_REQUESTED, assignment.resource_id, assignment.id, current_user.id),
    )
    return {"message": "Return requested", "data": data}


@router.post("/return/confirm")
async def confirm_return(
    payload: ReturnConfirmIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_user),
):
    assignment = await allocation_service.confirm_return(
        db, payload.assignment_id, current_user, payload.condition, notes=payload.notes
    )
    data = AssignmentOut.from_assignment(assignment).model_dump(mode="json", by_alias=True)
    await db.commit()
    return {"message": "Return confirmed", "data": data}


@router.get("/assignments/overdue")
async def overdue_assignments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_coordinator),
):
    assignments = await allocation_service.list_overdue_assignments(db, current_user)
    return {"data": [AssignmentOut.from_assignment(a).model_dump(mode="json", by_alias=True) for a in assignments]}


@router.get("/assignments/overdue/export.xlsx")
async def overdue_assignments_export(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_coordinator),
):
    assignments = await allocation_service.list_overdue_assignments(db, current_user)
    buf = export_overdue_assignments_xlsx(assignments)
    return StreamingResponse(
        buf,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=overdue_assignments.xlsx"},
    )


@router.get("/{resource_id}/history")
async def resource_history(
    db: AsyncSession = Depends(get_db),
    resource: Resource = Depends(viewable_resource),
):
    entries = await custody_trail.history_entries(db, resource.id)
    return {"data": [CustodyEntryOut.from_entry(e).model_dump(mode="json", by_alias=True) for e in entries]}


@router.get("/{resource_id}/history/export.xlsx")
async def resource_history_export(
    db: AsyncSession = Depends(get_db),
    resource: Resource = Depends(viewable_resource),
):
    entries = await custody_trail.history_entries(db, resource.id)
    buf = export_custody_history_xlsx(resource, entries)
    return StreamingResponse(
        buf,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=custody_{resource.id}.xlsx"},
    )


@router.get("/{resource_id}/assignments")
async def resource_assignments(
    db: AsyncSession = Depends(get_db),
    resource: Resource = Depends(viewable_resource),
):
    assignments = await allocation_service.list_assignments(db, resource.id)
    return {"data": [AssignmentOut.from_assignment(a).model_dump(mode="json", by_alias=True) for a in assignments]}
