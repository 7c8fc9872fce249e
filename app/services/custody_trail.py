"""
Chain of custody: a typed view over the generic audit_logs table.

Allocation operations append exactly one CustodyEvent per affected resource inside
their own transaction (append only adds and flushes). Consumers read typed events
back with history() and match on the class instead of comparing action strings.
Each entry records the ledger state right after the mutation, so replay() over a
resource's entries rebuilds its current status, quantity, owner and the status of
every assignment it ever had.
"""
import json
import logging
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import ClassVar, Iterable, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import (
    CUSTODY_ACTION,
    CUSTODY_ENTITY_TYPE,
    PROVISIONED_STATE_LABEL,
    custody_event_label,
    status_label,
    transition_label,
)
from app.models import AuditLog
from app.models.audit import CustodyEventType
from app.models.resource import AssignmentStatus, ResourceStatus
from app.repositories import audit_repo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class _CustodyEventBase:
    kind: ClassVar[CustodyEventType]

    resource_id: int
    actor_id: int | None
    # Ledger state right after the mutation
    resource_status: ResourceStatus
    quantity_available: int
    organization_id: int | None = None
    assignment_id: int | None = None
    # Filled in when read back from audit_logs
    entry_id: int | None = None
    occurred_at: datetime | None = None

    @property
    def label(self) -> str:
        return custody_event_label(self.kind)

    @property
    def status_change(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class Provisioned(_CustodyEventBase):
    kind: ClassVar[CustodyEventType] = CustodyEventType.provisioned

    organization_id: int
    previous_organization_id: int | None = None
    organization_name: str | None = None

    @property
    def status_change(self) -> str:
        return f"{status_label(self.resource_status)} -> {PROVISIONED_STATE_LABEL}"


@dataclass(frozen=True, kw_only=True)
class Distributed(_CustodyEventBase):
    kind: ClassVar[CustodyEventType] = CustodyEventType.distributed

    volunteer_id: int
    assignment_status: AssignmentStatus = AssignmentStatus.IN_USE

    @property
    def status_change(self) -> str:
        return f"{PROVISIONED_STATE_LABEL} -> {status_label(self.assignment_status)}"


@dataclass(frozen=True, kw_only=True)
class ReturnRequested(_CustodyEventBase):
    kind: ClassVar[CustodyEventType] = CustodyEventType.return_requested

    volunteer_id: int
    previous_status: AssignmentStatus = AssignmentStatus.IN_USE
    assignment_status: AssignmentStatus = AssignmentStatus.PENDING_RETURN

    @property
    def status_change(self) -> str:
        return transition_label(self.previous_status, self.assignment_status)


@dataclass(frozen=True, kw_only=True)
class ReturnConfirmed(_CustodyEventBase):
    kind: ClassVar[CustodyEventType] = CustodyEventType.return_confirmed

    condition: str | None = None
    previous_status: AssignmentStatus = AssignmentStatus.PENDING_RETURN
    assignment_status: AssignmentStatus = AssignmentStatus.RETURNED

    @property
    def status_change(self) -> str:
        return transition_label(self.previous_status, self.resource_status)


CustodyEvent = Union[Provisioned, Distributed, ReturnRequested, ReturnConfirmed]

EVENT_CLASSES: dict[CustodyEventType, type] = {
    cls.kind: cls for cls in (Provisioned, Distributed, ReturnRequested, ReturnConfirmed)
}

_NOT_STORED = ("entry_id", "occurred_at")
_ENUM_FIELDS = {
    "resource_status": ResourceStatus,
    "assignment_status": AssignmentStatus,
    "previous_status": AssignmentStatus,
}


def to_metadata(event: CustodyEvent, timestamp: datetime) -> dict:
    """Event -> JSON-safe dict stored in audit_logs.metadata."""
    data = {}
    for f in fields(event):
        if f.name in _NOT_STORED:
            continue
        value = getattr(event, f.name)
        data[f.name] = value.value if hasattr(value, "value") else value
    data["status_change"] = event.status_change
    data["timestamp"] = timestamp.isoformat()
    return data


def from_entry(entry: AuditLog) -> CustodyEvent:
    """audit_logs row -> typed event. ValueError for rows that are not custody entries."""
    try:
        cls = EVENT_CLASSES[CustodyEventType(entry.event_type)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"audit_log {entry.id} is not a custody entry") from exc
    meta = json.loads(entry.metadata_json or "{}")
    kwargs = {}
    for f in fields(cls):
        if f.name in _NOT_STORED or f.name not in meta:
            continue
        value = meta[f.name]
        enum_cls = _ENUM_FIELDS.get(f.name)
        kwargs[f.name] = enum_cls(value) if enum_cls and value is not None else value
    return cls(entry_id=entry.id, occurred_at=entry.created_at, **kwargs)


async def append(db: AsyncSession, event: CustodyEvent) -> AuditLog:
    """Adds one custody row in the caller's transaction."""
    now = datetime.now(UTC)
    entry = AuditLog(
        user_id=event.actor_id,
        action=CUSTODY_ACTION,
        entity_type=CUSTODY_ENTITY_TYPE,
        entity_id=event.resource_id,
        event_type=event.kind.value,
        description=event.label,
        metadata_json=json.dumps(to_metadata(event, now), ensure_ascii=False),
        created_at=now,
    )
    db.add(entry)
    await db.flush()
    logger.info(
        "custody_event resource_id=%s event_type=%s assignment_id=%s actor_id=%s",
        event.resource_id, event.kind.value, event.assignment_id, event.actor_id,
    )
    return entry


async def history_entries(db: AsyncSession, resource_id: int) -> list[AuditLog]:
    """Raw custody rows, newest first (HTTP layer, export)."""
    return await audit_repo.get_custody_entries(db, resource_id)


async def history(db: AsyncSession, resource_id: int) -> list[CustodyEvent]:
    """Typed custody events of a resource, newest first."""
    return [from_entry(e) for e in await history_entries(db, resource_id)]


@dataclass
class CustodyState:
    resource_status: ResourceStatus | None = None
    quantity_available: int | None = None
    organization_id: int | None = None
    assignments: dict[int, AssignmentStatus] = field(default_factory=dict)


def replay(events: Iterable[CustodyEvent]) -> CustodyState:
    """
    Folds events given oldest first into the resulting state.
    history() returns newest first: replay(reversed(events)).
    """
    state = CustodyState()
    for event in events:
        state.resource_status = event.resource_status
        state.quantity_available = event.quantity_available
        state.organization_id = event.organization_id
        if event.assignment_id is not None:
            state.assignments[event.assignment_id] = event.assignment_status
    return state


async def replay_resource(db: AsyncSession, resource_id: int) -> CustodyState:
    events = await history(db, resource_id)
    return replay(reversed(events))
