"""
Request/response DTOs of the resources API. JSON field names are camelCase,
attribute names stay snake_case (populate_by_name lets tests use either).
"""
import json
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models import AuditLog, Resource, ResourceAssignment, User
from app.models.resource import as_utc


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginIn(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)


class ProvisionIn(_CamelModel):
    resource_ids: list[int] = Field(alias="resourceIds")
    organization_id: int = Field(alias="orgId")


class DistributeIn(_CamelModel):
    resource_id: int = Field(alias="resourceId")
    volunteer_id: int = Field(alias="volunteerId")
    notes: str | None = None
    expected_return_at: datetime | None = Field(default=None, alias="expectedReturnAt")
    idempotency_key: str | None = Field(default=None, alias="idempotencyKey", max_length=128)

    @field_validator("expected_return_at")
    @classmethod
    def _expected_return_in_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


class ReturnRequestIn(_CamelModel):
    assignment_id: int = Field(alias="assignmentId")


class ReturnConfirmIn(_CamelModel):
    assignment_id: int = Field(alias="assignmentId")
    condition: str = Field(min_length=1, max_length=64)
    notes: str | None = None


class UserOut(_CamelModel):
    id: int
    username: str
    role: str
    organization_id: int | None = Field(default=None, alias="organizationId")

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            username=user.username,
            role=user.role.value,
            organization_id=user.organization_id,
        )


class ResourceOut(_CamelModel):
    id: int
    name: str
    organization_id: int | None = Field(default=None, alias="organizationId")
    status: str
    quantity_total: int = Field(alias="quantityTotal")
    quantity_available: int = Field(alias="quantityAvailable")
    serial_number: str | None = Field(default=None, alias="serialNumber")

    @classmethod
    def from_resource(cls, r: Resource) -> "ResourceOut":
        return cls(
            id=r.id,
            name=r.name,
            organization_id=r.organization_id,
            status=r.status.value,
            quantity_total=r.quantity_total,
            quantity_available=r.quantity_available,
            serial_number=r.serial_number,
        )


class AssignmentOut(_CamelModel):
    id: int
    resource_id: int = Field(alias="resourceId")
    assignment_type: str = Field(alias="assignmentType")
    related_id: int | None = Field(default=None, alias="relatedId")
    quantity: int
    status: str
    assigned_at: datetime | None = Field(default=None, alias="assignedAt")
    expected_return_at: datetime | None = Field(default=None, alias="expectedReturnAt")
    returned_at: datetime | None = Field(default=None, alias="returnedAt")
    condition: str | None = None
    notes: str | None = None

    @classmethod
    def from_assignment(cls, a: ResourceAssignment) -> "AssignmentOut":
        return cls(
            id=a.id,
            resource_id=a.resource_id,
            assignment_type=a.assignment_type.value,
            related_id=a.related_id,
            quantity=a.quantity,
            status=a.status.value,
            assigned_at=a.assigned_at,
            expected_return_at=a.expected_return_at,
            returned_at=a.returned_at,
            condition=a.condition,
            notes=a.notes,
        )


class CustodyEntryOut(_CamelModel):
    id: int
    user_id: int | None = Field(default=None, alias="userId")
    username: str | None = None
    action: str
    event_type: str | None = Field(default=None, alias="eventType")
    description: str | None = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @classmethod
    def from_entry(cls, e: AuditLog) -> "CustodyEntryOut":
        return cls(
            id=e.id,
            user_id=e.user_id,
            username=e.user.username if e.user else None,
            action=e.action,
            event_type=e.event_type,
            description=e.description,
            metadata=json.loads(e.metadata_json or "{}"),
            created_at=e.created_at,
        )
