from __future__ import annotations

from datetime import UTC, datetime
from sqlalchemy import String, DateTime, ForeignKey, Text, Integer, Boolean, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite keeps no offset, so every stored timestamp is UTC. Naive input is taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ResourceStatus(str, enum.Enum):
    available = "available"
    in_use = "in_use"
    reserved = "reserved"
    damaged = "damaged"
    maintenance = "maintenance"


class AssignmentType(str, enum.Enum):
    volunteer = "volunteer"
    event = "event"


class AssignmentStatus(str, enum.Enum):
    IN_USE = "IN_USE"
    PENDING_RETURN = "PENDING_RETURN"
    RETURNED = "RETURNED"


# Source states from which each target state may be reached.
# IN_USE -> RETURNED is the lender confirming without a prior request.
ALLOWED_TRANSITIONS: dict[AssignmentStatus, tuple[AssignmentStatus, ...]] = {
    AssignmentStatus.PENDING_RETURN: (AssignmentStatus.IN_USE,),
    AssignmentStatus.RETURNED: (AssignmentStatus.IN_USE, AssignmentStatus.PENDING_RETURN),
}


def can_transition(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    return current in ALLOWED_TRANSITIONS.get(target, ())


class Resource(Base):
    __tablename__ = "resources"
    __table_args__ = (
        CheckConstraint("quantity_available >= 0", name="ck_resources_available_non_negative"),
        CheckConstraint("quantity_available <= quantity_total", name="ck_resources_available_le_total"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    category: Mapped[str] = mapped_column(String(128), nullable=False, default="Other")
    description: Mapped[str] = mapped_column(Text, nullable=True)
    quantity_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Presence of a serial number makes this a single trackable unit instead of fungible stock
    serial_number: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=True)
    is_returnable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[ResourceStatus] = mapped_column(default=ResourceStatus.available, nullable=False)
    location: Mapped[str] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organization: Mapped["Organization"] = relationship("Organization", back_populates="resources")
    assignments: Mapped[list["ResourceAssignment"]] = relationship(
        "ResourceAssignment",
        back_populates="resource",
    )

    @property
    def is_serialized(self) -> bool:
        return bool(self.serial_number and self.serial_number.strip())


class ResourceAssignment(Base):
    __tablename__ = "resource_assignments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id"), nullable=False, index=True)
    assignment_type: Mapped[AssignmentType] = mapped_column(default=AssignmentType.volunteer, nullable=False)
    # Volunteer (user) id or event id, depending on assignment_type
    related_id: Mapped[int] = mapped_column(Integer, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[AssignmentStatus] = mapped_column(default=AssignmentStatus.IN_USE, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expected_return_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    condition: Mapped[str] = mapped_column(String(64), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=True)
    # Caller-supplied token: a retried distribute returns the first assignment
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    resource: Mapped["Resource"] = relationship("Resource", back_populates="assignments")
