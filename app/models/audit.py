from __future__ import annotations

from datetime import UTC, datetime
from sqlalchemy import String, DateTime, ForeignKey, Text, Integer, event
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.database import Base
from app.exceptions import AuditImmutableError


class CustodyEventType(str, enum.Enum):
    provisioned = "provisioned"
    distributed = "distributed"
    return_requested = "return_requested"
    return_confirmed = "return_confirmed"


class AuditLog(Base):
    """
    Generic append-only platform journal. Custody rows are the ones with
    entity_type="resource" and action="custody_chain".
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=True)
    # Null for rows written by other platform domains
    event_type: Mapped[str] = mapped_column(String(32), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes, hence the attribute name
    metadata_json: Mapped[str] = mapped_column("metadata", Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC), index=True)

    user: Mapped["User"] = relationship("User", lazy="selectin")


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditImmutableError("Audit entries cannot be modified", audit_log_id=target.id)


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditImmutableError("Audit entries cannot be deleted", audit_log_id=target.id)
