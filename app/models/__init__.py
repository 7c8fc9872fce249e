from app.models.user import User
from app.models.organization import Organization
from app.models.resource import Resource, ResourceAssignment
from app.models.audit import AuditLog

__all__ = ["User", "Organization", "Resource", "ResourceAssignment", "AuditLog"]
