"""
Single source of truth for labels and reference values.
Used by services (custody descriptions), routers and the Excel export.
"""

# --- Custody rows in the generic audit_logs table ---
CUSTODY_ACTION = "custody_chain"
CUSTODY_ENTITY_TYPE = "resource"

# --- Custody event types (CustodyEventType) -> human-readable action label ---
CUSTODY_EVENT_LABELS = {
    "provisioned": "Allocated to Organization",
    "distributed": "Assigned to Volunteer",
    "return_requested": "Return Requested",
    "return_confirmed": "Return Confirmed",
}


def custody_event_label(event_type) -> str:
    """Enum or string -> label stored in audit_logs.description."""
    if event_type is None:
        return "—"
    val = event_type.value if hasattr(event_type, "value") else event_type
    return CUSTODY_EVENT_LABELS.get(val, val or "—")


# --- Resource statuses (ResourceStatus) ---
RESOURCE_STATUS_LABELS = {
    "available": "Available",
    "in_use": "In Use",
    "reserved": "Reserved",
    "damaged": "Damaged",
    "maintenance": "Maintenance",
}

# --- Assignment statuses (AssignmentStatus) ---
ASSIGNMENT_STATUS_LABELS = {
    "IN_USE": "In Use",
    "PENDING_RETURN": "Pending Return",
    "RETURNED": "Returned",
}


def status_label(status) -> str:
    """Resource or assignment status (enum or string) -> display label."""
    if status is None:
        return "—"
    val = status.value if hasattr(status, "value") else status
    return RESOURCE_STATUS_LABELS.get(val) or ASSIGNMENT_STATUS_LABELS.get(val) or val


def transition_label(old, new) -> str:
    """'In Use -> Pending Return' style description kept in the audit metadata."""
    return f"{status_label(old)} -> {status_label(new)}"


# Status a resource is in right after provisioning, as shown in the custody chain
PROVISIONED_STATE_LABEL = "Allocated"

# --- Error codes for JSON responses ---
HTTP_STATUS_TO_CODE = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
    500: "server_error",
}
