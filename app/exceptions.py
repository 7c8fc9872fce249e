"""
Typed errors of the allocation / custody engine.

Each error carries a machine-readable ``code`` and the HTTP status the API layer
answers with, so routers never parse messages:

    CustodyError
    +-- NotFound                  404  not_found
    +-- Unauthorized              403  forbidden
    +-- ResourceUnavailable       400  resource_unavailable
    |   +-- InsufficientStock     400  insufficient_stock
    +-- InvalidStateTransition    400  invalid_state_transition
    +-- IdempotencyConflict       409  idempotency_conflict
    +-- LedgerCorruption          500  ledger_corruption
    +-- AuditImmutableError       500  audit_immutable
"""


class CustodyError(Exception):
    code = "custody_error"
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFound(CustodyError):
    code = "not_found"
    status_code = 404


class Unauthorized(CustodyError):
    code = "forbidden"
    status_code = 403


class ResourceUnavailable(CustodyError):
    code = "resource_unavailable"
    status_code = 400


class InsufficientStock(ResourceUnavailable):
    """Conditional decrement affected no row: another caller took the last unit."""
    code = "insufficient_stock"


class InvalidStateTransition(CustodyError):
    code = "invalid_state_transition"
    status_code = 400


class IdempotencyConflict(CustodyError):
    code = "idempotency_conflict"
    status_code = 409


class LedgerCorruption(CustodyError):
    """quantity_available would exceed quantity_total: an upstream bug, never clamped."""
    code = "ledger_corruption"
    status_code = 500


class AuditImmutableError(CustodyError):
    code = "audit_immutable"
    status_code = 500
