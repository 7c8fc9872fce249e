import json
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from app.constants import custody_event_label, status_label
from app.models import AuditLog, Resource, ResourceAssignment


CUSTODY_EXPORT_HEADERS = [
    "ID", "Date", "Action", "Status change", "Actor", "Assignment ID",
    "Resource status", "Available", "Organization ID", "Condition",
]

OVERDUE_EXPORT_HEADERS = [
    "Assignment ID", "Resource ID", "Resource", "Volunteer ID", "Status",
    "Assigned at", "Expected return",
]


def _header_row(ws, headers: list[str], row: int = 1) -> None:
    for col, h in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=h)
        cell.font = Font(bold=True)
        cell.fill = PatternFill(start_color="DDDDDD", end_color="DDDDDD", fill_type="solid")


def _save(wb: Workbook) -> BytesIO:
    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf


def export_custody_history_xlsx(resource: Resource, entries: list[AuditLog]) -> BytesIO:
    """Chain of custody of one resource, newest first (same order as the history endpoint)."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Custody"

    ws.cell(row=1, column=1, value="Resource")
    ws.cell(row=1, column=2, value=resource.name)
    ws.cell(row=2, column=1, value="Serial number")
    ws.cell(row=2, column=2, value=resource.serial_number or "")

    start_row = 4
    _header_row(ws, CUSTODY_EXPORT_HEADERS, start_row)
    for row, entry in enumerate(entries, start_row + 1):
        meta = json.loads(entry.metadata_json or "{}")
        actor = entry.user.username if entry.user else ""
        ws.cell(row=row, column=1, value=entry.id)
        ws.cell(row=row, column=2, value=entry.created_at.isoformat() if entry.created_at else "")
        ws.cell(row=row, column=3, value=entry.description or custody_event_label(entry.event_type))
        ws.cell(row=row, column=4, value=meta.get("status_change") or "")
        ws.cell(row=row, column=5, value=actor)
        ws.cell(row=row, column=6, value=meta.get("assignment_id") or "")
        ws.cell(row=row, column=7, value=status_label(meta.get("resource_status")))
        ws.cell(row=row, column=8, value=meta.get("quantity_available"))
        ws.cell(row=row, column=9, value=meta.get("organization_id") or "")
        ws.cell(row=row, column=10, value=meta.get("condition") or "")

    for col in range(1, len(CUSTODY_EXPORT_HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 20
    return _save(wb)


def export_overdue_assignments_xlsx(assignments: list[ResourceAssignment]) -> BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = "Overdue"

    _header_row(ws, OVERDUE_EXPORT_HEADERS)
    for row, a in enumerate(assignments, 2):
        ws.cell(row=row, column=1, value=a.id)
        ws.cell(row=row, column=2, value=a.resource_id)
        ws.cell(row=row, column=3, value=a.resource.name if a.resource else "")
        ws.cell(row=row, column=4, value=a.related_id)
        ws.cell(row=row, column=5, value=status_label(a.status))
        ws.cell(row=row, column=6, value=a.assigned_at.isoformat() if a.assigned_at else "")
        ws.cell(row=row, column=7, value=a.expected_return_at.isoformat() if a.expected_return_at else "")

    for col in range(1, len(OVERDUE_EXPORT_HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18
    return _save(wb)
