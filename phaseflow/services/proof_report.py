"""
Proof report: data assembly and Excel rendering.

``build_report_data`` denormalizes a proof session (project, client and
phase names, checklist progress, approvals, validation summary) into a
plain dict.  ``render_report_xlsx`` turns that dict into a styled workbook
ready for Flask ``send_file``.
"""

import io
import uuid
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from phaseflow.models import db
from phaseflow.models.auth import User
from phaseflow.models.phase import get_phase
from phaseflow.services.access import Actor
from phaseflow.services.lookups import get_project
from phaseflow.services.proof_service import load_session

STATUS_FILLS = {
    "approved": PatternFill(start_color="27AE60", end_color="27AE60", fill_type="solid"),
    "ready": PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid"),
    "created": PatternFill(start_color="7F8C8D", end_color="7F8C8D", fill_type="solid"),
    "rejected": PatternFill(start_color="E74C3C", end_color="E74C3C", fill_type="solid"),
}
WHITE_FONT = Font(color="FFFFFF", bold=True)
HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


def build_report_data(proof_id: int, actor: Actor) -> dict:
    proof = load_session(proof_id, actor)
    project = get_project(proof.project_id)
    client = db.session.get(User, project.client_id) if project.client_id else None
    phase = get_phase(proof.phase_key)

    checklist = proof.checklist_state or {}
    total = len(checklist)
    completed = sum(1 for item in checklist.values() if isinstance(item, dict) and item.get("checked"))

    validation_rows = []
    for file_id, per_service in (proof.validation_results or {}).items():
        for service_code, result in per_service.items():
            validation_rows.append({
                "file_id": file_id,
                "service_code": service_code,
                "passed": bool(result.get("passed")),
                "issues": list(result.get("issues") or []),
                "warnings": list(result.get("warnings") or []),
            })

    return {
        "report_id": uuid.uuid4().hex[:12].upper(),
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "proof_id": proof.id,
        "proof_number": proof.proof_number,
        "status": proof.status,
        "project_id": project.id,
        "project_name": project.name,
        "client_name": client.full_name if client else "",
        "phase_key": proof.phase_key,
        "phase_name": phase.name if phase else proof.phase_key,
        "services": list(proof.services or []),
        "checklist": {
            "total": total,
            "completed": completed,
            "progress_pct": round(completed / total * 100) if total else 0,
            "items": [
                {
                    "item_id": item_id,
                    "checked": bool(item.get("checked")) if isinstance(item, dict) else False,
                    "notes": item.get("notes", "") if isinstance(item, dict) else "",
                    "override": bool(item.get("override")) if isinstance(item, dict) else False,
                }
                for item_id, item in checklist.items()
            ],
        },
        "approvals": [a.to_dict() for a in proof.approvals],
        "validation": validation_rows,
    }


def _header_row(ws, row: int, headers: list[str]) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _widths(ws, widths: list[int]) -> None:
    for col, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def render_report_xlsx(data: dict) -> io.BytesIO:
    """Render report data into an .xlsx workbook (Summary, Checklist, Validation, Approvals)."""
    wb = Workbook()

    # ── Sheet 1: Summary ──────────────────────────────────────────────
    ws = wb.active
    ws.title = "Summary"
    ws.merge_cells("A1:D1")
    ws["A1"] = f"Proof Report: {data['project_name']}"
    ws["A1"].font = Font(size=16, bold=True)
    ws["A2"] = f"Report {data['report_id']} generated {data['generated_at'][:16].replace('T', ' ')} UTC"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    summary = [
        ("Client", data["client_name"]),
        ("Phase", data["phase_name"]),
        ("Proof #", data["proof_number"]),
        ("Services", ", ".join(data["services"])),
        ("Checklist items", data["checklist"]["total"]),
        ("Completed", data["checklist"]["completed"]),
        ("Progress %", data["checklist"]["progress_pct"]),
    ]
    ws["A4"] = "Status"
    ws["A4"].font = Font(size=12, bold=True)
    ws["B4"] = data["status"].upper()
    ws["B4"].fill = STATUS_FILLS.get(data["status"], PatternFill())
    ws["B4"].font = WHITE_FONT
    ws["B4"].alignment = Alignment(horizontal="center")
    for row, (label, value) in enumerate(summary, 5):
        ws.cell(row=row, column=1, value=label).font = Font(bold=True)
        ws.cell(row=row, column=2, value=value)
    _widths(ws, [20, 40, 14, 14])

    # ── Sheet 2: Checklist ────────────────────────────────────────────
    ws2 = wb.create_sheet("Checklist")
    _header_row(ws2, 1, ["Item", "Checked", "Override", "Notes"])
    for row, item in enumerate(data["checklist"]["items"], 2):
        ws2.cell(row=row, column=1, value=item["item_id"]).border = THIN_BORDER
        ws2.cell(row=row, column=2, value="Yes" if item["checked"] else "No").border = THIN_BORDER
        ws2.cell(row=row, column=3, value="Yes" if item["override"] else "").border = THIN_BORDER
        ws2.cell(row=row, column=4, value=item["notes"]).border = THIN_BORDER
    _widths(ws2, [28, 10, 10, 60])

    # ── Sheet 3: Validation ───────────────────────────────────────────
    ws3 = wb.create_sheet("Validation")
    _header_row(ws3, 1, ["File", "Service", "Result", "Issues", "Warnings"])
    for row, result in enumerate(data["validation"], 2):
        ws3.cell(row=row, column=1, value=result["file_id"]).border = THIN_BORDER
        ws3.cell(row=row, column=2, value=result["service_code"]).border = THIN_BORDER
        verdict = ws3.cell(row=row, column=3, value="PASS" if result["passed"] else "FAIL")
        verdict.fill = STATUS_FILLS["approved" if result["passed"] else "rejected"]
        verdict.font = WHITE_FONT
        verdict.border = THIN_BORDER
        ws3.cell(row=row, column=4, value="\n".join(result["issues"])).border = THIN_BORDER
        ws3.cell(row=row, column=5, value="\n".join(result["warnings"])).border = THIN_BORDER
    _widths(ws3, [10, 10, 10, 50, 50])

    # ── Sheet 4: Approvals ────────────────────────────────────────────
    ws4 = wb.create_sheet("Approvals")
    _header_row(ws4, 1, ["Approver", "Email", "Decision", "Notes", "Signed at", "IP address"])
    for row, approval in enumerate(data["approvals"], 2):
        values = [
            approval["approver_name"],
            approval["approver_email"],
            approval["status"],
            approval["notes"],
            approval["created_at"],
            approval["ip_address"],
        ]
        for col, value in enumerate(values, 1):
            ws4.cell(row=row, column=col, value=value).border = THIN_BORDER
    _widths(ws4, [24, 30, 12, 40, 24, 16])

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf
