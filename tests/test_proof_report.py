"""
Tests: proof report data and .xlsx rendering.

Covers:
  - denormalized report data (names, checklist progress, approvals, validation rows)
  - workbook sheets and key cells
  - download endpoint content type and filename
"""

import io

import pytest
from openpyxl import load_workbook

from phaseflow.core.exceptions import AccessDeniedError
from phaseflow.services import approval_ledger, proof_service
from phaseflow.services.proof_report import build_report_data, render_report_xlsx
from phaseflow.services.proof_service import ProofUpdate


@pytest.fixture()
def approved_proof(project, client_user, admin, actor_for):
    actor = actor_for(client_user)
    proof = proof_service.create(project.id, None, ["GD", "WEB"], actor, checklist_state={
        "colors": {"checked": True, "notes": ""},
        "typos": {"checked": False, "notes": ""},
        "bleed": {"checked": True, "notes": ""},
        "fonts": {"checked": False, "notes": ""},
    })
    proof_service.update_session(proof.id, ProofUpdate(validation_results={
        "7": {
            "GD": {"passed": False, "issues": ["Resolution 150 DPI below minimum 300 DPI"], "warnings": []},
            "WEB": {"passed": True, "issues": [], "warnings": []},
        },
    }), actor)
    proof_service.submit_for_approval(proof.id, actor_for(admin))
    approval_ledger.submit_approval(proof.id, actor, notes="Approved", ip_address="203.0.113.5")
    return proof


class TestReportData:
    def test_denormalized_fields(self, approved_proof, project, client_user, actor_for):
        data = build_report_data(approved_proof.id, actor_for(client_user))

        assert data["project_name"] == project.name
        assert data["client_name"] == client_user.full_name
        assert data["phase_name"] == "Onboarding"
        assert data["status"] == "approved"
        assert data["services"] == ["GD", "WEB"]
        assert data["checklist"]["total"] == 4
        assert data["checklist"]["completed"] == 2
        assert data["checklist"]["progress_pct"] == 50
        assert len(data["approvals"]) == 1
        assert {(r["service_code"], r["passed"]) for r in data["validation"]} == {("GD", False), ("WEB", True)}

    def test_stranger_denied(self, approved_proof, make_user, actor_for):
        with pytest.raises(AccessDeniedError):
            build_report_data(approved_proof.id, actor_for(make_user()))


class TestWorkbook:
    def test_sheets_and_cells(self, approved_proof, client_user, actor_for):
        data = build_report_data(approved_proof.id, actor_for(client_user))
        wb = load_workbook(render_report_xlsx(data))

        assert wb.sheetnames == ["Summary", "Checklist", "Validation", "Approvals"]
        summary = wb["Summary"]
        assert summary["A1"].value == f"Proof Report: {data['project_name']}"
        assert summary["B4"].value == "APPROVED"

        checklist = wb["Checklist"]
        assert checklist.max_row == 5
        assert checklist["A1"].value == "Item"

        validation = wb["Validation"]
        verdicts = {validation.cell(row=r, column=2).value: validation.cell(row=r, column=3).value
                    for r in range(2, validation.max_row + 1)}
        assert verdicts == {"GD": "FAIL", "WEB": "PASS"}

        approvals = wb["Approvals"]
        assert approvals["A2"].value == client_user.full_name
        assert approvals["F2"].value == "203.0.113.5"

    def test_download_endpoint(self, client, approved_proof, client_user, auth_headers):
        res = client.get(f"/api/v1/proofs/{approved_proof.id}/report", headers=auth_headers(client_user))
        assert res.status_code == 200
        assert res.mimetype == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        assert "attachment" in res.headers["Content-Disposition"]
        assert ".xlsx" in res.headers["Content-Disposition"]
        wb = load_workbook(io.BytesIO(res.data))
        assert "Summary" in wb.sheetnames
