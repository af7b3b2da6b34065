"""
Tests: Requirement Gate.

Covers:
  - all_mandatory_complete with missing status rows, partial and full completion
  - phases with no mandatory requirements are trivially complete
  - idempotent toggling (same persisted state, same gate, one audit event)
  - gate monotonicity until an explicit un-toggle
  - access rule: only admins and the owning client may toggle
  - unknown project / requirement
  - audit sink failure never fails the toggle
"""

import pytest

from phaseflow.core.exceptions import AccessDeniedError, NotFoundError
from phaseflow.models import db
from phaseflow.models.audit import AuditLog
from phaseflow.models.phase import ProjectRequirementStatus, Requirement
from phaseflow.services.requirement_gate import (
    all_mandatory_complete,
    mandatory_requirements,
    project_requirements,
    set_requirement_status,
)


def _onb_mandatory():
    return [r.id for r in mandatory_requirements("ONB")]


class TestGateEvaluation:
    """all_mandatory_complete is a per-requirement reduction."""

    def test_no_status_rows_means_incomplete(self, requirements, project):
        assert all_mandatory_complete(project.id, "ONB") is False

    def test_partial_completion_is_incomplete(self, requirements, project, client_user, actor_for):
        ids = _onb_mandatory()
        assert len(ids) == 3
        for rid in ids[:2]:
            _, gate = set_requirement_status(project.id, rid, True, actor_for(client_user))
            assert gate is False
        assert all_mandatory_complete(project.id, "ONB") is False

    def test_full_completion_is_complete(self, requirements, project, client_user, actor_for):
        gate = None
        for rid in _onb_mandatory():
            _, gate = set_requirement_status(project.id, rid, True, actor_for(client_user))
        assert gate is True
        assert all_mandatory_complete(project.id, "ONB") is True

    def test_optional_requirements_do_not_block(self, requirements, project, client_user, actor_for):
        optional = Requirement.query.filter_by(phase_key="IDEA", is_mandatory=False).first()
        set_requirement_status(project.id, optional.id, True, actor_for(client_user))
        assert all_mandatory_complete(project.id, "IDEA") is False

    def test_phase_without_mandatory_requirements_is_complete(self, requirements, project):
        # DSGN only has optional requirements in the default catalog
        assert mandatory_requirements("DSGN") == []
        assert all_mandatory_complete(project.id, "DSGN") is True

    def test_other_projects_rows_are_ignored(self, requirements, make_project, make_user, actor_for):
        owner_a, owner_b = make_user(), make_user()
        project_a, project_b = make_project(owner_a), make_project(owner_b)
        for rid in _onb_mandatory():
            set_requirement_status(project_a.id, rid, True, actor_for(owner_a))
        assert all_mandatory_complete(project_a.id, "ONB") is True
        assert all_mandatory_complete(project_b.id, "ONB") is False


class TestToggle:
    """set_requirement_status persistence and audit behaviour."""

    def test_completing_stamps_actor_and_time(self, requirements, project, client_user, actor_for):
        rid = _onb_mandatory()[0]
        status, _ = set_requirement_status(project.id, rid, True, actor_for(client_user))
        assert status.completed is True
        assert status.completed_by == client_user.id
        assert status.completed_at is not None

    def test_uncompleting_clears_stamp(self, requirements, project, client_user, actor_for):
        rid = _onb_mandatory()[0]
        set_requirement_status(project.id, rid, True, actor_for(client_user))
        status, _ = set_requirement_status(project.id, rid, False, actor_for(client_user))
        assert status.completed is False
        assert status.completed_at is None
        assert status.completed_by is None

    def test_toggle_is_idempotent(self, requirements, project, client_user, actor_for):
        rid = _onb_mandatory()[0]
        actor = actor_for(client_user)
        first, gate1 = set_requirement_status(project.id, rid, True, actor)
        stamp = first.completed_at
        second, gate2 = set_requirement_status(project.id, rid, True, actor)

        assert gate1 == gate2
        assert second.completed is True
        assert second.completed_at == stamp
        assert ProjectRequirementStatus.query.filter_by(
            project_id=project.id, requirement_id=rid,
        ).count() == 1
        assert AuditLog.query.filter_by(action="requirement_completed").count() == 1

    def test_gate_stays_true_until_untoggled(self, requirements, project, client_user, actor_for):
        actor = actor_for(client_user)
        ids = _onb_mandatory()
        for rid in ids:
            set_requirement_status(project.id, rid, True, actor)
        # Re-applying completions and touching optional rows keeps the gate open
        set_requirement_status(project.id, ids[0], True, actor)
        optional = Requirement(phase_key="ONB", requirement_type="review", text="Optional", is_mandatory=False)
        db.session.add(optional)
        db.session.commit()
        _, gate = set_requirement_status(project.id, optional.id, True, actor)
        assert gate is True

        _, gate = set_requirement_status(project.id, ids[1], False, actor)
        assert gate is False

    def test_audit_event_descriptions(self, requirements, project, client_user, actor_for):
        requirement = Requirement.query.filter_by(phase_key="ONB", text="Complete intake form").one()
        actor = actor_for(client_user)
        set_requirement_status(project.id, requirement.id, True, actor)
        set_requirement_status(project.id, requirement.id, False, actor)

        events = AuditLog.query.filter_by(project_id=project.id).order_by(AuditLog.id).all()
        assert [e.action for e in events] == ["requirement_completed", "requirement_uncompleted"]
        assert events[0].description == "Completed: Complete intake form"
        assert events[1].description == "Marked incomplete: Complete intake form"
        assert events[0].event_metadata["requirement_id"] == requirement.id

    def test_audit_failure_does_not_fail_toggle(self, requirements, project, client_user, actor_for, monkeypatch):
        def _boom(**kwargs):
            raise RuntimeError("audit sink down")

        monkeypatch.setattr("phaseflow.services.audit_trail.write_audit", _boom)
        rid = _onb_mandatory()[0]
        status, _ = set_requirement_status(project.id, rid, True, actor_for(client_user))

        db.session.expire_all()
        row = db.session.get(ProjectRequirementStatus, status.id)
        assert row.completed is True
        assert AuditLog.query.count() == 0


class TestAccess:
    """Authorization and lookups abort before any write."""

    def test_other_client_is_denied(self, requirements, project, make_user, actor_for):
        stranger = make_user()
        with pytest.raises(AccessDeniedError):
            set_requirement_status(project.id, _onb_mandatory()[0], True, actor_for(stranger))
        assert ProjectRequirementStatus.query.count() == 0

    def test_admin_may_toggle_any_project(self, requirements, project, admin, actor_for):
        status, _ = set_requirement_status(project.id, _onb_mandatory()[0], True, actor_for(admin))
        assert status.completed_by == admin.id

    def test_unknown_project(self, requirements, admin, actor_for):
        with pytest.raises(NotFoundError):
            set_requirement_status(9999, _onb_mandatory()[0], True, actor_for(admin))

    def test_unknown_requirement(self, requirements, project, admin, actor_for):
        with pytest.raises(NotFoundError):
            set_requirement_status(project.id, 9999, True, actor_for(admin))


class TestProjectRequirementsView:
    def test_current_phase_view(self, requirements, project, client_user, actor_for):
        rid = _onb_mandatory()[0]
        set_requirement_status(project.id, rid, True, actor_for(client_user))

        view = project_requirements(project.id, actor_for(client_user))
        assert view["phase_key"] == "ONB"
        assert view["mandatory_total"] == 3
        assert view["mandatory_completed"] == 1
        assert view["all_mandatory_complete"] is False
        completed = [r for r in view["requirements"] if r["completed"]]
        assert [r["id"] for r in completed] == [rid]
