"""
Tests: Phase Transition Engine.

Covers:
  - Scenario: ONB with 3 mandatory requirements; 2/3 complete → no advance;
    3/3 with auto-advance → IDEA, index + 1
  - single-step, forward-only advancement and terminal phase handling
  - auto-advance disabled surfaces ready_to_advance instead
  - manual (admin) advance shares the same transition path
  - guarded UPDATE: a stale attempt is a no-op
  - tracking rows, PhaseTransition history and phase_advanced audit event
"""

import pytest
from sqlalchemy import update

from phaseflow.core.exceptions import AccessDeniedError, InvalidStateError
from phaseflow.models import db
from phaseflow.models.audit import AuditLog
from phaseflow.models.phase import PHASES, get_phase
from phaseflow.models.project import PhaseTransition, Project, ProjectPhase
from phaseflow.services.phase_transition import PhaseTransitionEngine, TransitionSettings
from phaseflow.services.requirement_gate import mandatory_requirements, set_requirement_status


@pytest.fixture()
def auto_engine():
    return PhaseTransitionEngine(TransitionSettings(auto_advance=True))


@pytest.fixture()
def manual_engine():
    return PhaseTransitionEngine(TransitionSettings(auto_advance=False))


def _complete_phase(engine, project, actor, phase_key="ONB"):
    result = None
    for requirement in mandatory_requirements(phase_key):
        result = engine.record_requirement(project.id, requirement.id, True, actor)
    return result


def _reload(project_id):
    db.session.expire_all()
    return db.session.get(Project, project_id)


class TestAutoAdvance:
    """record_requirement toggles, re-checks the gate and advances in one unit."""

    def test_partial_gate_does_not_advance(self, requirements, project, client_user, actor_for, auto_engine):
        actor = actor_for(client_user)
        ids = [r.id for r in mandatory_requirements("ONB")]
        for rid in ids[:2]:
            result = auto_engine.record_requirement(project.id, rid, True, actor)
            assert result["auto_advanced"] is False
            assert result["all_mandatory_complete"] is False
            assert result["message"] == "Requirement status updated"
        assert _reload(project.id).current_phase_key == "ONB"

    def test_completing_last_requirement_advances_one_phase(
        self, requirements, project, client_user, actor_for, auto_engine,
    ):
        start_index = project.current_phase_index
        result = _complete_phase(auto_engine, project, actor_for(client_user))

        assert result["success"] is True
        assert result["auto_advanced"] is True
        assert result["ready_to_advance"] is False
        assert result["message"] == "Phase advanced to Ideation!"
        assert result["transition"] == {"advanced": True, "from_phase": "ONB", "to_phase": "IDEA"}

        reloaded = _reload(project.id)
        assert reloaded.current_phase_key == "IDEA"
        assert reloaded.current_phase_index == start_index + 1

    def test_tracking_rows_and_history(self, requirements, project, client_user, actor_for, auto_engine):
        _complete_phase(auto_engine, project, actor_for(client_user))

        rows = {r.phase_key: r for r in ProjectPhase.query.filter_by(project_id=project.id)}
        assert rows["ONB"].status == "completed"
        assert rows["ONB"].completed_at is not None
        assert rows["IDEA"].status == "in_progress"
        assert rows["IDEA"].started_at is not None
        assert rows["DSGN"].status == "not_started"

        transitions = PhaseTransition.query.filter_by(project_id=project.id).all()
        assert len(transitions) == 1
        assert transitions[0].auto_advanced is True
        assert transitions[0].to_index == transitions[0].from_index + 1

        event = AuditLog.query.filter_by(action="phase_advanced").one()
        assert event.description == "Phase automatically advanced from Onboarding to Ideation"
        assert event.event_metadata["from_phase"] == "ONB"
        assert event.event_metadata["to_phase"] == "IDEA"

    def test_never_skips_phases(self, requirements, project, client_user, actor_for, auto_engine):
        # IDEA is already complete-able but only one step is taken per call
        actor = actor_for(client_user)
        for requirement in mandatory_requirements("IDEA"):
            set_requirement_status(project.id, requirement.id, True, actor)
        _complete_phase(auto_engine, project, actor)
        assert _reload(project.id).current_phase_key == "IDEA"

        outcome = auto_engine.maybe_advance(project.id)
        assert outcome.advanced is True
        assert outcome.to_phase == "DSGN"

    def test_maybe_advance_noop_when_gate_incomplete(self, requirements, project, auto_engine):
        outcome = auto_engine.maybe_advance(project.id)
        assert outcome.advanced is False
        assert outcome.from_phase == "ONB"
        assert PhaseTransition.query.count() == 0

    def test_terminal_phase_never_advances(self, requirements, make_project, client_user, auto_engine):
        project = make_project(client_user, phase_key=PHASES[-1].key)
        outcome = auto_engine.maybe_advance(project.id)
        assert outcome.advanced is False
        assert _reload(project.id).current_phase_key == PHASES[-1].key


class TestAutoAdvanceDisabled:
    def test_gate_surfaces_ready_to_advance(self, requirements, project, client_user, actor_for, manual_engine):
        result = _complete_phase(manual_engine, project, actor_for(client_user))

        assert result["all_mandatory_complete"] is True
        assert result["auto_advanced"] is False
        assert result["ready_to_advance"] is True
        assert result["next_phase_name"] == "Ideation"
        assert result["message"] == "All mandatory requirements complete. Phase can advance."
        assert _reload(project.id).current_phase_key == "ONB"

    def test_maybe_advance_respects_setting(self, requirements, project, client_user, actor_for, manual_engine):
        _complete_phase(manual_engine, project, actor_for(client_user))
        assert manual_engine.maybe_advance(project.id).advanced is False


class TestManualAdvance:
    """Admin advance goes through the same transition implementation."""

    def test_admin_advances_complete_gate(
        self, requirements, project, client_user, admin, actor_for, manual_engine,
    ):
        _complete_phase(manual_engine, project, actor_for(client_user))
        outcome = manual_engine.advance(project.id, actor_for(admin), reason="Kickoff done")

        assert outcome.advanced is True
        assert _reload(project.id).current_phase_key == "IDEA"
        transition = PhaseTransition.query.one()
        assert transition.auto_advanced is False
        assert transition.reason == "Kickoff done"
        assert transition.actor_id == admin.id
        event = AuditLog.query.filter_by(action="phase_advanced").one()
        assert event.description == "Phase advanced from Onboarding to Ideation"

    def test_incomplete_gate_is_invalid_state(self, requirements, project, admin, actor_for, manual_engine):
        with pytest.raises(InvalidStateError) as exc_info:
            manual_engine.advance(project.id, actor_for(admin))
        assert exc_info.value.current_state == "ONB"

    def test_terminal_is_invalid_state(self, requirements, make_project, admin, actor_for, manual_engine):
        project = make_project(phase_key="LAUNCH")
        with pytest.raises(InvalidStateError):
            manual_engine.advance(project.id, actor_for(admin))

    def test_client_cannot_advance(self, requirements, project, client_user, actor_for, manual_engine):
        with pytest.raises(AccessDeniedError):
            manual_engine.advance(project.id, actor_for(client_user))


class TestConcurrencyGuard:
    def test_stale_advance_is_noop(self, requirements, project, auto_engine):
        """Another writer advanced first: the guarded UPDATE matches nothing."""
        assert project.current_phase_key == "ONB"
        idea = get_phase("IDEA")
        db.session.execute(
            update(Project)
            .where(Project.id == project.id)
            .values(current_phase_key=idea.key, current_phase_index=idea.order_index)
            .execution_options(synchronize_session=False)
        )
        # In-memory object still believes it is at ONB
        assert project.current_phase_key == "ONB"

        outcome = auto_engine._advance_locked(project, actor_id=None, auto_advanced=True)
        db.session.commit()

        assert outcome.advanced is False
        reloaded = _reload(project.id)
        assert reloaded.current_phase_key == "IDEA"
        assert PhaseTransition.query.count() == 0


class TestPhaseViews:
    def test_phase_status(self, requirements, project, client_user, actor_for, auto_engine):
        status = auto_engine.phase_status(project.id, actor_for(client_user))
        assert status["project"]["current_phase_key"] == "ONB"
        assert [p["phase_key"] for p in status["phases"]] == [p.key for p in PHASES]
        assert status["phases"][0]["status"] == "in_progress"
        assert status["all_mandatory_complete"] is False
        assert status["auto_advance"] is True

    def test_history_requires_access(self, requirements, project, make_user, actor_for, auto_engine):
        with pytest.raises(AccessDeniedError):
            auto_engine.history(project.id, actor_for(make_user()))
