"""Lifecycle state machine tests for every resource family."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from safeflow.checklist import BooleanItem
from safeflow.config import ExtensionPolicy, SafeflowConfig
from safeflow.constants import SYSTEM_ACTOR
from safeflow.contracts import Actor, Schedule, StepStatus, WorkflowStepDef
from safeflow.errors import ErrorKind
from safeflow.lifecycle import (
    LifecycleMachine,
    Phase,
    ResourceFamily,
    build_families,
    schedule_from_duration,
)

T0 = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)
END = T0 + timedelta(hours=10)

OWNER = Actor(id="u1", role="requester")
HOD = Actor(id="h1", role="hod")
SAFETY = Actor(id="s1", role="safety_incharge")
PLANT_HEAD = Actor(id="p1", role="plant_head")

APPROVE_1 = {"step": 1, "decision": "approve"}
APPROVE_2 = {"step": 2, "decision": "approve"}


@pytest.fixture
def families():
    return build_families(SafeflowConfig())


@pytest.fixture
def permit(families):
    return LifecycleMachine(families["permit"])


def _ok(transition):
    assert transition.ok, transition.error
    return transition.record


def _draft(machine, owner="u1", **kwargs):
    return machine.create(owner, Schedule(start=T0, end=END), title="Boiler repair", now=T0, **kwargs)


def _approved(machine):
    record = _ok(machine.submit(_draft(machine), OWNER, now=T0))
    record = _ok(machine.decide(record, HOD, APPROVE_1, now=T0))
    return _ok(machine.decide(record, SAFETY, APPROVE_2, now=T0))


def _active(machine):
    return _ok(machine.activate(_approved(machine), OWNER, now=T0))


# ----------------------------------------------------------------------
# creation and approval


def test_create_builds_draft_with_flows(permit):
    record = _draft(permit)
    assert record.state == "draft"
    assert [s.step_def.role for s in record.approval_steps] == ["hod", "safety_incharge"]
    assert all(s.is_pending and s.assigned_at is None for s in record.approval_steps)
    assert record.closure_steps is None
    assert record.history[0].action == "create"


def test_high_risk_permit_uses_extended_flow(permit):
    record = _draft(permit, high_risk=True)
    assert [s.step_def.role for s in record.approval_steps] == ["plant_head", "hod", "safety_incharge"]


def test_work_types_attach_checklist_templates(permit):
    record = _draft(permit, work_types=["hot_work", "electrical"])
    labels = [item.label for item in record.checklist]
    assert "Fire watch posted" in labels
    assert "LOTO procedures followed" in labels


def test_flow_without_required_step_is_refused(permit):
    with pytest.raises(ValidationError):
        _draft(permit, approval_flow=[WorkflowStepDef(order=1, role="hod", required=False)])

    record = _draft(
        permit,
        approval_flow=[
            WorkflowStepDef(order=1, role="hod"),
            WorkflowStepDef(order=2, role="trainee", required=False),
        ],
    )
    record = _ok(permit.submit(record, OWNER, now=T0))
    assert record.state == "submitted"
    record = _ok(permit.decide(record, HOD, {"step": 1, "decision": "reject"}, now=T0))
    assert record.state == "rejected"


def test_only_owner_can_submit(permit):
    record = _draft(permit)
    result = permit.submit(record, Actor(id="u2", role="requester"), now=T0)
    assert result.error.kind == ErrorKind.UNAUTHORIZED
    assert result.record.state == "draft"


def test_submit_opens_first_step(permit):
    record = _ok(permit.submit(_draft(permit), OWNER, now=T0))
    assert record.state == "submitted"
    assert record.approval_steps[0].assigned_at == T0

    again = permit.submit(record, OWNER, now=T0)
    assert again.error.kind == ErrorKind.INVALID_TRANSITION


def test_sequential_approval_scenario(permit):
    record = _ok(permit.submit(_draft(permit), OWNER, now=T0))

    early = permit.decide(record, SAFETY, APPROVE_2, now=T0)
    assert early.error.kind == ErrorKind.NOT_ACTIONABLE

    wrong_role = permit.decide(record, SAFETY, APPROVE_1, now=T0)
    assert wrong_role.error.kind == ErrorKind.UNAUTHORIZED

    record = _ok(permit.decide(record, HOD, APPROVE_1, now=T0))
    assert record.state == "submitted"

    record = _ok(permit.decide(record, SAFETY, {"step": 2, "decision": "reject", "comment": "No JSA"}, now=T0))
    assert record.state == "rejected"
    assert [s.status for s in record.approval_steps] == [StepStatus.APPROVED, StepStatus.REJECTED]
    assert record.history[-1].detail == "step 2 rejected: No JSA"

    after = permit.activate(record, OWNER, now=T0)
    assert after.error.kind == ErrorKind.ALREADY_TERMINAL


def test_full_approval_reaches_approved(permit):
    record = _approved(permit)
    assert record.state == "approved"
    assert record.approval_steps[1].actor_id == "s1"


def test_decide_validates_payload(permit):
    record = _ok(permit.submit(_draft(permit), OWNER, now=T0))
    result = permit.decide(record, HOD, {"step": 1, "decision": "maybe"}, now=T0)
    assert result.error.kind == ErrorKind.INVALID_PAYLOAD
    assert "decision" in result.error.message


def test_decide_on_draft_is_invalid(permit):
    result = permit.decide(_draft(permit), HOD, APPROVE_1, now=T0)
    assert result.error.kind == ErrorKind.INVALID_TRANSITION


# ----------------------------------------------------------------------
# activation and expiry


def test_activate_sets_expiry(permit):
    record = _active(permit)
    assert record.state == "active"
    assert record.expires_at == END
    assert record.activated_by == "u1"


def test_activate_twice_does_not_mutate(permit):
    record = _active(permit)
    snapshot = record.model_dump()
    result = permit.activate(record, OWNER, now=T0 + timedelta(hours=1))
    assert result.error.kind == ErrorKind.INVALID_TRANSITION
    assert record.model_dump() == snapshot


def test_activate_after_window_is_invalid(permit):
    result = permit.activate(_approved(permit), OWNER, now=END + timedelta(minutes=1))
    assert result.error.kind == ErrorKind.INVALID_TRANSITION


def test_expiry_is_derived_on_read(permit):
    record = _active(permit)
    assert permit.effective_state(record, END) == "active"
    assert permit.effective_state(record, END + timedelta(seconds=1)) == "expired"
    assert record.state == "active"

    assert permit.expire(record, now=END) is None
    expired = _ok(permit.expire(record, now=END + timedelta(hours=1)))
    assert expired.state == "expired"
    assert expired.history[-1].actor_id == SYSTEM_ACTOR


# ----------------------------------------------------------------------
# stop work


def test_stop_work_is_terminal_for_further_actions(permit):
    record = _active(permit)
    stopped = _ok(
        permit.stop_work(
            record,
            HOD,
            {"reason": "Gas leak", "immediate_actions": "Evacuated", "resume_conditions": "Gas free"},
            now=T0 + timedelta(hours=1),
        )
    )
    assert stopped.state == "stopped"
    assert stopped.stop_record.stopped_by == "h1"
    assert stopped.stop_record.resume_conditions == "Gas free"

    later = T0 + timedelta(hours=2)
    assert permit.request_extension(stopped, OWNER, {"hours": 1, "reason": "x"}, now=later).error.kind == ErrorKind.INVALID_TRANSITION
    assert permit.submit_closure(stopped, OWNER, {}, now=later).error.kind == ErrorKind.INVALID_TRANSITION
    assert permit.activate(stopped, OWNER, now=later).error.kind == ErrorKind.INVALID_TRANSITION
    assert permit.stop_work(stopped, HOD, {"reason": "again"}, now=later).error.kind == ErrorKind.INVALID_TRANSITION


def test_stop_work_requires_capability(permit):
    record = _active(permit)
    denied = permit.stop_work(record, Actor(id="u1", role="requester"), {"reason": "x"}, now=T0)
    assert denied.error.kind == ErrorKind.UNAUTHORIZED
    assert _ok(permit.stop_work(record, PLANT_HEAD, {"reason": "x"}, now=T0)).state == "stopped"


def test_stop_work_needs_a_reason(permit):
    result = permit.stop_work(_active(permit), HOD, {"reason": ""}, now=T0)
    assert result.error.kind == ErrorKind.INVALID_PAYLOAD


def test_stop_work_only_while_active(permit):
    record = _active(permit)
    result = permit.stop_work(record, HOD, {"reason": "late"}, now=END + timedelta(hours=1))
    assert result.error.kind == ErrorKind.INVALID_TRANSITION
    assert permit.stop_work(_approved(permit), HOD, {"reason": "x"}, now=T0).error.kind == ErrorKind.INVALID_TRANSITION


# ----------------------------------------------------------------------
# extensions


def test_extension_approved_before_expiry_keeps_record_active(permit):
    record = _active(permit)
    requested = _ok(
        permit.request_extension(record, OWNER, {"hours": 4, "reason": "Weather delay"}, now=END - timedelta(hours=1))
    )
    assert requested.extensions[0].is_pending
    assert requested.expires_at == END

    approved = _ok(permit.approve_extension(requested, HOD, {"index": 0}, now=END - timedelta(hours=1)))
    assert approved.expires_at == END + timedelta(hours=4)
    assert permit.effective_state(approved, END + timedelta(hours=2)) == "active"
    assert permit.effective_state(approved, END + timedelta(hours=5)) == "expired"


def test_extension_approval_revives_expired_record(permit):
    record = _active(permit)
    late = END + timedelta(hours=1)
    requested = _ok(permit.request_extension(record, OWNER, {"hours": 4, "reason": "Delay"}, now=late))
    assert requested.state == "expired"

    approved = _ok(permit.approve_extension(requested, SAFETY, {"index": 0}, now=late))
    assert approved.state == "active"
    assert approved.expires_at == END + timedelta(hours=4)


def test_extension_decisions_are_checked(permit):
    record = _ok(permit.request_extension(_active(permit), OWNER, {"hours": 2, "reason": "Delay"}, now=T0))

    missing = permit.approve_extension(record, HOD, {"index": 3}, now=T0)
    assert missing.error.kind == ErrorKind.NOT_ACTIONABLE

    denied = permit.approve_extension(record, PLANT_HEAD, {"index": 0}, now=T0)
    assert denied.error.kind == ErrorKind.UNAUTHORIZED

    rejected = _ok(permit.approve_extension(record, HOD, {"index": 0, "decision": "reject"}, now=T0))
    assert rejected.extensions[0].rejected_by == "h1"
    assert rejected.expires_at == END

    again = permit.approve_extension(rejected, HOD, {"index": 0}, now=T0)
    assert again.error.kind == ErrorKind.NOT_ACTIONABLE


def test_only_owner_requests_extensions(permit):
    result = permit.request_extension(_active(permit), HOD, {"hours": 2, "reason": "x"}, now=T0)
    assert result.error.kind == ErrorKind.UNAUTHORIZED


def test_auto_policy_applies_extension_immediately():
    config = SafeflowConfig()
    config.families["permit"].extension_policy = ExtensionPolicy.AUTO
    machine = LifecycleMachine(ResourceFamily("permit", config.families["permit"]))

    record = _ok(machine.request_extension(_active(machine), OWNER, {"hours": 3, "reason": "Delay"}, now=T0))
    assert record.extensions[0].approved_by == SYSTEM_ACTOR
    assert record.expires_at == END + timedelta(hours=3)

    result = machine.approve_extension(record, HOD, {"index": 0}, now=T0)
    assert result.error.kind == ErrorKind.INVALID_TRANSITION


# ----------------------------------------------------------------------
# closure


def _checked(*labels):
    return [{"kind": "boolean", "label": label, "value": True} for label in labels]


def test_closure_approval_closes_record(permit):
    record = _active(permit)
    pending = _ok(
        permit.submit_closure(
            record,
            OWNER,
            {"evidence": "photo.jpg", "comments": "Work done", "checklist": _checked("Area cleaned")},
            now=T0 + timedelta(hours=5),
        )
    )
    assert pending.state == "pending_closure"
    assert pending.closure_record.submitted_by == "u1"
    assert pending.closure_steps[0].assigned_at == T0 + timedelta(hours=5)

    closed = _ok(permit.decide_closure(pending, SAFETY, APPROVE_1, now=T0 + timedelta(hours=6)))
    assert closed.state == "closed"
    assert closed.closure_record.approved_by == "s1"

    after = permit.request_extension(closed, OWNER, {"hours": 1, "reason": "x"}, now=T0)
    assert after.error.kind == ErrorKind.ALREADY_TERMINAL


def test_incomplete_checklist_blocks_closure(permit):
    payload = {"checklist": [{"kind": "boolean", "label": "Area cleaned", "value": False}]}
    result = permit.submit_closure(_active(permit), OWNER, payload, now=T0)
    assert result.error.kind == ErrorKind.INVALID_TRANSITION
    assert "Area cleaned" in result.error.message


def test_closure_submitters(permit):
    record = _active(permit)
    stranger = permit.submit_closure(record, Actor(id="u9", role="requester"), {}, now=T0)
    assert stranger.error.kind == ErrorKind.UNAUTHORIZED
    assert _ok(permit.submit_closure(record, HOD, {}, now=T0)).closure_record.submitted_by == "h1"


def test_closure_rejection_returns_to_operation(permit):
    record = _active(permit)
    pending = _ok(permit.submit_closure(record, OWNER, {}, now=T0 + timedelta(hours=1)))

    reopened = _ok(
        permit.decide_closure(pending, HOD, {"step": 1, "decision": "reject", "comment": "Debris left"}, now=T0 + timedelta(hours=2))
    )
    assert reopened.state == "active"
    assert reopened.closure_record is None
    assert reopened.history[-1].detail == "closure step 1 rejected: Debris left"

    late = _ok(permit.decide_closure(pending, HOD, {"step": 1, "decision": "reject"}, now=END + timedelta(hours=1)))
    assert late.state == "expired"

    resubmitted = _ok(permit.submit_closure(reopened, OWNER, {}, now=T0 + timedelta(hours=3)))
    assert resubmitted.closure_steps[0].is_pending


def test_history_records_every_action(permit):
    record = _active(permit)
    assert [h.action for h in record.history] == ["create", "submit", "decide", "decide", "activate"]
    assert record.history[-1].from_state == "approved"
    assert record.history[-1].to_state == "active"


# ----------------------------------------------------------------------
# other families


def test_incident_vocabulary_and_alternates(families):
    incident = LifecycleMachine(families["incident"])
    schedule = schedule_from_duration(T0, 72)
    assert schedule.end == T0 + timedelta(hours=72)

    record = incident.create("u1", schedule, title="Forklift near miss", now=T0)
    assert record.state == "reported"
    record = _ok(incident.submit(record, OWNER, now=T0))
    assert record.state == "under_review"
    record = _ok(incident.decide(record, Actor(id="a1", role="admin"), APPROVE_1, now=T0))
    assert record.state == "assigned"
    record = _ok(incident.activate(record, OWNER, now=T0))
    assert record.state == "investigating"
    assert incident.effective_state(record, T0 + timedelta(hours=73)) == "overdue"

    stop = incident.stop_work(record, HOD, {"reason": "x"}, now=T0)
    assert stop.error.kind == ErrorKind.INVALID_TRANSITION

    pending = _ok(incident.submit_closure(record, Actor(id="i1", role="investigation_team"), {}, now=T0))
    closed = _ok(incident.decide_closure(pending, Actor(id="i1", role="investigation_team"), APPROVE_1, now=T0))
    assert closed.state == "closed"


def test_rejected_incident_is_dismissed(families):
    incident = LifecycleMachine(families["incident"])
    record = incident.create("u1", schedule_from_duration(T0, 72), now=T0)
    record = _ok(incident.submit(record, OWNER, now=T0))
    record = _ok(incident.decide(record, HOD, {"step": 1, "decision": "reject"}, now=T0))
    assert record.state == "dismissed"
    assert families["incident"].is_terminal(record.state)


def test_hazard_study_states(families):
    study = LifecycleMachine(families["hazard_study"])
    record = _ok(study.submit(study.create("u1", Schedule(start=T0, end=END), now=T0), OWNER, now=T0))
    assert record.state == "under_review"
    assert not families["hazard_study"].supports(Phase.STOPPED)
    with pytest.raises(ValueError):
        families["hazard_study"].state_for(Phase.STOPPED)


def test_unlisted_family_uses_phase_names():
    family = ResourceFamily("audit", SafeflowConfig().families["permit"])
    assert family.state_for(Phase.PENDING_CLOSURE) == "pending_closure"
    assert family.phase_of("closed") == Phase.CLOSED
