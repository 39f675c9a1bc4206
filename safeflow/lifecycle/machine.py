"""Resource lifecycle state machine.

Each action validates the current state, the payload and the actor, then
returns a ``Transition`` carrying either an updated copy of the record or a
typed ``ActionError``. The input record is never mutated. ``Expired`` is
derived from ``expires_at`` at read time and materialised on the next write.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Collection, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ..checklist import ChecklistItem, from_template, unanswered
from ..constants import SYSTEM_ACTOR
from ..contracts import (
    Actor,
    Capability,
    ClosureEntry,
    Decision,
    ExtensionEntry,
    HistoryEntry,
    LifecycleRecord,
    Schedule,
    StopEntry,
    WorkflowDefinition,
    WorkflowOutcome,
    WorkflowStepDef,
    new_workflow_instance,
)
from ..config import ExtensionPolicy
from ..deadlines import compute_deadline, to_utc, utcnow
from ..errors import ActionError, ErrorKind
from ..workflow import record_decision, start_workflow
from .families import OPERATIONAL_PHASES, TERMINAL_PHASES, Phase, ResourceFamily
from .invariants import check_invariants, check_monotonic

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

_PAST = {Decision.APPROVE: "approved", Decision.REJECT: "rejected"}


class DecisionPayload(BaseModel):
    step: int
    decision: Decision
    comment: Optional[str] = None


class StopPayload(BaseModel):
    reason: str = Field(min_length=1)
    detail: str = ""
    immediate_actions: str = ""
    resume_conditions: Optional[str] = None


class ExtensionPayload(BaseModel):
    hours: float = Field(gt=0)
    reason: str = Field(min_length=1)


class ExtensionDecisionPayload(BaseModel):
    index: int = Field(ge=0)
    decision: Decision = Decision.APPROVE
    comment: Optional[str] = None


class ClosurePayload(BaseModel):
    evidence: str = ""
    comments: Optional[str] = None
    checklist: List[ChecklistItem] = Field(default_factory=list)


class Transition(BaseModel):
    """Result of applying one action to a record."""

    record: LifecycleRecord
    error: Optional[ActionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_payload(model: Type[PayloadT], payload: Any) -> Tuple[Optional[PayloadT], Optional[ActionError]]:
    """Validate an action payload, turning validation errors into a typed error."""
    if isinstance(payload, model):
        return payload, None
    try:
        return model.model_validate(payload or {}), None
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in exc.errors()
        )
        return None, ActionError(kind=ErrorKind.INVALID_PAYLOAD, message=problems)


def schedule_from_duration(anchor: datetime, hours: float) -> Schedule:
    """Schedule opening at ``anchor`` and lasting ``hours`` of elapsed time."""
    return Schedule(start=to_utc(anchor), end=compute_deadline(anchor, hours))


class LifecycleMachine:
    """Applies lifecycle actions for one resource family."""

    def __init__(self, family: ResourceFamily) -> None:
        self.family = family

    # ------------------------------------------------------------------
    # Creation and read-side helpers
    def create(
        self,
        owner_id: str,
        schedule: Schedule,
        title: str = "",
        high_risk: bool = False,
        approval_flow: Optional[List[WorkflowStepDef]] = None,
        closure_flow: Optional[List[WorkflowStepDef]] = None,
        work_types: Optional[List[str]] = None,
        checklist: Optional[List[ChecklistItem]] = None,
        now: Optional[datetime] = None,
    ) -> LifecycleRecord:
        """Build a new draft record with its workflow definitions attached."""
        now = to_utc(now or utcnow())
        items = list(checklist or [])
        if work_types:
            items.extend(from_template(self.family.checklist_template(work_types)))
        record = LifecycleRecord(
            family=self.family.name,
            owner_id=owner_id,
            title=title,
            high_risk=high_risk,
            state=self.family.state_for(Phase.DRAFT),
            approval_steps=new_workflow_instance(
                approval_flow or self.family.approval_flow(high_risk)
            ),
            closure_flow=WorkflowDefinition(
                steps=closure_flow or self.family.closure_flow()
            ).steps,
            schedule=schedule,
            checklist=items,
            created_at=now,
            updated_at=now,
        )
        record.history.append(
            HistoryEntry(at=now, action="create", actor_id=owner_id, to_state=record.state)
        )
        check_invariants(record, self.family)
        return record

    def is_lapsed(self, record: LifecycleRecord, now: datetime) -> bool:
        return (
            self.family.phase_of(record.state) == Phase.ACTIVE
            and record.expires_at is not None
            and to_utc(now) > record.expires_at
        )

    def effective_phase(self, record: LifecycleRecord, now: datetime) -> Phase:
        if self.is_lapsed(record, now):
            return Phase.EXPIRED
        phase = self.family.phase_of(record.state)
        if phase is None:
            raise ValueError(f"{record.state!r} is not a {self.family.name} state")
        return phase

    def effective_state(self, record: LifecycleRecord, now: datetime) -> str:
        """The state a reader observes at ``now``."""
        return self.family.state_for(self.effective_phase(record, now))

    # ------------------------------------------------------------------
    # Internal helpers
    def _guard(
        self,
        record: LifecycleRecord,
        now: datetime,
        allowed: Collection[Phase],
        action: str,
    ) -> Optional[ActionError]:
        phase = self.effective_phase(record, now)
        state = self.family.state_for(phase)
        if phase in TERMINAL_PHASES:
            return ActionError.already_terminal(f"Record is {state}; no further actions are possible")
        if phase not in allowed:
            return ActionError.invalid_transition(f"Cannot {action} a record that is {state}")
        return None

    def _working_copy(self, record: LifecycleRecord, now: datetime) -> LifecycleRecord:
        updated = record.model_copy(deep=True)
        updated.state = self.effective_state(record, now)
        return updated

    def _operational_state(self, record: LifecycleRecord, now: datetime) -> str:
        if record.expires_at is not None and now > record.expires_at:
            return self.family.state_for(Phase.EXPIRED)
        return self.family.state_for(Phase.ACTIVE)

    def _fail(self, record: LifecycleRecord, action: str, error: ActionError) -> Transition:
        logger.debug(f"{action} rejected for record {record.id}: {error}")
        return Transition(record=record, error=error)

    def _commit(
        self,
        before: LifecycleRecord,
        after: LifecycleRecord,
        action: str,
        actor: Actor,
        now: datetime,
        detail: Optional[str] = None,
        from_state: Optional[str] = None,
    ) -> Transition:
        after.history.append(
            HistoryEntry(
                at=now,
                action=action,
                actor_id=actor.id,
                actor_role=actor.role,
                from_state=from_state or self.effective_state(before, now),
                to_state=after.state,
                detail=detail,
            )
        )
        after.updated_at = now
        check_monotonic(before.approval_steps, after.approval_steps, before.id)
        check_invariants(after, self.family)
        return Transition(record=after)

    # ------------------------------------------------------------------
    # Forward transitions
    def submit(self, record: LifecycleRecord, actor: Actor, now: Optional[datetime] = None) -> Transition:
        now = to_utc(now or utcnow())
        error = self._guard(record, now, {Phase.DRAFT}, "submit")
        if error:
            return self._fail(record, "submit", error)
        if actor.id != record.owner_id:
            return self._fail(record, "submit", ActionError.unauthorized("Only the owner can submit"))

        updated = self._working_copy(record, now)
        updated.approval_steps = start_workflow(updated.approval_steps, now)
        updated.state = self.family.state_for(Phase.SUBMITTED)
        return self._commit(record, updated, "submit", actor, now)

    def decide(
        self,
        record: LifecycleRecord,
        actor: Actor,
        payload: Any,
        now: Optional[datetime] = None,
    ) -> Transition:
        """Record an approval-workflow decision and advance the record."""
        now = to_utc(now or utcnow())
        error = self._guard(record, now, {Phase.SUBMITTED}, "decide on")
        if error:
            return self._fail(record, "decide", error)
        data, error = parse_payload(DecisionPayload, payload)
        if error:
            return self._fail(record, "decide", error)

        result = record_decision(
            record.approval_steps, data.step, actor, data.decision, data.comment, now
        )
        if result.error:
            return self._fail(record, "decide", result.error)

        updated = self._working_copy(record, now)
        updated.approval_steps = result.steps
        if result.outcome == WorkflowOutcome.APPROVED:
            updated.state = self.family.state_for(Phase.APPROVED)
        elif result.outcome == WorkflowOutcome.REJECTED:
            updated.state = self.family.state_for(Phase.REJECTED)
        detail = f"step {data.step} {_PAST[data.decision]}"
        if data.comment:
            detail = f"{detail}: {data.comment}"
        return self._commit(record, updated, "decide", actor, now, detail)

    def activate(self, record: LifecycleRecord, actor: Actor, now: Optional[datetime] = None) -> Transition:
        now = to_utc(now or utcnow())
        error = self._guard(record, now, {Phase.APPROVED}, "activate")
        if error:
            return self._fail(record, "activate", error)
        if actor.id != record.owner_id:
            return self._fail(record, "activate", ActionError.unauthorized("Only the owner can activate"))
        if now > record.schedule.end:
            return self._fail(
                record,
                "activate",
                ActionError.invalid_transition("The scheduled window has already ended"),
            )

        updated = self._working_copy(record, now)
        updated.state = self.family.state_for(Phase.ACTIVE)
        updated.activated_by = actor.id
        updated.activated_at = now
        updated.expires_at = updated.expected_expiry()
        return self._commit(record, updated, "activate", actor, now)

    def expire(self, record: LifecycleRecord, now: Optional[datetime] = None) -> Optional[Transition]:
        """Persistable ``Active -> Expired`` transition, or ``None`` if not lapsed."""
        now = to_utc(now or utcnow())
        if not self.is_lapsed(record, now):
            return None
        updated = self._working_copy(record, now)
        system = Actor(id=SYSTEM_ACTOR, role=SYSTEM_ACTOR)
        return self._commit(record, updated, "expire", system, now, from_state=record.state)

    # ------------------------------------------------------------------
    # Exceptional transitions
    def stop_work(
        self,
        record: LifecycleRecord,
        actor: Actor,
        payload: Any,
        now: Optional[datetime] = None,
    ) -> Transition:
        """Emergency interrupt of active work."""
        now = to_utc(now or utcnow())
        if not self.family.supports(Phase.STOPPED):
            return self._fail(
                record,
                "stop_work",
                ActionError.invalid_transition(f"A {self.family.name} cannot be stopped"),
            )
        error = self._guard(record, now, {Phase.ACTIVE}, "stop")
        if error:
            return self._fail(record, "stop_work", error)
        data, error = parse_payload(StopPayload, payload)
        if error:
            return self._fail(record, "stop_work", error)
        if not self.family.can(actor.role, Capability.STOP_WORK):
            return self._fail(
                record,
                "stop_work",
                ActionError.unauthorized(f"Role {actor.role!r} may not stop work"),
            )

        updated = self._working_copy(record, now)
        updated.state = self.family.state_for(Phase.STOPPED)
        updated.stop_record = StopEntry(
            reason=data.reason,
            detail=data.detail,
            immediate_actions=data.immediate_actions,
            resume_conditions=data.resume_conditions,
            stopped_by=actor.id,
            stopped_at=now,
        )
        return self._commit(record, updated, "stop_work", actor, now, data.reason)

    def request_extension(
        self,
        record: LifecycleRecord,
        actor: Actor,
        payload: Any,
        now: Optional[datetime] = None,
    ) -> Transition:
        """Record an extension request; auto-approved unless the family requires approval."""
        now = to_utc(now or utcnow())
        error = self._guard(record, now, OPERATIONAL_PHASES, "extend")
        if error:
            return self._fail(record, "request_extension", error)
        data, error = parse_payload(ExtensionPayload, payload)
        if error:
            return self._fail(record, "request_extension", error)
        if actor.id != record.owner_id:
            return self._fail(
                record,
                "request_extension",
                ActionError.unauthorized("Only the owner can request an extension"),
            )

        updated = self._working_copy(record, now)
        entry = ExtensionEntry(
            hours=data.hours,
            reason=data.reason,
            requested_by=actor.id,
            requested_at=now,
        )
        auto = self.family.extension_policy == ExtensionPolicy.AUTO
        if auto:
            entry.approved_by = SYSTEM_ACTOR
            entry.approved_at = now
        updated.extensions.append(entry)
        if auto:
            self._apply_extensions(updated, now)
        detail = f"+{data.hours:g}h {'auto-approved' if auto else 'awaiting approval'}: {data.reason}"
        return self._commit(record, updated, "request_extension", actor, now, detail)

    def approve_extension(
        self,
        record: LifecycleRecord,
        actor: Actor,
        payload: Any,
        now: Optional[datetime] = None,
    ) -> Transition:
        now = to_utc(now or utcnow())
        error = self._guard(record, now, OPERATIONAL_PHASES, "decide an extension for")
        if error:
            return self._fail(record, "approve_extension", error)
        if self.family.extension_policy != ExtensionPolicy.APPROVAL:
            return self._fail(
                record,
                "approve_extension",
                ActionError.invalid_transition("Extensions are approved automatically"),
            )
        data, error = parse_payload(ExtensionDecisionPayload, payload)
        if error:
            return self._fail(record, "approve_extension", error)
        if data.index >= len(record.extensions) or not record.extensions[data.index].is_pending:
            return self._fail(
                record,
                "approve_extension",
                ActionError.not_actionable(f"Extension {data.index} is not awaiting a decision"),
            )
        if not self.family.can(actor.role, Capability.APPROVE_EXTENSION):
            return self._fail(
                record,
                "approve_extension",
                ActionError.unauthorized(f"Role {actor.role!r} may not approve extensions"),
            )

        updated = self._working_copy(record, now)
        entry = updated.extensions[data.index]
        if data.decision == Decision.APPROVE:
            entry.approved_by = actor.id
            entry.approved_at = now
            self._apply_extensions(updated, now)
        else:
            entry.rejected_by = actor.id
            entry.rejected_at = now
        detail = f"extension {data.index} {_PAST[data.decision]}"
        if data.comment:
            detail = f"{detail}: {data.comment}"
        return self._commit(record, updated, "approve_extension", actor, now, detail)

    def _apply_extensions(self, record: LifecycleRecord, now: datetime) -> None:
        record.expires_at = record.expected_expiry()
        record.state = self._operational_state(record, now)

    # ------------------------------------------------------------------
    # Closure
    def submit_closure(
        self,
        record: LifecycleRecord,
        actor: Actor,
        payload: Any,
        now: Optional[datetime] = None,
    ) -> Transition:
        now = to_utc(now or utcnow())
        error = self._guard(record, now, OPERATIONAL_PHASES, "close")
        if error:
            return self._fail(record, "submit_closure", error)
        data, error = parse_payload(ClosurePayload, payload)
        if error:
            return self._fail(record, "submit_closure", error)
        if actor.id != record.owner_id and not self.family.can(actor.role, Capability.SUBMIT_CLOSURE):
            return self._fail(
                record,
                "submit_closure",
                ActionError.unauthorized(f"Role {actor.role!r} may not submit closure"),
            )
        missing = unanswered(data.checklist)
        if missing:
            return self._fail(
                record,
                "submit_closure",
                ActionError.invalid_transition(f"Closure checklist incomplete: {', '.join(missing)}"),
            )

        updated = self._working_copy(record, now)
        updated.closure_steps = start_workflow(new_workflow_instance(updated.closure_flow), now)
        updated.closure_record = ClosureEntry(
            evidence=data.evidence,
            comments=data.comments,
            checklist=data.checklist,
            submitted_by=actor.id,
            submitted_at=now,
        )
        updated.state = self.family.state_for(Phase.PENDING_CLOSURE)
        return self._commit(record, updated, "submit_closure", actor, now, data.comments)

    def decide_closure(
        self,
        record: LifecycleRecord,
        actor: Actor,
        payload: Any,
        now: Optional[datetime] = None,
    ) -> Transition:
        """Decide a closure step; rejection returns the record to operation."""
        now = to_utc(now or utcnow())
        error = self._guard(record, now, {Phase.PENDING_CLOSURE}, "decide closure of")
        if error:
            return self._fail(record, "decide_closure", error)
        data, error = parse_payload(DecisionPayload, payload)
        if error:
            return self._fail(record, "decide_closure", error)

        result = record_decision(
            record.closure_steps or [], data.step, actor, data.decision, data.comment, now
        )
        if result.error:
            return self._fail(record, "decide_closure", result.error)

        updated = self._working_copy(record, now)
        updated.closure_steps = result.steps
        if result.outcome == WorkflowOutcome.APPROVED:
            updated.state = self.family.state_for(Phase.CLOSED)
            updated.closure_record.approved_by = actor.id
            updated.closure_record.approved_at = now
        elif result.outcome == WorkflowOutcome.REJECTED:
            updated.state = self._operational_state(updated, now)
            updated.closure_record = None
        detail = f"closure step {data.step} {_PAST[data.decision]}"
        if data.comment:
            detail = f"{detail}: {data.comment}"
        return self._commit(record, updated, "decide_closure", actor, now, detail)
