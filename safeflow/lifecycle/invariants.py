"""Consistency checks applied to every lifecycle record before it is written."""

from __future__ import annotations

from typing import List, Optional

from ..contracts import LifecycleRecord, StepState, StepStatus, WorkflowOutcome
from ..errors import InvariantViolation
from ..workflow import workflow_outcome
from .families import CLOSURE_PHASES, Phase, ResourceFamily

_APPROVED_PHASES = frozenset(
    {
        Phase.APPROVED,
        Phase.ACTIVE,
        Phase.EXPIRED,
        Phase.STOPPED,
        Phase.PENDING_CLOSURE,
        Phase.CLOSED,
    }
)


def _check_order(record_id: str, name: str, steps: Optional[List[StepState]]) -> None:
    if not steps:
        return
    orders = [step.step_id for step in steps]
    if any(b <= a for a, b in zip(orders, orders[1:])):
        raise InvariantViolation(f"Record {record_id}: {name} steps are not strictly ordered")


def check_invariants(record: LifecycleRecord, family: ResourceFamily) -> None:
    """Raise ``InvariantViolation`` when ``record`` is internally inconsistent."""
    rid = record.id
    phase = family.phase_of(record.state)
    if phase is None:
        raise InvariantViolation(f"Record {rid}: {record.state!r} is not a {family.name} state")

    if (record.stop_record is not None) != (phase == Phase.STOPPED):
        raise InvariantViolation(f"Record {rid}: stop record must exist exactly when stopped")

    if (record.closure_record is not None) != (phase in CLOSURE_PHASES):
        raise InvariantViolation(
            f"Record {rid}: closure record must exist exactly when pending closure or closed"
        )

    _check_order(rid, "approval", record.approval_steps)
    _check_order(rid, "closure", record.closure_steps)

    if record.expires_at is not None:
        if record.expires_at < record.schedule.end:
            raise InvariantViolation(f"Record {rid}: expiry precedes scheduled end")
        if record.expires_at != record.expected_expiry():
            raise InvariantViolation(
                f"Record {rid}: expiry does not match schedule end plus approved extensions"
            )

    outcome = workflow_outcome(record.approval_steps)
    if (outcome == WorkflowOutcome.REJECTED) != (phase == Phase.REJECTED):
        raise InvariantViolation(
            f"Record {rid}: state {record.state!r} disagrees with approval outcome {outcome.value}"
        )
    if outcome == WorkflowOutcome.REJECTED and any(s.is_pending for s in record.approval_steps):
        raise InvariantViolation(f"Record {rid}: rejected workflow still has pending steps")
    if phase in _APPROVED_PHASES and outcome != WorkflowOutcome.APPROVED:
        raise InvariantViolation(f"Record {rid}: state {record.state!r} reached without approval")


def check_monotonic(before: List[StepState], after: List[StepState], record_id: str) -> None:
    """Decided steps never change their status again."""
    if len(before) != len(after):
        raise InvariantViolation(f"Record {record_id}: workflow steps were added or removed")
    for old, new in zip(before, after):
        if old.step_id != new.step_id:
            raise InvariantViolation(f"Record {record_id}: workflow steps were reordered")
        if old.status != StepStatus.PENDING and new.status != old.status:
            raise InvariantViolation(
                f"Record {record_id}: step {old.step_id} changed from {old.status.value} "
                f"to {new.status.value}"
            )
