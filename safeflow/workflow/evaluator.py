"""Workflow step evaluation: readiness, decisions and overall outcome.

Steps are grouped into stages. A non-parallel step is a stage of its own and
a consecutive run of parallel steps forms one shared stage. A stage opens once
every required step in the earlier stages is approved or skipped, and all of
its pending steps become actionable together. Optional steps never hold a
later stage back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel

from ..constants import DEFAULT_DUE_SOON_HOURS
from ..contracts import (
    Actor,
    Decision,
    StepState,
    StepStatus,
    WorkflowOutcome,
)
from ..deadlines import SLAReport, sla_for, utcnow
from ..errors import ActionError

logger = logging.getLogger(__name__)


class StepDecision(BaseModel):
    """Result of recording a decision against a workflow instance."""

    steps: List[StepState]
    outcome: WorkflowOutcome
    error: Optional[ActionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class StepSLA(BaseModel):
    step_id: int
    role: str
    label: str
    sla: SLAReport


def _stages(steps: List[StepState]) -> List[List[StepState]]:
    stages: List[List[StepState]] = []
    for step in steps:
        if step.step_def.parallel and stages and stages[-1][-1].step_def.parallel:
            stages[-1].append(step)
        else:
            stages.append([step])
    return stages


def _blocks(step: StepState) -> bool:
    return step.step_def.required and not step.is_resolved


def workflow_outcome(steps: List[StepState]) -> WorkflowOutcome:
    """Overall outcome: any required rejection rejects, all required resolved approves."""
    required = [step for step in steps if step.step_def.required]
    if any(step.status == StepStatus.REJECTED for step in required):
        return WorkflowOutcome.REJECTED
    if all(step.is_resolved for step in required):
        return WorkflowOutcome.APPROVED
    return WorkflowOutcome.PENDING


def actionable_steps(steps: List[StepState]) -> List[StepState]:
    """Return every pending step whose earlier stages no longer block it."""
    if workflow_outcome(steps) == WorkflowOutcome.REJECTED:
        return []
    actionable: List[StepState] = []
    for stage in _stages(steps):
        actionable.extend(step for step in stage if step.is_pending)
        if any(_blocks(step) for step in stage):
            break
    return actionable


def mark_assigned(steps: List[StepState], now: datetime) -> None:
    """Stamp ``assigned_at`` on steps that have just become actionable."""
    for step in actionable_steps(steps):
        if step.assigned_at is None:
            step.assigned_at = now


def start_workflow(steps: List[StepState], now: datetime) -> List[StepState]:
    """Reset a workflow instance to all-pending and open its first stage."""
    fresh = [StepState(step_def=step.step_def) for step in steps]
    mark_assigned(fresh, now)
    return fresh


def record_decision(
    steps: List[StepState],
    step_id: int,
    actor: Actor,
    decision: Decision,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> StepDecision:
    """Record ``actor``'s decision on step ``step_id``.

    The input list is left untouched; the returned ``StepDecision`` carries an
    updated copy. Rejecting a required step skips every remaining pending
    step, so the workflow ends ``REJECTED`` with nothing left pending.
    """
    now = now or utcnow()
    current = workflow_outcome(steps)
    if step_id not in {step.step_id for step in actionable_steps(steps)}:
        return StepDecision(
            steps=steps,
            outcome=current,
            error=ActionError.not_actionable(f"Step {step_id} is not awaiting a decision"),
        )

    updated = [step.model_copy(deep=True) for step in steps]
    target = next(step for step in updated if step.step_id == step_id)
    if not target.step_def.allows(actor.role):
        return StepDecision(
            steps=steps,
            outcome=current,
            error=ActionError.unauthorized(
                f"Step {step_id} ({target.step_def.label or target.step_def.role}) "
                f"must be decided by role {target.step_def.role!r}"
            ),
        )

    target.status = StepStatus.APPROVED if decision == Decision.APPROVE else StepStatus.REJECTED
    target.actor_id = actor.id
    target.actor_role = actor.role
    target.comment = comment
    target.decided_at = now

    if target.status == StepStatus.REJECTED and target.step_def.required:
        for step in updated:
            if step.is_pending:
                step.status = StepStatus.SKIPPED
                step.decided_at = now
    else:
        mark_assigned(updated, now)

    outcome = workflow_outcome(updated)
    logger.debug(f"Step {step_id} {target.status.value} by {actor.id}; workflow {outcome.value}")
    return StepDecision(steps=updated, outcome=outcome)


def pending_step_slas(
    steps: List[StepState],
    now: datetime,
    due_soon_window: timedelta = timedelta(hours=DEFAULT_DUE_SOON_HOURS),
) -> List[StepSLA]:
    """SLA status of each actionable step that carries a time limit."""
    results: List[StepSLA] = []
    for step in actionable_steps(steps):
        report = sla_for(step.assigned_at, step.step_def.time_limit_hours, now, due_soon_window)
        if report is None:
            continue
        results.append(
            StepSLA(
                step_id=step.step_id,
                role=step.step_def.role,
                label=step.step_def.label,
                sla=report,
            )
        )
    return results
