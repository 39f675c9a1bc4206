"""Workflow step evaluation."""

from .evaluator import (
    StepDecision,
    StepSLA,
    actionable_steps,
    mark_assigned,
    pending_step_slas,
    record_decision,
    start_workflow,
    workflow_outcome,
)

__all__ = [
    "StepDecision",
    "StepSLA",
    "actionable_steps",
    "mark_assigned",
    "pending_step_slas",
    "record_decision",
    "start_workflow",
    "workflow_outcome",
]
