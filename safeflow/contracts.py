"""Core data contracts for the safeflow lifecycle engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .checklist import ChecklistItem
from .deadlines import to_utc, utcnow


class Actor(BaseModel):
    """The user performing an action and the role they act under."""

    id: str
    role: str


class Capability(str, Enum):
    """Record-level permissions granted to a role, outside any workflow step."""

    STOP_WORK = "stop_work"
    SUBMIT_CLOSURE = "submit_closure"
    APPROVE_EXTENSION = "approve_extension"


class WorkflowStepDef(BaseModel):
    """Defines one gate in an approval or closure workflow."""

    order: int
    role: str
    label: str = ""
    required: bool = True
    parallel: bool = False
    time_limit_hours: Optional[float] = Field(default=None, ge=0)
    alternate_roles: List[str] = Field(default_factory=list)

    def allows(self, role: str) -> bool:
        """Return ``True`` when ``role`` may decide this step."""
        return role == self.role or role in self.alternate_roles


class WorkflowDefinition(BaseModel):
    """Ordered list of step definitions produced by workflow configuration."""

    steps: List[WorkflowStepDef]

    @field_validator("steps")
    @classmethod
    def _ordered(cls, steps: List[WorkflowStepDef]) -> List[WorkflowStepDef]:
        if not steps:
            raise ValueError("a workflow needs at least one step")
        orders = [step.order for step in steps]
        if any(b <= a for a, b in zip(orders, orders[1:])):
            raise ValueError("step order must be strictly increasing")
        if not any(step.required for step in steps):
            raise ValueError("a workflow needs at least one required step")
        return steps


class StepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class WorkflowOutcome(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepState(BaseModel):
    """Runtime status of one step within a workflow instance."""

    step_def: WorkflowStepDef
    status: StepStatus = StepStatus.PENDING
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    comment: Optional[str] = None
    decided_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None

    @property
    def step_id(self) -> int:
        return self.step_def.order

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING

    @property
    def is_resolved(self) -> bool:
        """Approved or skipped; a rejected step never counts as resolved."""
        return self.status in (StepStatus.APPROVED, StepStatus.SKIPPED)


def new_workflow_instance(definition: List[WorkflowStepDef]) -> List[StepState]:
    """Create all-pending step states for a validated definition."""
    steps = WorkflowDefinition(steps=definition).steps
    return [StepState(step_def=step) for step in steps]


class Schedule(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> "Schedule":
        if self.end < self.start:
            raise ValueError("schedule end must not precede start")
        return self


class ExtensionEntry(BaseModel):
    """A request to extend an active record's validity window."""

    hours: float = Field(gt=0)
    reason: str
    requested_by: str
    requested_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.approved_at is not None

    @property
    def is_pending(self) -> bool:
        return self.approved_at is None and self.rejected_at is None


class StopEntry(BaseModel):
    """Emergency stop-work record; written once and never changed."""

    reason: str
    detail: str = ""
    immediate_actions: str = ""
    resume_conditions: Optional[str] = None
    stopped_by: str
    stopped_at: datetime


class ClosureEntry(BaseModel):
    evidence: str = ""
    comments: Optional[str] = None
    checklist: List[ChecklistItem] = Field(default_factory=list)
    submitted_by: str
    submitted_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None


class HistoryEntry(BaseModel):
    """Append-only audit entry written for each committed action."""

    at: datetime
    action: str
    actor_id: str
    actor_role: Optional[str] = None
    from_state: Optional[str] = None
    to_state: str
    detail: Optional[str] = None


class LifecycleRecord(BaseModel):
    """A permit, hazard study or incident moving through its lifecycle."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    family: str
    owner_id: str
    title: str = ""
    high_risk: bool = False
    state: str
    version: int = 0
    approval_steps: List[StepState] = Field(default_factory=list)
    closure_flow: List[WorkflowStepDef] = Field(default_factory=list)
    closure_steps: Optional[List[StepState]] = None
    schedule: Schedule
    expires_at: Optional[datetime] = None
    activated_by: Optional[str] = None
    activated_at: Optional[datetime] = None
    extensions: List[ExtensionEntry] = Field(default_factory=list)
    stop_record: Optional[StopEntry] = None
    closure_record: Optional[ClosureEntry] = None
    checklist: List[ChecklistItem] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def approved_extension_hours(self) -> float:
        return sum(ext.hours for ext in self.extensions if ext.is_approved)

    def expected_expiry(self) -> datetime:
        """``schedule.end`` pushed out by every approved extension."""
        return self.schedule.end + timedelta(hours=self.approved_extension_hours())

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "LifecycleRecord":
        return cls.model_validate_json(data)


class LifecycleEvent(BaseModel):
    """Notification published after a state-changing write."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    record_id: str
    family: str
    action: str
    actor_id: str
    actor_role: Optional[str] = None
    from_state: Optional[str] = None
    to_state: str
    version: int
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "LifecycleEvent":
        return cls.model_validate_json(data)
