"""Resource families: state vocabularies and capability tables.

Every family shares the same lifecycle phases but names its states in its
own vocabulary, and may leave phases out (only permits can be stopped).
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from ..config import ExtensionPolicy, FamilyConfig, SafeflowConfig
from ..contracts import Capability, WorkflowStepDef


class Phase(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    ACTIVE = "active"
    EXPIRED = "expired"
    STOPPED = "stopped"
    PENDING_CLOSURE = "pending_closure"
    CLOSED = "closed"
    REJECTED = "rejected"


TERMINAL_PHASES = frozenset({Phase.CLOSED, Phase.REJECTED})
OPERATIONAL_PHASES = frozenset({Phase.ACTIVE, Phase.EXPIRED})
CLOSURE_PHASES = frozenset({Phase.PENDING_CLOSURE, Phase.CLOSED})


class PermitState(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    ACTIVE = "active"
    EXPIRED = "expired"
    STOPPED = "stopped"
    PENDING_CLOSURE = "pending_closure"
    CLOSED = "closed"
    REJECTED = "rejected"


class HazardStudyState(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    OVERDUE = "overdue"
    PENDING_CLOSURE = "pending_closure"
    CLOSED = "closed"
    REJECTED = "rejected"


class IncidentState(str, Enum):
    REPORTED = "reported"
    UNDER_REVIEW = "under_review"
    ASSIGNED = "assigned"
    INVESTIGATING = "investigating"
    OVERDUE = "overdue"
    PENDING_CLOSURE = "pending_closure"
    CLOSED = "closed"
    DISMISSED = "dismissed"


_PHASE_MAPS: Dict[str, Dict[Phase, Enum]] = {
    "permit": {phase: PermitState(phase.value) for phase in Phase},
    "hazard_study": {
        Phase.DRAFT: HazardStudyState.DRAFT,
        Phase.SUBMITTED: HazardStudyState.UNDER_REVIEW,
        Phase.APPROVED: HazardStudyState.APPROVED,
        Phase.ACTIVE: HazardStudyState.IN_PROGRESS,
        Phase.EXPIRED: HazardStudyState.OVERDUE,
        Phase.PENDING_CLOSURE: HazardStudyState.PENDING_CLOSURE,
        Phase.CLOSED: HazardStudyState.CLOSED,
        Phase.REJECTED: HazardStudyState.REJECTED,
    },
    "incident": {
        Phase.DRAFT: IncidentState.REPORTED,
        Phase.SUBMITTED: IncidentState.UNDER_REVIEW,
        Phase.APPROVED: IncidentState.ASSIGNED,
        Phase.ACTIVE: IncidentState.INVESTIGATING,
        Phase.EXPIRED: IncidentState.OVERDUE,
        Phase.PENDING_CLOSURE: IncidentState.PENDING_CLOSURE,
        Phase.CLOSED: IncidentState.CLOSED,
        Phase.REJECTED: IncidentState.DISMISSED,
    },
}


class ResourceFamily:
    """One family's state vocabulary bound to its workflow configuration."""

    def __init__(self, name: str, config: FamilyConfig) -> None:
        self.name = name
        self.config = config
        # Families without a dedicated vocabulary use the phase names as states.
        phase_map = _PHASE_MAPS.get(name) or {phase: phase for phase in Phase}
        self._state_by_phase: Dict[Phase, str] = {
            phase: state.value for phase, state in phase_map.items()
        }
        self._phase_by_state: Dict[str, Phase] = {
            state: phase for phase, state in self._state_by_phase.items()
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"ResourceFamily({self.name!r})"

    @property
    def states(self) -> List[str]:
        return list(self._phase_by_state)

    def supports(self, phase: Phase) -> bool:
        return phase in self._state_by_phase

    def state_for(self, phase: Phase) -> str:
        try:
            return self._state_by_phase[phase]
        except KeyError:
            raise ValueError(f"Family {self.name!r} has no {phase.value} state") from None

    def phase_of(self, state: str) -> Optional[Phase]:
        return self._phase_by_state.get(state)

    def is_terminal(self, state: str) -> bool:
        return self.phase_of(state) in TERMINAL_PHASES

    def approval_flow(self, high_risk: bool = False) -> List[WorkflowStepDef]:
        if high_risk and self.config.high_risk_approval_flow:
            return list(self.config.high_risk_approval_flow)
        return list(self.config.approval_flow)

    def closure_flow(self) -> List[WorkflowStepDef]:
        return list(self.config.closure_flow)

    def can(self, role: str, capability: Capability) -> bool:
        return self.config.has_capability(role, capability)

    @property
    def extension_policy(self) -> ExtensionPolicy:
        return self.config.resolved_extension_policy()

    def checklist_template(self, work_types: List[str]) -> List[str]:
        labels: List[str] = []
        for work_type in work_types:
            for label in self.config.checklists.get(work_type, []):
                if label not in labels:
                    labels.append(label)
        return labels


def build_families(config: SafeflowConfig) -> Dict[str, ResourceFamily]:
    """Instantiate every configured family."""
    return {name: ResourceFamily(name, family) for name, family in config.families.items()}
