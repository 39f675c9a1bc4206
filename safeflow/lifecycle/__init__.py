"""Resource lifecycle state machines."""

from .families import (
    HazardStudyState,
    IncidentState,
    PermitState,
    Phase,
    ResourceFamily,
    build_families,
)
from .invariants import check_invariants, check_monotonic
from .machine import (
    ClosurePayload,
    DecisionPayload,
    ExtensionDecisionPayload,
    ExtensionPayload,
    LifecycleMachine,
    StopPayload,
    Transition,
    schedule_from_duration,
)

__all__ = [
    "ClosurePayload",
    "DecisionPayload",
    "ExtensionDecisionPayload",
    "ExtensionPayload",
    "HazardStudyState",
    "IncidentState",
    "LifecycleMachine",
    "PermitState",
    "Phase",
    "ResourceFamily",
    "StopPayload",
    "Transition",
    "build_families",
    "check_invariants",
    "check_monotonic",
    "schedule_from_duration",
]
