"""safeflow: approval workflows, deadlines and lifecycles for safety records."""

from .config import SafeflowConfig, load_config
from .contracts import Actor, LifecycleEvent, LifecycleRecord, Schedule, WorkflowStepDef
from .errors import ActionError, ActionResult, ErrorKind, InvariantViolation, StaleRecordError
from .lifecycle import LifecycleMachine, Phase, schedule_from_duration
from .persistence import get_repository
from .service import LifecycleService, RecordView
from .sweeper import ExpirySweeper
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ActionError",
    "ActionResult",
    "Actor",
    "ErrorKind",
    "ExpirySweeper",
    "InvariantViolation",
    "LifecycleEvent",
    "LifecycleMachine",
    "LifecycleRecord",
    "LifecycleService",
    "Phase",
    "RecordView",
    "SafeflowConfig",
    "Schedule",
    "StaleRecordError",
    "WorkflowStepDef",
    "get_repository",
    "get_transport",
    "load_config",
    "schedule_from_duration",
]
