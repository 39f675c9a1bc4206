"""Action API over persisted lifecycle records.

Every mutating action is a read-modify-write of one record: load it, apply the
lifecycle machine, and save it against the version that was read. Writes to
the same record are serialised by a per-record lock inside this process and by
the repository's version check across processes; a stale write is retried on a
fresh copy of the record.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .checklist import ChecklistItem
from .config import SafeflowConfig, load_config
from .constants import SYSTEM_ACTOR
from .contracts import (
    Actor,
    HistoryEntry,
    LifecycleEvent,
    LifecycleRecord,
    Schedule,
    StepState,
    WorkflowStepDef,
)
from .deadlines import SLAReport, SLAStatus, evaluate_sla, to_utc, utcnow
from .errors import ActionError, ActionResult, ErrorKind, InvariantViolation, StaleRecordError
from .lifecycle import (
    LifecycleMachine,
    Phase,
    ResourceFamily,
    Transition,
    build_families,
    schedule_from_duration,
)
from .lifecycle.families import OPERATIONAL_PHASES
from .persistence import RecordRepository, get_repository
from .transports import BaseTransport, topic_for
from .utils.retry import schedule_retry
from .workflow import StepSLA, actionable_steps, pending_step_slas

logger = logging.getLogger(__name__)

ACTIONS = (
    "submit",
    "decide",
    "activate",
    "stop_work",
    "request_extension",
    "approve_extension",
    "submit_closure",
    "decide_closure",
)
_NO_PAYLOAD = frozenset({"submit", "activate"})

Apply = Callable[[LifecycleMachine, LifecycleRecord, datetime], Optional[Transition]]


class RecordView(BaseModel):
    """What a reader sees of a record at a given instant."""

    record_id: str
    family: str
    title: str = ""
    state: str
    version: int
    actionable_steps: List[StepState] = Field(default_factory=list)
    step_slas: List[StepSLA] = Field(default_factory=list)
    record_sla: Optional[SLAReport] = None
    history: List[HistoryEntry] = Field(default_factory=list)

    @property
    def is_overdue(self) -> bool:
        if self.record_sla is not None and self.record_sla.status == SLAStatus.OVERDUE:
            return True
        return any(s.sla.status == SLAStatus.OVERDUE for s in self.step_slas)


class LifecycleService:
    """Entry point used by the surrounding system to drive lifecycle records."""

    def __init__(
        self,
        config: Optional[SafeflowConfig] = None,
        repository: Optional[RecordRepository] = None,
        transport: Optional[BaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        self.transport = transport
        self.clock = clock
        self.families: Dict[str, ResourceFamily] = build_families(self.config)
        self._machines = {name: LifecycleMachine(f) for name, f in self.families.items()}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)

    @property
    def due_soon_window(self) -> timedelta:
        return timedelta(hours=self.config.engine.due_soon_hours)

    def machine_for(self, family: str) -> LifecycleMachine:
        try:
            return self._machines[family]
        except KeyError:
            raise ValueError(f"Unknown resource family: {family}") from None

    def _now(self, now: Optional[datetime]) -> datetime:
        return to_utc(now or self.clock())

    # ------------------------------------------------------------------
    # Creation
    async def create(
        self,
        family: str,
        owner_id: str,
        schedule: Optional[Schedule] = None,
        title: str = "",
        high_risk: bool = False,
        approval_flow: Optional[List[WorkflowStepDef]] = None,
        closure_flow: Optional[List[WorkflowStepDef]] = None,
        work_types: Optional[List[str]] = None,
        checklist: Optional[List[ChecklistItem]] = None,
        start: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> LifecycleRecord:
        """Create and persist a draft record.

        Without an explicit ``schedule`` the family's ``default_duration_hours``
        is applied from ``start``, or from ``now`` when no start is given.
        """
        machine = self.machine_for(family)
        now = self._now(now)
        if schedule is None:
            hours = machine.family.config.default_duration_hours
            if hours is None:
                raise ValueError(f"A schedule is required for {family} records")
            schedule = schedule_from_duration(to_utc(start) if start else now, hours)

        record = machine.create(
            owner_id,
            schedule,
            title=title,
            high_risk=high_risk,
            approval_flow=approval_flow,
            closure_flow=closure_flow,
            work_types=work_types,
            checklist=checklist,
            now=now,
        )
        await self.repository.create_record(record)
        logger.info(f"Created {family} record {record.id} in state {record.state}")
        await self._publish(record, Actor(id=owner_id, role="owner"))
        return record

    # ------------------------------------------------------------------
    # Action API
    async def apply(
        self,
        action: str,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """Apply ``action`` by name; see ``ACTIONS``."""
        if action not in ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        actor = Actor(id=actor_id, role=actor_role)

        def run(machine: LifecycleMachine, record: LifecycleRecord, at: datetime) -> Transition:
            handler = getattr(machine, action)
            if action in _NO_PAYLOAD:
                return handler(record, actor, now=at)
            return handler(record, actor, payload, now=at)

        return await self._write(record_id, action, actor, run, now)

    async def submit(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("submit", record_id, actor_id, actor_role, payload, now)

    async def decide(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("decide", record_id, actor_id, actor_role, payload, now)

    async def activate(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("activate", record_id, actor_id, actor_role, payload, now)

    async def stop_work(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("stop_work", record_id, actor_id, actor_role, payload, now)

    async def request_extension(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("request_extension", record_id, actor_id, actor_role, payload, now)

    async def approve_extension(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("approve_extension", record_id, actor_id, actor_role, payload, now)

    async def submit_closure(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("submit_closure", record_id, actor_id, actor_role, payload, now)

    async def decide_closure(
        self,
        record_id: str,
        actor_id: str,
        actor_role: str,
        payload: Any = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        return await self.apply("decide_closure", record_id, actor_id, actor_role, payload, now)

    async def expire(self, record_id: str, now: Optional[datetime] = None) -> ActionResult:
        """Persist ``Active -> Expired`` if the record has lapsed; otherwise a no-op."""
        system = Actor(id=SYSTEM_ACTOR, role=SYSTEM_ACTOR)
        return await self._write(
            record_id, "expire", system, lambda m, r, at: m.expire(r, now=at), now
        )

    # ------------------------------------------------------------------
    # Write path
    @asynccontextmanager
    async def _record_lock(self, record_id: str) -> AsyncIterator[None]:
        """Hold the per-record lock; the entry is dropped when nobody waits on it."""
        lock = self._locks.get(record_id)
        if lock is None:
            lock = self._locks[record_id] = asyncio.Lock()
        self._lock_users[record_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[record_id] -= 1
            if not self._lock_users[record_id]:
                del self._lock_users[record_id]
                del self._locks[record_id]

    async def _write(
        self,
        record_id: str,
        action: str,
        actor: Actor,
        run: Apply,
        now: Optional[datetime],
    ) -> ActionResult:
        max_attempts = self.config.engine.max_write_attempts
        async with self._record_lock(record_id):
            attempt = 0
            while True:
                record = await self.repository.get_record(record_id)
                if record is None:
                    return ActionResult(
                        record_id=record_id,
                        error=ActionError(
                            kind=ErrorKind.NOT_FOUND, message=f"No record with id {record_id}"
                        ),
                    )
                machine = self.machine_for(record.family)
                at = self._now(now)
                try:
                    transition = run(machine, record, at)
                except InvariantViolation:
                    logger.exception(f"Invariant violated applying {action} to record {record_id}")
                    return ActionResult(
                        record_id=record_id,
                        state=record.state,
                        error=ActionError(kind=ErrorKind.INVARIANT_VIOLATION, message="internal error"),
                    )
                if transition is None:
                    return ActionResult(record_id=record_id, state=machine.effective_state(record, at))
                if not transition.ok:
                    return ActionResult(
                        record_id=record_id,
                        state=machine.effective_state(record, at),
                        error=transition.error,
                    )

                try:
                    saved = await self.repository.save_record(transition.record, record.version)
                except StaleRecordError as e:
                    attempt += 1
                    if attempt >= max_attempts:
                        raise
                    logger.warning(
                        f"Concurrent update of record {record_id} during {action} "
                        f"(expected v{e.expected}, found v{e.actual}); retrying"
                    )
                    await schedule_retry(attempt)
                    continue

                last = saved.history[-1]
                logger.info(
                    f"Record {record_id} {action} by {actor.id}: {last.from_state} -> {last.to_state}"
                )
                await self._publish(saved, actor)
                return ActionResult(record_id=record_id, state=saved.state)

    async def _publish(self, record: LifecycleRecord, actor: Actor) -> None:
        if self.transport is None:
            return
        last = record.history[-1]
        event = LifecycleEvent(
            record_id=record.id,
            family=record.family,
            action=last.action,
            actor_id=actor.id,
            actor_role=actor.role,
            from_state=last.from_state,
            to_state=record.state,
            version=record.version,
            timestamp=last.at,
        )
        await self.transport.publish(topic_for(record.family), event)

    # ------------------------------------------------------------------
    # Read side
    async def get_record(self, record_id: str) -> Optional[LifecycleRecord]:
        return await self.repository.get_record(record_id)

    def build_view(self, record: LifecycleRecord, now: Optional[datetime] = None) -> RecordView:
        now = self._now(now)
        machine = self.machine_for(record.family)
        phase = machine.effective_phase(record, now)

        steps: List[StepState] = []
        if phase == Phase.SUBMITTED:
            steps = record.approval_steps
        elif phase == Phase.PENDING_CLOSURE:
            steps = record.closure_steps or []

        record_sla = None
        if phase in OPERATIONAL_PHASES and record.expires_at is not None:
            record_sla = evaluate_sla(record.expires_at, now, self.due_soon_window)

        return RecordView(
            record_id=record.id,
            family=record.family,
            title=record.title,
            state=machine.family.state_for(phase),
            version=record.version,
            actionable_steps=actionable_steps(steps),
            step_slas=pending_step_slas(steps, now, self.due_soon_window),
            record_sla=record_sla,
            history=record.history,
        )

    async def view(self, record_id: str, now: Optional[datetime] = None) -> Optional[RecordView]:
        record = await self.repository.get_record(record_id)
        if record is None:
            return None
        return self.build_view(record, now)

    async def overdue(self, now: Optional[datetime] = None, family: Optional[str] = None) -> List[RecordView]:
        """Records whose operating window or a pending step deadline has passed."""
        now = self._now(now)
        views = [self.build_view(r, now) for r in await self.repository.list_records(family=family)]
        return [v for v in views if v.is_overdue]

    async def state_counts(self, family: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Number of records in each state of ``family``, as a reader sees them at ``now``."""
        machine = self.machine_for(family)
        now = self._now(now)
        counts = {state: 0 for state in machine.family.states}
        for record in await self.repository.list_records(family=family):
            counts[machine.effective_state(record, now)] += 1
        return counts
