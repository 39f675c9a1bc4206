"""Deadline calculation shared by every SLA-bearing step and record.

All arithmetic is done in UTC so that a limit of ``N`` hours is ``N`` hours of
elapsed time, independent of daylight-saving shifts in the caller's zone.
Naive datetimes are interpreted as UTC.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .constants import DEFAULT_DUE_SOON_HOURS

ONE_DAY = timedelta(days=1)


class SLAStatus(str, Enum):
    ON_TRACK = "on_track"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


class SLAReport(BaseModel):
    """Where a deadline stands relative to ``now``."""

    due_at: datetime
    days_remaining: int
    status: SLAStatus


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_deadline(anchor: datetime, limit_hours: float) -> datetime:
    """Return ``anchor`` plus ``limit_hours`` of elapsed time."""
    if limit_hours < 0:
        raise ValueError("limit_hours must not be negative")
    return to_utc(anchor) + timedelta(hours=limit_hours)


def evaluate_sla(
    due: datetime,
    now: datetime,
    due_soon_window: timedelta = timedelta(hours=DEFAULT_DUE_SOON_HOURS),
) -> SLAReport:
    """Classify ``due`` as on track, due soon or overdue at ``now``.

    ``days_remaining`` is the remaining time rounded up to whole days, so it
    is negative only once at least one full day has passed the deadline.
    """
    due = to_utc(due)
    remaining = due - to_utc(now)
    if remaining < timedelta(0):
        status = SLAStatus.OVERDUE
    elif remaining <= due_soon_window:
        status = SLAStatus.DUE_SOON
    else:
        status = SLAStatus.ON_TRACK
    days = math.ceil(remaining / ONE_DAY)
    return SLAReport(due_at=due, days_remaining=int(days), status=status)


def sla_for(
    anchor: Optional[datetime],
    limit_hours: Optional[float],
    now: datetime,
    due_soon_window: timedelta = timedelta(hours=DEFAULT_DUE_SOON_HOURS),
) -> Optional[SLAReport]:
    """Evaluate an anchor/limit pair, or ``None`` when either is missing."""
    if anchor is None or limit_hours is None:
        return None
    return evaluate_sla(compute_deadline(anchor, limit_hours), now, due_soon_window)
