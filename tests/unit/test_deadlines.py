"""Deadline calculator tests."""

from datetime import datetime, timedelta, timezone

import pytest

from safeflow.deadlines import SLAStatus, compute_deadline, evaluate_sla, sla_for, to_utc

ANCHOR = datetime(2025, 3, 9, 6, 30, tzinfo=timezone.utc)
IST = timezone(timedelta(hours=5, minutes=30))


def test_compute_deadline_adds_elapsed_hours():
    assert compute_deadline(ANCHOR, 24) == ANCHOR + timedelta(hours=24)
    assert compute_deadline(ANCHOR, 0.5) == ANCHOR + timedelta(minutes=30)


def test_compute_deadline_normalises_to_utc():
    local = datetime(2025, 3, 9, 12, 0, tzinfo=IST)
    due = compute_deadline(local, 2)
    assert due.tzinfo == timezone.utc
    assert due == datetime(2025, 3, 9, 8, 30, tzinfo=timezone.utc)


def test_naive_datetimes_are_treated_as_utc():
    assert to_utc(datetime(2025, 1, 1, 10, 0)) == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_negative_limit_is_rejected():
    with pytest.raises(ValueError):
        compute_deadline(ANCHOR, -1)


@pytest.mark.parametrize("hours", [0, 0.25, 1, 23.9, 24, 24.1, 72, 168])
def test_fresh_deadline_is_never_overdue(hours):
    report = evaluate_sla(compute_deadline(ANCHOR, hours), ANCHOR)
    assert report.days_remaining >= 0
    assert report.status != SLAStatus.OVERDUE


def test_status_boundaries():
    due = ANCHOR + timedelta(hours=48)

    far = evaluate_sla(due, ANCHOR)
    assert far.status == SLAStatus.ON_TRACK
    assert far.days_remaining == 2

    soon = evaluate_sla(due, due - timedelta(hours=24))
    assert soon.status == SLAStatus.DUE_SOON
    assert soon.days_remaining == 1

    exact = evaluate_sla(due, due)
    assert exact.status == SLAStatus.DUE_SOON
    assert exact.days_remaining == 0

    late = evaluate_sla(due, due + timedelta(hours=1))
    assert late.status == SLAStatus.OVERDUE
    assert late.days_remaining == 0

    very_late = evaluate_sla(due, due + timedelta(hours=25))
    assert very_late.status == SLAStatus.OVERDUE
    assert very_late.days_remaining == -1


def test_due_soon_window_is_configurable():
    due = ANCHOR + timedelta(hours=30)
    assert evaluate_sla(due, ANCHOR).status == SLAStatus.ON_TRACK
    assert evaluate_sla(due, ANCHOR, timedelta(hours=48)).status == SLAStatus.DUE_SOON


def test_sla_for_requires_anchor_and_limit():
    assert sla_for(None, 24, ANCHOR) is None
    assert sla_for(ANCHOR, None, ANCHOR) is None
    report = sla_for(ANCHOR, 24, ANCHOR + timedelta(hours=30))
    assert report.status == SLAStatus.OVERDUE
    assert report.due_at == ANCHOR + timedelta(hours=24)
