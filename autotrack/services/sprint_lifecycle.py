"""
Sprint state machine.

Pure functions over a sprint's status and dates. Nothing here touches
storage or the clock; callers pass ``today`` in.

    UPCOMING -> ACTIVE -> COMPLETED
    UPCOMING -> CANCELLED
    ACTIVE   -> CANCELLED
"""

from datetime import date, timedelta
from typing import Dict, FrozenSet, Optional

from autotrack.infrastructure.exceptions import InvalidTransition, ValidationFailure
from autotrack.models.sprint import SprintStatus

ALLOWED_TRANSITIONS: Dict[SprintStatus, FrozenSet[SprintStatus]] = {
    SprintStatus.UPCOMING: frozenset({SprintStatus.ACTIVE, SprintStatus.CANCELLED}),
    SprintStatus.ACTIVE: frozenset({SprintStatus.COMPLETED, SprintStatus.CANCELLED}),
    SprintStatus.COMPLETED: frozenset(),
    SprintStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({SprintStatus.COMPLETED, SprintStatus.CANCELLED})


def can_transition(current: SprintStatus, target: SprintStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(sprint_id: str, current: SprintStatus, target: SprintStatus) -> None:
    """Raise InvalidTransition unless ``current -> target`` is an edge of the machine."""
    if not can_transition(current, target):
        raise InvalidTransition("sprint", sprint_id, current.value, target.value)


def validate_dates(start_date: date, end_date: date) -> None:
    if start_date is None or end_date is None:
        raise ValidationFailure("Sprint dates are required")
    if start_date > end_date:
        raise ValidationFailure(
            "start_date must be on or before end_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def initial_status(start_date: date, end_date: date, today: date) -> SprintStatus:
    """A sprint created inside its own window starts out ACTIVE."""
    if start_date <= today <= end_date:
        return SprintStatus.ACTIVE
    return SprintStatus.UPCOMING


def next_status(status: SprintStatus, start_date: date, end_date: date, today: date) -> Optional[SprintStatus]:
    """
    Decide the date-driven transition for one sprint, or None to leave it.

    One step per call: an UPCOMING sprint whose whole window already lies
    in the past is activated now and completed on the following sweep.
    """
    validate_dates(start_date, end_date)
    if status == SprintStatus.UPCOMING and start_date <= today:
        return SprintStatus.ACTIVE
    if status == SprintStatus.ACTIVE and end_date < today:
        return SprintStatus.COMPLETED
    return None


def reminder_window(today: date, lookahead_days: int):
    """First and last end date that qualify for a "sprint ending soon" reminder."""
    return today, today + timedelta(days=lookahead_days)


def reminder_due(
    status: SprintStatus,
    end_date: date,
    last_reminder_date: Optional[date],
    today: date,
    lookahead_days: int,
) -> bool:
    """True when an ACTIVE sprint ends within the look-ahead window and has not been reminded today."""
    if status != SprintStatus.ACTIVE:
        return False
    if last_reminder_date == today:
        return False
    first, last = reminder_window(today, lookahead_days)
    return first <= end_date <= last
