from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from bizzytrack.core.errors import InvalidTransitionError


JOB_STATUS_PENDING = "pending"
JOB_STATUS_ASSIGNED = "assigned"
JOB_STATUS_IN_PROGRESS = "in-progress"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_CANCELLED = "cancelled"

JOB_STATUSES = (
    JOB_STATUS_PENDING,
    JOB_STATUS_ASSIGNED,
    JOB_STATUS_IN_PROGRESS,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_CANCELLED,
)

# Edges a job may follow; the current status may always be repeated.
JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    JOB_STATUS_PENDING: frozenset({JOB_STATUS_ASSIGNED, JOB_STATUS_IN_PROGRESS, JOB_STATUS_CANCELLED}),
    JOB_STATUS_ASSIGNED: frozenset({JOB_STATUS_PENDING, JOB_STATUS_IN_PROGRESS, JOB_STATUS_CANCELLED}),
    JOB_STATUS_IN_PROGRESS: frozenset({JOB_STATUS_COMPLETED, JOB_STATUS_CANCELLED}),
    JOB_STATUS_COMPLETED: frozenset(),
    JOB_STATUS_CANCELLED: frozenset(),
}

OPEN_JOB_STATUSES = (JOB_STATUS_PENDING, JOB_STATUS_ASSIGNED, JOB_STATUS_IN_PROGRESS)

ASSIGNMENT_STATUS_ASSIGNED = "assigned"
ASSIGNMENT_STATUS_IN_PROGRESS = "in_progress"
ASSIGNMENT_STATUS_COMPLETED = "completed"
ASSIGNMENT_STATUS_CANCELLED = "cancelled"
ACTIVE_ASSIGNMENT_STATUSES = (ASSIGNMENT_STATUS_ASSIGNED, ASSIGNMENT_STATUS_IN_PROGRESS)

HANDOFF_STATUS_PENDING = "pending"
HANDOFF_STATUS_ACCEPTED = "accepted"
HANDOFF_STATUS_REJECTED = "rejected"


def is_terminal(status: str) -> bool:
    return status in (JOB_STATUS_COMPLETED, JOB_STATUS_CANCELLED)


def check_job_transition(current: str, requested: str) -> None:
    # Reject unknown statuses and edges missing from the lifecycle table.
    if requested not in JOB_TRANSITIONS:
        raise InvalidTransitionError(current, requested)
    if current == requested:
        return
    if requested not in JOB_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current, requested)


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Deleted:
    at: datetime | None
    by: str | None


ResourceState = Union[Active, Deleted]


def resource_state(*, is_active: bool, deleted_at: datetime | None, deleted_by: str | None) -> ResourceState:
    # Derive the lifecycle variant from the persisted soft-delete columns.
    if is_active:
        return Active()
    return Deleted(at=deleted_at, by=deleted_by)
