"""Job status codes and the legal transitions between them.

Codes travel over the wire as small integers. ``RESERVED`` (2) is kept
only so that nobody reuses the value; no transition ever produces it.

::

    PENDING(0) ──claim──▶ PROCESSING(1) ──report──▶ SUCCEEDED(3) | FAILED(4)
        ▲                      │
        └──── stale sweep ─────┘
        ▲
        └──── retry (from any status)
"""
from __future__ import annotations

from datetime import timedelta
from enum import IntEnum


class JobStatus(IntEnum):
    PENDING = 0
    PROCESSING = 1
    RESERVED = 2
    SUCCEEDED = 3
    FAILED = 4

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})

# Statuses a worker may send in a report. PROCESSING acts as an
# acknowledgement that refreshes the job's updated_at.
REPORTABLE_STATUSES = frozenset({JobStatus.PROCESSING, JobStatus.SUCCEEDED, JobStatus.FAILED})

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.PENDING, JobStatus.PROCESSING, *TERMINAL_STATUSES}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

DEFAULT_STALE_AFTER = timedelta(minutes=15)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Whether ``current -> target`` is a normal lifecycle step.

    The manual retry override (any status back to PENDING) is not part of
    this graph and is always allowed.
    """
    if target is JobStatus.RESERVED:
        return False
    return target in _TRANSITIONS.get(JobStatus(current), frozenset())


def parse_status(value) -> JobStatus:
    """Coerce a wire value into a ``JobStatus``; raises ``ValueError``."""
    status = JobStatus(int(value))
    if status is JobStatus.RESERVED:
        raise ValueError("status 2 is reserved")
    return status
