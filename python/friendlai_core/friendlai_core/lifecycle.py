"""Status state machine: claims, reports, retries and the stale sweep.

Every status write in the system goes through ``StatusStateMachine`` so the
rules for ``updated_at`` and for the result/error fields live in one place.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session

from .errors import ConflictError, ValidationError
from .models import Job, utcnow
from .status import (
    DEFAULT_STALE_AFTER,
    REPORTABLE_STATUSES,
    JobStatus,
    can_transition,
)

logger = logging.getLogger("friendlai.core.lifecycle")

UNKNOWN_FAILURE = "Unknown error"


def next_stamp(previous: Optional[datetime], now: datetime) -> datetime:
    """``now``, or 1us past ``previous`` when the clock has not moved on."""
    if previous is None or now > previous:
        return now
    return previous + timedelta(microseconds=1)


def touch(job: Job, now: datetime) -> None:
    """Advance ``updated_at`` without ever moving it backwards."""
    job.updated_at = next_stamp(job.updated_at, now)


class StatusStateMachine:
    def __init__(
        self,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        reject_terminal_reports: bool = False,
    ):
        self.stale_after = stale_after
        self.reject_terminal_reports = reject_terminal_reports

    # ── PENDING -> PROCESSING ──────────────────────────────────────

    def claim(
        self,
        session: Session,
        job_id: str,
        worker_id: str,
        now: datetime,
        previous_updated_at: Optional[datetime] = None,
    ) -> bool:
        """Conditionally flip one job to PROCESSING.

        Returns False when another transaction got there first; the
        affected-row count is the only source of truth for who won.
        ``previous_updated_at`` is the stamp the candidate was read with,
        so a job swept and claimed in the same fetch still moves forward.
        """
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status == int(JobStatus.PENDING))
            .values(
                status=int(JobStatus.PROCESSING),
                updated_at=next_stamp(previous_updated_at, now),
                worker_id=worker_id,
            )
            .execution_options(synchronize_session=False)
        )
        return session.exec(stmt).rowcount == 1

    # ── PROCESSING -> PENDING (stale sweep) ────────────────────────

    def sweep_stale(self, session: Session, now: Optional[datetime] = None) -> int:
        """Requeue every PROCESSING job not updated within ``stale_after``.

        One conditional bulk UPDATE; returns the number of jobs reclaimed.
        """
        now = now or utcnow()
        cutoff = now - self.stale_after
        stmt = (
            update(Job)
            .where(Job.status == int(JobStatus.PROCESSING), Job.updated_at < cutoff)
            .values(status=int(JobStatus.PENDING), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        reclaimed = session.exec(stmt).rowcount or 0
        if reclaimed:
            logger.info(
                "Reclaimed %d stale jobs", reclaimed,
                extra={"event": "job.reclaimed", "reclaimed": reclaimed},
            )
        return reclaimed

    # ── Worker reports ─────────────────────────────────────────────

    def apply_report(
        self,
        job: Job,
        status: JobStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        worker_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Apply a worker report to ``job`` in memory.

        Reports that follow ``can_transition`` are applied silently. Others
        overwrite whatever is there (last write wins) and are logged, unless
        ``reject_terminal_reports`` is set and the job already finished. A
        PROCESSING report only refreshes ``updated_at`` on a job that is
        still PROCESSING.
        Returns whether the job row changed.
        """
        if status not in REPORTABLE_STATUSES:
            raise ValidationError(f"Status {int(status)} cannot be reported")

        now = now or utcnow()
        current = JobStatus(job.status)

        if status is JobStatus.PROCESSING:
            if current is not JobStatus.PROCESSING:
                logger.debug(
                    "Ignoring processing ack for job in status %d", current,
                    extra={"event": "job.ack_ignored", "job_id": job.id, "status": int(current)},
                )
                return False
            touch(job, now)
            if worker_id:
                job.worker_id = worker_id
            return True

        if not can_transition(current, status):
            # Off the normal graph: a report for a job never claimed, or a
            # late/duplicate report for a finished one.
            if self.reject_terminal_reports and current.is_terminal:
                raise ConflictError(f"Job {job.id} already finished with status {int(current)}")
            logger.info(
                "Applying out-of-order report %d -> %d", current, status,
                extra={
                    "event": "job.report_out_of_order",
                    "job_id": job.id,
                    "worker_id": worker_id,
                    "status": int(status),
                },
            )

        job.status = int(status)
        if status is JobStatus.SUCCEEDED:
            job.result = result if result is not None else ""
            job.error = None
        else:
            job.result = None
            job.error = error or UNKNOWN_FAILURE
        job.processing_time_ms = processing_time_ms
        if worker_id:
            job.worker_id = worker_id
        touch(job, now)
        return True

    # ── Manual override ────────────────────────────────────────────

    def reset(self, job: Job, now: Optional[datetime] = None) -> None:
        """Force ``job`` back to PENDING from any status; other fields stay."""
        job.status = int(JobStatus.PENDING)
        touch(job, now or utcnow())
