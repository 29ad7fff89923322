"""Job Store - durable record of jobs and composite batches.

Owns every Job and CompositeJob row. Status changes are delegated to the
``StatusStateMachine`` so that the store and the matching engine follow
the same rules.

Usage::

    store = JobStore(database, StatusStateMachine())
    job_id = store.create_job("Explain TCP", "llama3:latest", "user1")
    store.set_result(job_id, JobStatus.SUCCEEDED, result="TCP is ...")
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .database import Database
from .errors import NotFound, StoreError, ValidationError
from .lifecycle import StatusStateMachine
from .models import CompositeJob, CompositeMember, Job, utcnow
from .status import JobStatus

logger = logging.getLogger("friendlai.core.store")

ANONYMOUS_OWNER = "anonymous"


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value)


def _distinct_models(models: Iterable[str]) -> List[str]:
    cleaned = (str(m).strip() for m in models or [] if m is not None)
    return list(dict.fromkeys(m for m in cleaned if m))


def new_job(prompt: str, model: str, owner: Optional[str]) -> Job:
    now = utcnow()
    return Job(
        id=str(uuid.uuid4()),
        prompt=prompt,
        model=model.strip(),
        owner=owner or ANONYMOUS_OWNER,
        status=int(JobStatus.PENDING),
        created_at=now,
        updated_at=now,
    )


class JobStore:
    def __init__(self, db: Database, lifecycle: Optional[StatusStateMachine] = None):
        self.db = db
        self.lifecycle = lifecycle or StatusStateMachine()

    @contextmanager
    def transaction(self, action: str) -> Iterator[Session]:
        """Session that commits on success and wraps driver errors."""
        with self.db.session() as session:
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(
                    "Store failure during %s: %s", action, e,
                    extra={"event": "store.error", "action": action},
                )
                raise StoreError(f"Failed to {action}") from e

    # ── Creation ───────────────────────────────────────────────────

    def create_job(self, prompt: str, model: str, owner: Optional[str] = None) -> str:
        prompt = _require_text(prompt, "prompt")
        model = _require_text(model, "model")

        job = new_job(prompt, model, owner)
        with self.transaction("create job") as session:
            session.add(job)

        logger.info(
            "Job created",
            extra={"event": "job.created", "job_id": job.id, "owner": job.owner, "model": job.model},
        )
        return job.id

    def create_composite_job(self, prompt: str, owner: Optional[str], models: Iterable[str]) -> str:
        """Create one job per distinct model plus the grouping row.

        All rows land in one transaction; a failure on any member leaves
        nothing behind.
        """
        prompt = _require_text(prompt, "prompt")
        distinct = _distinct_models(models)
        if len(distinct) < 2:
            raise ValidationError("At least 2 distinct models are required")

        composite = CompositeJob(
            id=str(uuid.uuid4()),
            prompt=prompt,
            owner=owner or ANONYMOUS_OWNER,
            created_at=utcnow(),
        )
        with self.transaction("create composite job") as session:
            session.add(composite)
            for position, model in enumerate(distinct):
                job = new_job(prompt, model, composite.owner)
                session.add(job)
                session.flush()
                session.add(CompositeMember(composite_id=composite.id, job_id=job.id, position=position))

        logger.info(
            "Composite job created",
            extra={
                "event": "composite.created",
                "composite_id": composite.id,
                "owner": composite.owner,
                "models": distinct,
            },
        )
        return composite.id

    # ── Reads ──────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Job:
        with self.db.session() as session:
            job = session.get(Job, job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def get_composite(self, composite_id: str) -> CompositeJob:
        with self.db.session() as session:
            composite = session.get(CompositeJob, composite_id)
        if composite is None:
            raise NotFound(f"Composite job {composite_id} not found")
        return composite

    def list_jobs_for_owner(self, owner: Optional[str]) -> List[Job]:
        query = (
            select(Job)
            .where(Job.owner == (owner or ANONYMOUS_OWNER))
            .order_by(Job.updated_at.desc(), Job.id)
        )
        with self.db.session() as session:
            return list(session.exec(query).all())

    def list_composite_members(self, composite_id: str) -> List[Job]:
        self.get_composite(composite_id)
        query = (
            select(Job)
            .join(CompositeMember, CompositeMember.job_id == Job.id)
            .where(CompositeMember.composite_id == composite_id)
            .order_by(Job.model.desc(), Job.id)
        )
        with self.db.session() as session:
            return list(session.exec(query).all())

    def distinct_models_since(self, window_days: int = 30) -> List[str]:
        cutoff = utcnow() - timedelta(days=window_days)
        query = select(Job.model).where(Job.created_at >= cutoff).distinct().order_by(Job.model)
        with self.db.session() as session:
            return [m for m in session.exec(query).all() if m]

    def count_by_status(self) -> Dict[int, int]:
        query = select(Job.status, func.count()).group_by(Job.status)
        with self.db.session() as session:
            counts = dict(session.exec(query).all())
        return {int(s): counts.get(int(s), 0) for s in JobStatus if s is not JobStatus.RESERVED}

    # ── Status writes ──────────────────────────────────────────────

    def set_result(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        worker_id: Optional[str] = None,
    ) -> Job:
        with self.transaction("record result") as session:
            job = session.get(Job, job_id, with_for_update=True)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            changed = self.lifecycle.apply_report(
                job,
                JobStatus(status),
                result=result,
                error=error,
                processing_time_ms=processing_time_ms,
                worker_id=worker_id,
            )
            if changed:
                session.add(job)
        return job

    def reset_to_pending(self, job_id: str) -> Job:
        with self.transaction("reset job") as session:
            job = session.get(Job, job_id, with_for_update=True)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            self.lifecycle.reset(job)
            session.add(job)

        logger.info("Job reset to pending", extra={"event": "job.retry", "job_id": job_id})
        return job
