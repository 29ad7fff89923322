"""Dispatch service - the boundary clients and workers talk to.

Transport-agnostic: the FastAPI routers translate HTTP into these calls,
and tests drive it directly.

Usage::

    db = Database("sqlite:///friendlai.db").open()
    db.create_all()
    dispatch = DispatchService(db)

    job_id = dispatch.submit_job("Explain TCP", "llama3:latest", "user1")
    job = dispatch.fetch_job("worker1", available=["llama3:latest"], preferred=[])
    dispatch.report_result(job.id, "worker1", 3, result="TCP is ...", processing_time_ms=1200)
"""
from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .database import Database
from .errors import StoreError, ValidationError
from .leases import LeaseLedger
from .lifecycle import StatusStateMachine
from .matching import DEFAULT_FALLBACK_DELAY, FetchOutcome, MatchingEngine, ModelMatcher, default_matchers
from .models import CompositeJob, Job, Lease, WorkerRegistration, utcnow
from .status import DEFAULT_STALE_AFTER, REPORTABLE_STATUSES, JobStatus, parse_status
from .store import JobStore

logger = logging.getLogger("friendlai.core.dispatch")

DEFAULT_RECENT_MODELS_WINDOW_DAYS = 30


class DispatchService:
    def __init__(
        self,
        db: Database,
        *,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        reject_terminal_reports: bool = False,
        recent_models_window_days: int = DEFAULT_RECENT_MODELS_WINDOW_DAYS,
        fallback_delay: timedelta = DEFAULT_FALLBACK_DELAY,
        matchers: Optional[Sequence[ModelMatcher]] = None,
    ):
        self.db = db
        self.lifecycle = StatusStateMachine(stale_after, reject_terminal_reports)
        self.store = JobStore(db, self.lifecycle)
        self.ledger = LeaseLedger()
        if matchers is None:
            matchers = default_matchers(fallback_delay)
        self.engine = MatchingEngine(self.lifecycle, self.ledger, matchers)
        self.recent_models_window_days = recent_models_window_days

    # ── Client operations ──────────────────────────────────────────

    def submit_job(self, prompt: str, model: str, owner: Optional[str]) -> str:
        return self.store.create_job(prompt, model, owner)

    def submit_composite_job(self, prompt: str, models: Sequence[str], owner: Optional[str]) -> str:
        return self.store.create_composite_job(prompt, owner, models)

    def get_job(self, job_id: str) -> Job:
        return self.store.get_job(job_id)

    def get_composite(self, composite_id: str) -> Tuple[CompositeJob, List[Job]]:
        composite = self.store.get_composite(composite_id)
        return composite, self.store.list_composite_members(composite_id)

    def list_jobs(self, owner: Optional[str]) -> List[Job]:
        return self.store.list_jobs_for_owner(owner)

    def retry_job(self, job_id: str) -> Job:
        return self.store.reset_to_pending(job_id)

    def list_leases(self, job_id: str) -> List[Lease]:
        self.store.get_job(job_id)
        with self.db.session() as session:
            return self.ledger.list_for_job(session, job_id)

    # ── Worker operations ──────────────────────────────────────────

    def fetch_job(
        self,
        worker_id: str,
        available: Optional[Sequence[str]],
        preferred: Optional[Sequence[str]] = None,
    ) -> FetchOutcome:
        """Sweep, select, claim and lease in one transaction."""
        with self.store.transaction("fetch job") as session:
            outcome = self.engine.fetch_job(session, worker_id, preferred, available)
        if outcome.job is None:
            logger.debug(
                "No job for worker %s", worker_id,
                extra={"event": "job.fetch_empty", "worker_id": worker_id},
            )
        return outcome

    def report_result(
        self,
        job_id: str,
        worker_id: str,
        status,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[float] = None,
    ) -> Job:
        try:
            status = parse_status(status)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid status {status!r}") from e
        if status not in REPORTABLE_STATUSES:
            raise ValidationError(f"Status {int(status)} cannot be reported")

        elapsed = int(round(processing_time_ms)) if processing_time_ms is not None else None
        job = self.store.set_result(
            job_id,
            status,
            result=result,
            error=error,
            processing_time_ms=elapsed,
            worker_id=worker_id,
        )

        logger.info(
            "Job %s reported %d by %s", job_id, int(status), worker_id,
            extra={
                "event": "job.reported",
                "job_id": job_id,
                "worker_id": worker_id,
                "status": int(status),
                "processing_time_ms": elapsed,
            },
        )
        self._record_report_lease(job_id, worker_id, status, elapsed, error)
        return job

    def list_recent_models(self, window_days: Optional[int] = None) -> List[str]:
        days = window_days if window_days is not None else self.recent_models_window_days
        if days < 0:
            raise ValidationError("window_days must be >= 0")
        return self.store.distinct_models_since(days)

    def queue_depth(self) -> dict:
        """Job counts keyed by status code."""
        return self.store.count_by_status()

    # ── Fleet telemetry (best effort) ──────────────────────────────

    def register_worker(self, worker_id: str, hardware: Optional[dict] = None) -> Optional[str]:
        hardware = hardware or {}
        registration = WorkerRegistration(
            id=str(uuid.uuid4()),
            worker_id=worker_id,
            cpu=hardware.get("cpu"),
            platform=hardware.get("platform"),
            memory=hardware.get("memory"),
            gpu=hardware.get("gpu"),
            gpu_memory=hardware.get("gpu_memory"),
            registered_at=utcnow(),
        )
        try:
            with self.store.transaction("register worker") as session:
                session.add(registration)
        except StoreError:
            logger.warning(
                "Worker registration not stored", exc_info=True,
                extra={"event": "worker.register_failed", "worker_id": worker_id},
            )
            return None

        logger.info(
            "Worker registered",
            extra={"event": "worker.registered", "worker_id": worker_id},
        )
        return registration.id

    def list_worker_registrations(self, limit: int = 100) -> List[WorkerRegistration]:
        query = select(WorkerRegistration).order_by(WorkerRegistration.registered_at.desc()).limit(limit)
        try:
            with self.db.session() as session:
                return list(session.exec(query).all())
        except SQLAlchemyError as e:
            raise StoreError("Failed to list worker registrations") from e

    def _record_report_lease(
        self,
        job_id: str,
        worker_id: str,
        status: JobStatus,
        processing_time_ms: Optional[int],
        error: Optional[str],
    ) -> None:
        try:
            with self.store.transaction("record lease") as session:
                self.ledger.record(session, job_id, worker_id, status, processing_time_ms, error)
        except StoreError:
            logger.warning(
                "Lease bookkeeping failed for job %s", job_id, exc_info=True,
                extra={"event": "lease.record_failed", "job_id": job_id, "worker_id": worker_id},
            )
