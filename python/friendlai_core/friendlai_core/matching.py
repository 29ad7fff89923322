"""Matching Engine - picks the next job for a polling worker.

A worker describes its inventory with two lists:

* ``preferred_models`` - loaded in the runtime right now, free to use.
* ``available_models`` - installed on disk, may need a model swap.

Matchers are tried in order; each one yields the model names its tier
accepts. Within a tier the oldest pending job wins. The available tier
holds a freshly queued job back for ``fallback_delay`` so that a worker
with the model already loaded, polling in the same cycle, gets it first
whichever request arrives first. Adding a tier (for
instance cost-based ranking) means adding a matcher, not another branch.

Select-and-claim runs inside the caller's transaction:

1. requeue stale PROCESSING jobs (one bulk UPDATE)
2. read a few candidate ids, ``FOR UPDATE SKIP LOCKED`` where supported
3. conditional ``UPDATE ... WHERE status = PENDING``, keep the first
   candidate whose affected-row count is 1
4. append a PROCESSING lease for the winner
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlmodel import Session, select

from .errors import ValidationError
from .leases import LeaseLedger
from .lifecycle import StatusStateMachine
from .models import Job, utcnow
from .status import JobStatus

logger = logging.getLogger("friendlai.core.matching")

CANDIDATE_BATCH_SIZE = 5
SKIP_LOCKED_DIALECTS = ("postgresql", "mysql", "mariadb", "oracle")


def _clean(models: Optional[Sequence[str]]) -> List[str]:
    cleaned = (str(m).strip() for m in models or [] if m is not None)
    return list(dict.fromkeys(m for m in cleaned if m))


@dataclass
class WorkerInventory:
    worker_id: str
    preferred_models: List[str] = field(default_factory=list)
    available_models: List[str] = field(default_factory=list)

    @classmethod
    def build(cls, worker_id: str, preferred_models, available_models) -> "WorkerInventory":
        available = _clean(available_models)
        if not available:
            raise ValidationError("availableModels must list at least one model")
        return cls(worker_id=worker_id, preferred_models=_clean(preferred_models), available_models=available)


class ModelMatcher(abc.ABC):
    """One preference tier."""

    tier: str = "base"
    # Jobs must have been pending at least this long to match this tier.
    min_pending: timedelta = timedelta(0)

    @abc.abstractmethod
    def models(self, inventory: WorkerInventory) -> List[str]:
        """Model names this tier will accept for ``inventory``."""


class PreferredModelMatcher(ModelMatcher):
    tier = "preferred"

    def models(self, inventory: WorkerInventory) -> List[str]:
        return inventory.preferred_models


class AvailableModelMatcher(ModelMatcher):
    tier = "available"

    def __init__(self, fallback_delay: timedelta = timedelta(0)):
        self.min_pending = fallback_delay

    def models(self, inventory: WorkerInventory) -> List[str]:
        return inventory.available_models


DEFAULT_FALLBACK_DELAY = timedelta(seconds=30)


def default_matchers(fallback_delay: timedelta = DEFAULT_FALLBACK_DELAY) -> tuple[ModelMatcher, ...]:
    return (PreferredModelMatcher(), AvailableModelMatcher(fallback_delay))


@dataclass
class FetchOutcome:
    job: Optional[Job] = None
    tier: Optional[str] = None
    reclaimed: int = 0


class MatchingEngine:
    def __init__(
        self,
        lifecycle: StatusStateMachine,
        ledger: LeaseLedger,
        matchers: Optional[Sequence[ModelMatcher]] = None,
        batch_size: int = CANDIDATE_BATCH_SIZE,
    ):
        self.lifecycle = lifecycle
        self.ledger = ledger
        self.matchers = tuple(matchers) if matchers is not None else default_matchers()
        self.batch_size = batch_size

    def fetch_job(
        self,
        session: Session,
        worker_id: str,
        preferred_models: Optional[Sequence[str]],
        available_models: Optional[Sequence[str]],
        now: Optional[datetime] = None,
    ) -> FetchOutcome:
        """Claim one job for ``worker_id``; does not commit."""
        inventory = WorkerInventory.build(worker_id, preferred_models, available_models)
        now = now or utcnow()

        outcome = FetchOutcome(reclaimed=self.lifecycle.sweep_stale(session, now))

        tried: set[str] = set()
        for matcher in self.matchers:
            models = [m for m in matcher.models(inventory) if m not in tried]
            tried.update(models)
            if not models:
                continue
            pending_since = now - matcher.min_pending if matcher.min_pending else None
            job = self._claim_first(session, models, inventory.worker_id, now, pending_since)
            if job is not None:
                outcome.job = job
                outcome.tier = matcher.tier
                logger.info(
                    "Job %s claimed by %s", job.id, inventory.worker_id,
                    extra={
                        "event": "job.claimed",
                        "job_id": job.id,
                        "worker_id": inventory.worker_id,
                        "model": job.model,
                        "tier": matcher.tier,
                    },
                )
                break

        return outcome

    def _candidates(self, session: Session, models: List[str], pending_since: Optional[datetime]) -> list:
        query = (
            select(Job.id, Job.updated_at)
            .where(Job.status == int(JobStatus.PENDING), Job.model.in_(models))
            .order_by(Job.created_at, Job.id)
            .limit(self.batch_size)
        )
        if pending_since is not None:
            query = query.where(Job.updated_at <= pending_since)
        if session.get_bind().dialect.name in SKIP_LOCKED_DIALECTS:
            query = query.with_for_update(skip_locked=True)
        return list(session.exec(query).all())

    def _claim_first(
        self,
        session: Session,
        models: List[str],
        worker_id: str,
        now: datetime,
        pending_since: Optional[datetime],
    ) -> Optional[Job]:
        for job_id, updated_at in self._candidates(session, models, pending_since):
            if not self.lifecycle.claim(session, job_id, worker_id, now, updated_at):
                logger.debug(
                    "Lost claim race for job %s", job_id,
                    extra={"event": "job.claim_lost", "job_id": job_id, "worker_id": worker_id},
                )
                continue
            self.ledger.record(session, job_id, worker_id, JobStatus.PROCESSING)
            return session.get(Job, job_id, populate_existing=True)
        return None
