from __future__ import annotations

import uuid
from typing import List, Optional

from sqlmodel import Session, select

from .models import Lease, utcnow
from .status import JobStatus


class LeaseLedger:
    """Append-only history of claims and reports.

    The ledger never commits; callers decide which transaction a row
    belongs to.
    """

    def record(
        self,
        session: Session,
        job_id: str,
        worker_id: str,
        status: JobStatus,
        processing_time_ms: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Lease:
        lease = Lease(
            id=str(uuid.uuid4()),
            job_id=job_id,
            worker_id=worker_id,
            status=int(status),
            processing_time_ms=processing_time_ms,
            error=error,
            created_at=utcnow(),
        )
        session.add(lease)
        return lease

    def list_for_job(self, session: Session, job_id: str) -> List[Lease]:
        query = select(Lease).where(Lease.job_id == job_id).order_by(Lease.created_at, Lease.id)
        return list(session.exec(query).all())

