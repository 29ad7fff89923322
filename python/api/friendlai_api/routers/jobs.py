from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query

from friendlai_core.dispatch import DispatchService
from friendlai_core.schemas import JobCreate, JobOut

from ..auth import get_token_owner, resolve_owner
from ..db import get_dispatch
from ..metrics import inc
from ..schemas import JobCreateResponse, LeaseOut, RetryResponse

router = APIRouter()


@router.post("/queries", response_model=JobCreateResponse)
def create_job(
    body: JobCreate,
    authorization: Optional[str] = Header(default=None),
    dispatch: DispatchService = Depends(get_dispatch),
):
    owner = resolve_owner(body.user, authorization)
    job_id = dispatch.submit_job(body.prompt, body.model, owner)
    inc("jobs_submitted_total", {"kind": "single"})
    return JobCreateResponse(id=job_id)


@router.get("/queries", response_model=List[JobOut])
def list_jobs(
    user: Optional[str] = Query(default=None),
    token_owner: str = Depends(get_token_owner),
    dispatch: DispatchService = Depends(get_dispatch),
):
    """Jobs for the caller, most recently updated first."""
    owner = user.strip() if user and user.strip() else token_owner
    return [JobOut.from_job(job) for job in dispatch.list_jobs(owner)]


@router.get("/queries/{job_id}", response_model=JobOut)
def get_job(job_id: str, dispatch: DispatchService = Depends(get_dispatch)):
    return JobOut.from_job(dispatch.get_job(job_id))


@router.post("/queries/{job_id}/retry", response_model=RetryResponse)
def retry_job(job_id: str, dispatch: DispatchService = Depends(get_dispatch)):
    dispatch.retry_job(job_id)
    inc("jobs_retried_total")
    return RetryResponse()


@router.get("/queries/{job_id}/leases", response_model=List[LeaseOut])
def list_leases(job_id: str, dispatch: DispatchService = Depends(get_dispatch)):
    """Claim and report history for one job, oldest first."""
    return [
        LeaseOut(
            id=lease.id,
            job_id=lease.job_id,
            worker_id=lease.worker_id,
            status=lease.status,
            processing_time_ms=lease.processing_time_ms,
            error_message=lease.error,
            created=lease.created_at,
        )
        for lease in dispatch.list_leases(job_id)
    ]
