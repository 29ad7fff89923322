"""Endpoints polled by worker processes."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from friendlai_core.dispatch import DispatchService
from friendlai_core.schemas import FetchRequest, JobOut, ResultReport, WorkerHardware

from ..auth import get_worker_id
from ..db import get_dispatch
from ..metrics import inc
from ..schemas import RegistrationOut, RegistrationResponse, ReportResponse

router = APIRouter()


@router.post("/worker/fetch-query")
def fetch_query(
    body: FetchRequest,
    worker_id: str = Depends(get_worker_id),
    dispatch: DispatchService = Depends(get_dispatch),
):
    """Claim the next job for this worker.

    Returns the job object, or an empty list when nothing matches.
    """
    outcome = dispatch.fetch_job(worker_id, body.available_models, body.preferred_models)
    if outcome.reclaimed:
        inc("jobs_reclaimed_total", value=outcome.reclaimed)
    if outcome.job is None:
        inc("jobs_fetch_empty_total")
        return []
    inc("jobs_claimed_total", {"tier": outcome.tier})
    return JobOut.from_job(outcome.job)


@router.put("/worker/query/{job_id}", response_model=ReportResponse)
def report_result(
    job_id: str,
    body: ResultReport,
    worker_id: str = Depends(get_worker_id),
    dispatch: DispatchService = Depends(get_dispatch),
):
    job = dispatch.report_result(
        job_id,
        worker_id,
        body.status,
        result=body.result,
        error=body.error_message,
        processing_time_ms=body.processing_time_ms,
    )
    inc("job_reports_total", {"status": str(body.status)})
    return ReportResponse(job=JobOut.from_job(job))


@router.get("/worker/models", response_model=List[str])
def recent_models(
    window_days: Optional[int] = Query(default=None, ge=0),
    dispatch: DispatchService = Depends(get_dispatch),
):
    """Distinct models requested recently; workers use this to decide what to install."""
    return dispatch.list_recent_models(window_days)


@router.post("/worker/register", response_model=RegistrationResponse)
def register(
    body: WorkerHardware,
    worker_id: str = Depends(get_worker_id),
    dispatch: DispatchService = Depends(get_dispatch),
):
    registration_id = dispatch.register_worker(worker_id, body.model_dump())
    if registration_id is None:
        return RegistrationResponse(status="ignored")
    return RegistrationResponse(status="success", registration_id=registration_id)


@router.get("/worker/registrations", response_model=List[RegistrationOut])
def registrations(
    limit: int = Query(default=100, ge=1, le=1000),
    dispatch: DispatchService = Depends(get_dispatch),
):
    return [
        RegistrationOut(
            id=r.id,
            worker_id=r.worker_id,
            cpu=r.cpu,
            platform=r.platform,
            memory=r.memory,
            gpu=r.gpu,
            gpu_memory=r.gpu_memory,
            registered=r.registered_at,
        )
        for r in dispatch.list_worker_registrations(limit)
    ]
