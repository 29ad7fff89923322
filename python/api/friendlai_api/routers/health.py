"""Health, readiness, and metrics endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError

from friendlai_core.dispatch import DispatchService
from friendlai_core.status import JobStatus

from ..db import get_dispatch
from ..metrics import render_prometheus

router = APIRouter()
logger = logging.getLogger("friendlai.api.health")


@router.get("/health")
def health():
    """Liveness check: 200 while the process is up."""
    return {"ok": True}


@router.get("/health/ready")
def readiness(dispatch: DispatchService = Depends(get_dispatch)):
    """Readiness check: the job store answers, plus queue depth by status."""
    try:
        depth = dispatch.queue_depth()
    except SQLAlchemyError as e:
        logger.warning(
            "Readiness check failed: %s", e,
            extra={"event": "health.not_ready"},
        )
        return JSONResponse(
            content={"ok": False, "checks": {"database": f"error: {e}"}},
            status_code=503,
        )

    return {
        "ok": True,
        "checks": {"database": "ok"},
        "queue": {JobStatus(code).name.lower(): n for code, n in depth.items()},
    }


@router.get("/metrics")
def metrics():
    """Prometheus-compatible metrics endpoint."""
    return PlainTextResponse(render_prometheus(), media_type="text/plain; charset=utf-8")
