"""HTTP client for the dispatch API, as seen from a worker."""
from __future__ import annotations

import logging
import time
from typing import List, Optional

import httpx

from friendlai_core.schemas import FetchRequest, ResultReport
from friendlai_core.status import JobStatus

logger = logging.getLogger("friendlai.worker.client")

REPORT_ATTEMPTS = 3
REPORT_BACKOFF_SECONDS = 2.0


class DispatchClient:
    def __init__(
        self,
        host: str,
        worker_id: str,
        http: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        report_backoff: float = REPORT_BACKOFF_SECONDS,
    ):
        self.worker_id = worker_id
        self.report_backoff = report_backoff
        self.http = http or httpx.Client(base_url=host.rstrip("/"), timeout=timeout)
        self.http.headers["Authorization"] = f"Bearer {worker_id}"

    def close(self) -> None:
        self.http.close()

    def fetch_job(self, available: List[str], preferred: List[str]) -> Optional[dict]:
        """Ask for work. None when the server has nothing for us."""
        body = FetchRequest(available_models=available, preferred_models=preferred)
        response = self.http.post("/api/worker/fetch-query", json=body.model_dump(by_alias=True))
        response.raise_for_status()
        data = response.json()
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    def report(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> None:
        """Send a status report, retrying transport failures."""
        report = ResultReport(
            status=int(status),
            result=result,
            error_message=error,
            processing_time_ms=processing_time_ms,
        )
        payload = report.model_dump()
        for attempt in range(1, REPORT_ATTEMPTS + 1):
            try:
                response = self.http.put(f"/api/worker/query/{job_id}", json=payload)
                response.raise_for_status()
                return
            except httpx.TransportError:
                if attempt == REPORT_ATTEMPTS:
                    raise
                logger.warning(
                    "Report for job %s failed (attempt %d/%d); retrying",
                    job_id, attempt, REPORT_ATTEMPTS,
                    extra={"event": "worker.report_retry", "job_id": job_id},
                )
                time.sleep(self.report_backoff * attempt)

    def acknowledge(self, job_id: str) -> None:
        self.report(job_id, JobStatus.PROCESSING)

    def required_models(self) -> List[str]:
        response = self.http.get("/api/worker/models")
        response.raise_for_status()
        return list(response.json() or [])

    def register(self, hardware: dict) -> None:
        response = self.http.post("/api/worker/register", json=hardware)
        response.raise_for_status()
