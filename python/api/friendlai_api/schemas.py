from __future__ import annotations

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

from friendlai_core.schemas import JobOut


class JobCreateResponse(BaseModel):
    id: str


class CompositeCreateResponse(BaseModel):
    composite_id: str = Field(serialization_alias="compositeId")


class CompositeOut(BaseModel):
    id: str
    query: str
    user: str
    created: datetime
    jobs: List[JobOut]


class RetryResponse(BaseModel):
    status: str = "success"
    message: str = "Query refreshed successfully"


class ReportResponse(BaseModel):
    status: str = "success"
    job: JobOut


class LeaseOut(BaseModel):
    id: str
    job_id: str
    worker_id: str
    status: int
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    created: datetime


class RegistrationResponse(BaseModel):
    status: str
    registration_id: Optional[str] = None


class RegistrationOut(BaseModel):
    id: str
    worker_id: str
    cpu: Optional[str] = None
    platform: Optional[str] = None
    memory: Optional[str] = None
    gpu: Optional[str] = None
    gpu_memory: Optional[str] = None
    registered: datetime
