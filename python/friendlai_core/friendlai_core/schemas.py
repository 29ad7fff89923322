"""Wire schemas shared by the dispatch API and the worker.

Field names follow the JSON the browser client and existing workers
already speak (``query``, ``error_message``, ``availableModels`` ...).
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class JobOut(BaseModel):
    id: str
    query: str
    model: str
    user: str
    status: int
    result: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    worker_id: Optional[str] = None
    created: datetime
    updated: datetime

    @classmethod
    def from_job(cls, job) -> "JobOut":
        return cls(
            id=job.id,
            query=job.prompt,
            model=job.model,
            user=job.owner,
            status=int(job.status),
            result=job.result,
            error_message=job.error,
            processing_time_ms=job.processing_time_ms,
            worker_id=job.worker_id,
            created=job.created_at,
            updated=job.updated_at,
        )


class JobCreate(BaseModel):
    prompt: str = Field(default="", validation_alias=AliasChoices("query", "prompt"))
    model: str = ""
    user: Optional[str] = None


class CompositeCreate(BaseModel):
    prompt: str = Field(default="", validation_alias=AliasChoices("query", "prompt"))
    models: List[str] = []
    user: Optional[str] = None


class FetchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    available_models: List[str] = Field(default_factory=list, alias="availableModels")
    preferred_models: List[str] = Field(default_factory=list, alias="preferredModels")


class ResultReport(BaseModel):
    status: int
    result: Optional[str] = None
    error_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("errorMessage", "error_message", "error"),
    )
    processing_time_ms: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("processingTimeMs", "processing_time_ms"),
    )


class WorkerHardware(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cpu: Optional[str] = None
    platform: Optional[str] = None
    memory: Optional[str] = None
    gpu: Optional[str] = None
    gpu_memory: Optional[str] = Field(default=None, alias="gpuMemory")
