from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.dialects import mysql
from sqlmodel import SQLModel, Field, Column, Text

from .status import JobStatus


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Naive UTC with microseconds on every backend; MySQL DATETIME defaults to whole
# seconds, which would collapse the 1us step lifecycle.touch relies on.
Timestamp = DateTime(timezone=False).with_variant(mysql.DATETIME(fsp=6), "mysql", "mariadb")


def timestamp_column() -> Column:
    return Column(Timestamp, nullable=False, index=True)


class Job(SQLModel, table=True):
    id: str = Field(primary_key=True)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    model: str = Field(index=True)
    owner: str = Field(default="anonymous", index=True)
    status: int = Field(default=int(JobStatus.PENDING), index=True)  # see status.JobStatus
    result: Optional[str] = Field(default=None, sa_column=Column(Text))
    error: Optional[str] = Field(default=None, sa_column=Column(Text))
    processing_time_ms: Optional[int] = None
    worker_id: Optional[str] = Field(default=None, index=True)  # last claimant/reporter
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())


class Lease(SQLModel, table=True):
    """One row per claim or report. Never updated after insert."""
    id: str = Field(primary_key=True)
    job_id: str = Field(index=True)
    worker_id: str = Field(index=True)
    status: int
    processing_time_ms: Optional[int] = None
    error: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())


class CompositeJob(SQLModel, table=True):
    __tablename__ = "composite_job"

    id: str = Field(primary_key=True)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    owner: str = Field(default="anonymous", index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())


class CompositeMember(SQLModel, table=True):
    __tablename__ = "composite_member"

    composite_id: str = Field(primary_key=True)
    job_id: str = Field(primary_key=True, index=True)
    position: int = Field(default=0)  # request order


class WorkerRegistration(SQLModel, table=True):
    __tablename__ = "worker_registration"

    id: str = Field(primary_key=True)
    worker_id: str = Field(index=True)
    cpu: Optional[str] = None
    platform: Optional[str] = None
    memory: Optional[str] = None
    gpu: Optional[str] = None
    gpu_memory: Optional[str] = None
    registered_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())
