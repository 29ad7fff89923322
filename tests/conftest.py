"""Shared fixtures: a throwaway SQLite job store per test."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from friendlai_core.database import Database
from friendlai_core.dispatch import DispatchService
from friendlai_core.models import Job, utcnow


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'friendlai.sqlite'}").open()
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def dispatch(database):
    return DispatchService(database, fallback_delay=timedelta(0))


@pytest.fixture
def api_client(tmp_path):
    from friendlai_api import metrics
    from friendlai_api.main import create_app
    from friendlai_api.settings import Settings

    metrics.reset()
    cfg = Settings(
        db_url=f"sqlite:///{tmp_path / 'api.sqlite'}",
        cors_origins=["http://testserver"],
        fallback_delay_seconds=0,
    )
    with TestClient(create_app(cfg)) as client:
        yield client


@pytest.fixture
def age_job(database):
    """Push a job's updated_at into the past."""

    def _age(job_id, minutes):
        with database.session() as session:
            job = session.get(Job, job_id)
            job.updated_at = utcnow() - timedelta(minutes=minutes)
            session.add(job)
            session.commit()

    return _age


@pytest.fixture
def load_job(database):
    def _load(job_id):
        with database.session() as session:
            return session.get(Job, job_id)

    return _load
