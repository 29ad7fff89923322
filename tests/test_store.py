"""Tests for the job store: creation, composites, listings and status writes."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.dialects import mysql
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from friendlai_core.errors import NotFound, StoreError, ValidationError
from friendlai_core.models import CompositeJob, CompositeMember, Job, Lease
from friendlai_core.status import JobStatus


@pytest.fixture
def store(dispatch):
    return dispatch.store


def _count(database, model):
    with database.session() as session:
        return len(session.exec(select(model)).all())


# =============================================================================
# SINGLE JOBS
# =============================================================================

def test_create_job_is_pending(store):
    job_id = store.create_job("Explain TCP", "modelA", "user1")
    job = store.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.prompt == "Explain TCP"
    assert job.model == "modelA"
    assert job.owner == "user1"
    assert job.result is None and job.error is None


@pytest.mark.parametrize("prompt,model", [("", "m"), ("   ", "m"), ("p", ""), (None, "m")])
def test_create_job_requires_prompt_and_model(store, database, prompt, model):
    with pytest.raises(ValidationError):
        store.create_job(prompt, model, "u")
    assert _count(database, Job) == 0


def test_missing_owner_is_anonymous(store):
    job_id = store.create_job("p", "m", None)
    assert store.get_job(job_id).owner == "anonymous"


def test_get_unknown_job(store):
    with pytest.raises(NotFound):
        store.get_job("nope")


def test_list_jobs_most_recently_updated_first(store):
    first = store.create_job("one", "m", "u")
    second = store.create_job("two", "m", "u")
    store.create_job("other owner", "m", "someone-else")

    store.set_result(first, JobStatus.SUCCEEDED, result="r")

    ids = [job.id for job in store.list_jobs_for_owner("u")]
    assert ids == [first, second]


# =============================================================================
# COMPOSITE JOBS
# =============================================================================

def test_composite_creates_one_job_per_model(store):
    composite_id = store.create_composite_job("Compare", "u", ["alpha", "gamma", "beta"])
    members = store.list_composite_members(composite_id)

    assert [job.model for job in members] == ["gamma", "beta", "alpha"]
    assert all(job.prompt == "Compare" and job.owner == "u" for job in members)
    assert all(job.status == JobStatus.PENDING for job in members)


def test_composite_needs_two_distinct_models(store, database):
    with pytest.raises(ValidationError):
        store.create_composite_job("p", "u", ["only"])
    with pytest.raises(ValidationError):
        store.create_composite_job("p", "u", ["same", "same", " same "])
    assert _count(database, Job) == 0


def test_composite_deduplicates_models(store):
    composite_id = store.create_composite_job("p", "u", ["a", "b", "a"])
    assert sorted(job.model for job in store.list_composite_members(composite_id)) == ["a", "b"]


def test_composite_is_all_or_nothing(store, database):
    inserts = {"n": 0}

    def fail_second_insert(mapper, connection, target):
        inserts["n"] += 1
        if inserts["n"] == 2:
            raise OperationalError("INSERT INTO job", {}, Exception("forced failure"))

    event.listen(Job, "before_insert", fail_second_insert)
    try:
        with pytest.raises(StoreError):
            store.create_composite_job("p", "u", ["m1", "m2", "m3"])
    finally:
        event.remove(Job, "before_insert", fail_second_insert)

    assert inserts["n"] == 2
    assert _count(database, Job) == 0
    assert _count(database, CompositeJob) == 0
    assert _count(database, CompositeMember) == 0


def test_members_of_unknown_composite(store):
    with pytest.raises(NotFound):
        store.list_composite_members("missing")


# =============================================================================
# STATUS WRITES
# =============================================================================

def test_reset_to_pending_from_succeeded(store):
    job_id = store.create_job("p", "m", "u")
    store.set_result(job_id, JobStatus.SUCCEEDED, result="answer")

    store.reset_to_pending(job_id)

    job = store.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.result == "answer"


def test_reset_unknown_job(store):
    with pytest.raises(NotFound):
        store.reset_to_pending("missing")


def test_set_result_on_unknown_job(store):
    with pytest.raises(NotFound):
        store.set_result("missing", JobStatus.FAILED, error="x")


def test_updated_at_increases_on_each_write(store):
    job_id = store.create_job("p", "m", "u")
    stamps = [store.get_job(job_id).updated_at]
    store.set_result(job_id, JobStatus.FAILED, error="boom")
    stamps.append(store.get_job(job_id).updated_at)
    store.reset_to_pending(job_id)
    stamps.append(store.get_job(job_id).updated_at)
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 3


def test_distinct_models_respects_window(store, database):
    old = store.create_job("p", "ancient", "u")
    store.create_job("p", "fresh", "u")
    store.create_job("p", "fresh", "u")
    with database.session() as session:
        job = session.get(Job, old)
        job.created_at = job.created_at - timedelta(days=365)
        session.add(job)
        session.commit()

    assert store.distinct_models_since(30) == ["fresh"]
    assert store.distinct_models_since(800) == ["ancient", "fresh"]


# =============================================================================
# TIMESTAMPS
# =============================================================================

def test_timestamps_round_trip_naive_with_microseconds(database):
    stamp = datetime(2025, 1, 1, 12, 0, 0, 123456)
    with database.session() as session:
        session.add(Job(id="j1", prompt="p", model="m", owner="u", status=0,
                        created_at=stamp, updated_at=stamp))
        session.commit()

    with database.session() as session:
        job = session.get(Job, "j1")
    assert job.updated_at == stamp
    assert job.updated_at.tzinfo is None


def test_default_timestamps_insert(database):
    with database.session() as session:
        session.add(Job(id="j1", prompt="p", model="m", owner="u", status=0))
        session.add(Lease(id="l1", job_id="j1", worker_id="w1", status=1))
        session.commit()

    with database.session() as session:
        assert session.get(Job, "j1").created_at.tzinfo is None
        assert session.get(Lease, "l1").created_at is not None


def test_mysql_keeps_microseconds():
    for column in (Job.__table__.c.created_at, Job.__table__.c.updated_at, Lease.__table__.c.created_at):
        assert column.type.compile(dialect=mysql.dialect()) == "DATETIME(6)"
