"""Tests for the matching engine and the claim protocol."""

import threading
from datetime import timedelta

import pytest

from friendlai_core.dispatch import DispatchService
from friendlai_core.errors import ValidationError
from friendlai_core.matching import AvailableModelMatcher, ModelMatcher
from friendlai_core.models import utcnow
from friendlai_core.status import JobStatus


# =============================================================================
# TIERS
# =============================================================================

def test_preferred_tier_beats_older_available_job(dispatch):
    older = dispatch.submit_job("p", "big-model", "u")
    loaded = dispatch.submit_job("p", "small-model", "u")

    outcome = dispatch.fetch_job("w1", available=["big-model", "small-model"], preferred=["small-model"])

    assert outcome.job.id == loaded
    assert outcome.tier == "preferred"
    assert dispatch.get_job(older).status == JobStatus.PENDING


def test_falls_back_to_available_models(dispatch):
    job_id = dispatch.submit_job("p", "installed", "u")

    outcome = dispatch.fetch_job("w1", available=["installed"], preferred=["loaded-but-idle"])

    assert outcome.job.id == job_id
    assert outcome.tier == "available"


def test_fifo_within_a_tier(dispatch):
    first = dispatch.submit_job("p", "m", "u")
    second = dispatch.submit_job("p", "m", "u")

    assert dispatch.fetch_job("w1", available=["m"]).job.id == first
    assert dispatch.fetch_job("w2", available=["m"]).job.id == second
    assert dispatch.fetch_job("w3", available=["m"]).job is None


def test_no_matching_model_returns_nothing(dispatch):
    job_id = dispatch.submit_job("p", "other", "u")
    assert dispatch.fetch_job("w1", available=["m"], preferred=["m"]).job is None
    assert dispatch.get_job(job_id).status == JobStatus.PENDING


def test_empty_inventory_is_rejected(dispatch):
    dispatch.submit_job("p", "m", "u")
    with pytest.raises(ValidationError):
        dispatch.fetch_job("w1", available=[], preferred=["m"])
    with pytest.raises(ValidationError):
        dispatch.fetch_job("w1", available=None)


def test_custom_matcher_order(database):
    class NothingMatcher(ModelMatcher):
        tier = "nothing"

        def models(self, inventory):
            return []

    dispatch = DispatchService(database, matchers=[NothingMatcher(), AvailableModelMatcher()])
    job_id = dispatch.submit_job("p", "m", "u")

    outcome = dispatch.fetch_job("w1", available=["m"], preferred=["m"])
    assert outcome.job.id == job_id
    assert outcome.tier == "available"


# =============================================================================
# ACROSS WORKERS
# =============================================================================

def test_loaded_worker_wins_even_when_installed_only_worker_polls_first(database):
    dispatch = DispatchService(database, fallback_delay=timedelta(seconds=30))
    job_id = dispatch.submit_job("p", "m", "u")

    early = dispatch.fetch_job("installed", available=["m", "x"], preferred=["x"])
    assert early.job is None
    assert dispatch.get_job(job_id).status == JobStatus.PENDING

    outcome = dispatch.fetch_job("loaded", available=["m"], preferred=["m"])
    assert outcome.job.id == job_id
    assert outcome.tier == "preferred"
    assert dispatch.get_job(job_id).worker_id == "loaded"


def test_installed_only_worker_gets_job_after_fallback_delay(database, age_job):
    dispatch = DispatchService(database, fallback_delay=timedelta(seconds=30))
    job_id = dispatch.submit_job("p", "m", "u")
    age_job(job_id, minutes=1)

    outcome = dispatch.fetch_job("installed", available=["m", "x"], preferred=["x"])
    assert outcome.job.id == job_id
    assert outcome.tier == "available"


def test_fallback_delay_counts_from_requeue(database, age_job):
    dispatch = DispatchService(database, fallback_delay=timedelta(seconds=30))
    job_id = dispatch.submit_job("p", "m", "u")
    age_job(job_id, minutes=1)
    dispatch.retry_job(job_id)

    assert dispatch.fetch_job("installed", available=["m"], preferred=[]).job is None
    assert dispatch.fetch_job("loaded", available=["m"], preferred=["m"]).job.id == job_id


# =============================================================================
# CLAIM SIDE EFFECTS
# =============================================================================

def test_claim_flips_status_and_appends_lease(dispatch):
    job_id = dispatch.submit_job("p", "m", "u")
    created = dispatch.get_job(job_id).updated_at

    job = dispatch.fetch_job("w1", available=["m"]).job

    assert job.status == JobStatus.PROCESSING
    assert job.worker_id == "w1"
    assert job.updated_at >= created
    leases = dispatch.list_leases(job_id)
    assert [(lease.worker_id, lease.status) for lease in leases] == [("w1", int(JobStatus.PROCESSING))]


def test_lost_race_does_not_claim(dispatch, database):
    job_id = dispatch.submit_job("p", "m", "u")
    with database.session() as session:
        assert dispatch.lifecycle.claim(session, job_id, "w1", utcnow()) is True
        assert dispatch.lifecycle.claim(session, job_id, "w2", utcnow()) is False
        session.commit()
    assert dispatch.get_job(job_id).worker_id == "w1"


def test_concurrent_fetches_claim_once(dispatch):
    job_id = dispatch.submit_job("p", "m", "u")
    n_workers = 8
    barrier = threading.Barrier(n_workers)
    results = [None] * n_workers
    errors = []

    def poll(i):
        try:
            barrier.wait()
            results[i] = dispatch.fetch_job(f"w{i}", available=["m"], preferred=["m"]).job
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=poll, args=(i,)) for i in range(n_workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    claimed = [job for job in results if job is not None]
    assert len(claimed) == 1
    assert claimed[0].id == job_id
    assert len(dispatch.list_leases(job_id)) == 1


# =============================================================================
# STALENESS SWEEP
# =============================================================================

def test_stale_processing_job_is_reclaimed_on_next_fetch(dispatch, age_job):
    job_id = dispatch.submit_job("p", "m", "u")
    assert dispatch.fetch_job("w1", available=["m"]).job.id == job_id

    age_job(job_id, minutes=16)

    outcome = dispatch.fetch_job("w2", available=["m"])
    assert outcome.reclaimed == 1
    assert outcome.job.id == job_id
    assert outcome.job.worker_id == "w2"
    assert [lease.worker_id for lease in dispatch.list_leases(job_id)] == ["w1", "w2"]


def test_recent_processing_job_is_left_alone(dispatch, age_job):
    job_id = dispatch.submit_job("p", "m", "u")
    dispatch.fetch_job("w1", available=["m"])
    age_job(job_id, minutes=14)

    outcome = dispatch.fetch_job("w2", available=["m"])
    assert outcome.reclaimed == 0
    assert outcome.job is None
    assert dispatch.get_job(job_id).status == JobStatus.PROCESSING


def test_sweep_is_system_wide(dispatch, age_job, load_job):
    stuck = dispatch.submit_job("p", "model-nobody-has", "u")
    dispatch.fetch_job("w1", available=["model-nobody-has"])
    age_job(stuck, minutes=60)

    # A worker that cannot run the stuck job still triggers its reclamation.
    dispatch.fetch_job("w2", available=["unrelated"])
    assert load_job(stuck).status == JobStatus.PENDING


def test_reclaim_and_claim_in_one_fetch_still_advance_updated_at(dispatch, age_job, load_job):
    job_id = dispatch.submit_job("p", "m", "u")
    dispatch.fetch_job("w1", available=["m"])
    age_job(job_id, minutes=16)

    now = utcnow()
    with dispatch.db.session() as session:
        outcome = dispatch.engine.fetch_job(session, "w2", ["m"], ["m"], now=now)
        session.commit()

    assert outcome.reclaimed == 1
    job = load_job(job_id)
    assert job.status == JobStatus.PROCESSING
    assert job.worker_id == "w2"
    assert job.updated_at > now
