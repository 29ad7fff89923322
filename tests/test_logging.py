import json
import logging

from friendlai_core.logging_config import ContextFilter, JSONFormatter, job_id_var


def _record(**extra):
    record = logging.LogRecord("friendlai.worker", logging.INFO, __file__, 10, "claimed %s", ("j1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_entry_carries_context_and_extras():
    token = job_id_var.set("job-9")
    try:
        record = _record(event="job.claimed", tier="preferred")
        ContextFilter("worker").filter(record)
        entry = json.loads(JSONFormatter().format(record))
    finally:
        job_id_var.reset(token)

    assert entry["msg"] == "claimed j1"
    assert entry["service"] == "worker"
    assert entry["job_id"] == "job-9"
    assert entry["event"] == "job.claimed"
    assert entry["tier"] == "preferred"
    assert "request_id" not in entry


def test_explicit_job_id_is_kept():
    token = job_id_var.set("from-context")
    try:
        record = _record(job_id="explicit")
        ContextFilter("api").filter(record)
    finally:
        job_id_var.reset(token)
    assert record.job_id == "explicit"
