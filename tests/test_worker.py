"""Worker loop tests against fake dispatch and Ollama servers."""

import json

import httpx
import pytest

from friendlai_worker.client import DispatchClient
from friendlai_worker.identity import load_worker_id
from friendlai_worker.runtime import ModelNotFound, OllamaRuntime, _ns_to_ms
from friendlai_worker.worker import Worker


class FakeDispatch:
    """Records every request the worker makes to the dispatch API."""

    def __init__(self, jobs=None):
        self.jobs = list(jobs or [])
        self.reports = []
        self.fetches = []
        self.registrations = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/worker/fetch-query":
            self.fetches.append(json.loads(request.content))
            return httpx.Response(200, json=self.jobs.pop(0) if self.jobs else [])
        if path.startswith("/api/worker/query/"):
            body = json.loads(request.content)
            body["job_id"] = path.rsplit("/", 1)[-1]
            body["auth"] = request.headers.get("Authorization")
            self.reports.append(body)
            return httpx.Response(200, json={"status": "success"})
        if path == "/api/worker/register":
            self.registrations.append(json.loads(request.content))
            return httpx.Response(200, json={"status": "success"})
        if path == "/api/worker/models":
            return httpx.Response(200, json=["llama3", "mistral"])
        return httpx.Response(404)


class FakeOllama:
    def __init__(self, installed=("llama3",), loaded=(), generate_status=200):
        self.installed = list(installed)
        self.loaded = list(loaded)
        self.generate_status = generate_status
        self.pulled = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/version":
            return httpx.Response(200, json={"version": "0.5.0"})
        if path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m, "model": m} for m in self.installed]})
        if path == "/api/ps":
            return httpx.Response(200, json={"models": [{"name": m, "model": m} for m in self.loaded]})
        if path == "/api/pull":
            model = json.loads(request.content)["model"]
            self.pulled.append(model)
            self.installed.append(model)
            return httpx.Response(200, json={"status": "success"})
        if path == "/api/generate":
            if self.generate_status != 200:
                return httpx.Response(self.generate_status, text="model 'llama3' not found")
            return httpx.Response(200, json={
                "response": "TCP is a transport protocol.",
                "done": True,
                "done_reason": "stop",
                "eval_duration": 1_234_567_890,
            })
        return httpx.Response(404)


def _worker(dispatch, ollama, **kwargs):
    client = DispatchClient(
        "http://dispatch",
        "worker1",
        http=httpx.Client(base_url="http://dispatch", transport=httpx.MockTransport(dispatch)),
        report_backoff=0,
    )
    runtime = OllamaRuntime(http=httpx.Client(base_url="http://ollama", transport=httpx.MockTransport(ollama)))
    return Worker(client, runtime, poll_interval=0, **kwargs)


def _job(model="llama3"):
    return {"id": "job-1", "query": "Explain TCP", "model": model, "status": 1}


# =============================================================================
# WORK CYCLE
# =============================================================================

def test_successful_job_is_acked_then_reported(tmp_path):
    dispatch = FakeDispatch([_job()])
    ollama = FakeOllama(installed=["llama3", "mistral"], loaded=["llama3"])

    assert _worker(dispatch, ollama).run_once() is True

    assert dispatch.fetches == [{"availableModels": ["llama3", "mistral"], "preferredModels": ["llama3"]}]
    assert [r["status"] for r in dispatch.reports] == [1, 3]
    final = dispatch.reports[-1]
    assert final["job_id"] == "job-1"
    assert final["result"] == "TCP is a transport protocol."
    assert final["processing_time_ms"] == 1235
    assert final["auth"] == "Bearer worker1"


def test_generation_failure_reports_status_4():
    dispatch = FakeDispatch([_job()])
    ollama = FakeOllama(generate_status=500)

    assert _worker(dispatch, ollama).run_once() is True

    final = dispatch.reports[-1]
    assert final["status"] == 4
    assert "500" in final["error_message"]
    assert len(final["error_message"]) <= 500


def test_idle_cycle():
    dispatch = FakeDispatch()
    assert _worker(dispatch, FakeOllama()).run_once() is False
    assert dispatch.reports == []


def test_missing_model_is_pulled_before_generation():
    dispatch = FakeDispatch([_job(model="mistral")])
    ollama = FakeOllama(installed=["llama3"])

    _worker(dispatch, ollama).run_once()

    assert ollama.pulled == ["mistral"]
    assert dispatch.reports[-1]["status"] == 3


def test_startup_registers_and_pulls_required_models():
    dispatch = FakeDispatch()
    ollama = FakeOllama(installed=["llama3"])

    _worker(dispatch, ollama, pull_required_models=True).startup()

    assert len(dispatch.registrations) == 1
    assert "memory" in dispatch.registrations[0]
    assert ollama.pulled == ["mistral"]


# =============================================================================
# CLIENTS
# =============================================================================

def test_report_retries_transport_errors():
    calls = {"n": 0}

    def flaky(request):
        calls["n"] += 1
        if calls["n"] < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"status": "success"})

    client = DispatchClient(
        "http://dispatch", "w1",
        http=httpx.Client(base_url="http://dispatch", transport=httpx.MockTransport(flaky)),
        report_backoff=0,
    )
    client.report("job-1", 3, result="ok")
    assert calls["n"] == 3


def test_fetch_treats_empty_list_as_no_work():
    client = DispatchClient(
        "http://dispatch", "w1",
        http=httpx.Client(base_url="http://dispatch", transport=httpx.MockTransport(FakeDispatch())),
    )
    assert client.fetch_job(["llama3"], []) is None


def test_runtime_maps_404_to_model_not_found():
    runtime = OllamaRuntime(http=httpx.Client(
        base_url="http://ollama",
        transport=httpx.MockTransport(FakeOllama(installed=["llama3"], generate_status=404)),
    ))
    with pytest.raises(ModelNotFound):
        runtime.generate("llama3", "hi")


def test_ns_to_ms():
    assert _ns_to_ms(1_500_000) == 2
    assert _ns_to_ms(None) == 0


# =============================================================================
# IDENTITY
# =============================================================================

def test_worker_id_is_generated_once(tmp_path):
    id_file = tmp_path / "worker.json"
    first = load_worker_id(None, str(id_file))
    assert json.loads(id_file.read_text())["id"] == first
    assert load_worker_id(None, str(id_file)) == first


def test_explicit_worker_id_wins(tmp_path):
    assert load_worker_id("rig-7", str(tmp_path / "worker.json")) == "rig-7"
    assert not (tmp_path / "worker.json").exists()
