from __future__ import annotations

import logging
import signal
import threading
from typing import Optional

import httpx

from friendlai_core.logging_config import configure_logging, job_id_var
from friendlai_core.status import JobStatus

from .client import DispatchClient
from .hardware import describe_hardware
from .identity import load_worker_id
from .runtime import InferenceError, OllamaRuntime
from .settings import Settings, settings

logger = logging.getLogger("friendlai.worker")

MAX_ERROR_CHARS = 500


class Worker:
    """Poll the dispatch API, run prompts locally, report back."""

    def __init__(
        self,
        client: DispatchClient,
        runtime: OllamaRuntime,
        poll_interval: float = 20.0,
        stop_event: Optional[threading.Event] = None,
        pull_required_models: bool = False,
    ):
        self.client = client
        self.runtime = runtime
        self.poll_interval = poll_interval
        self.stop_event = stop_event or threading.Event()
        self.pull_required_models = pull_required_models

    def startup(self) -> None:
        version = self.runtime.version()
        installed = self.runtime.list_models()
        logger.info(
            "Ollama %s ready with %d models", version, len(installed),
            extra={"event": "worker.runtime_ready", "models": installed, "worker_id": self.client.worker_id},
        )

        try:
            self.client.register(describe_hardware())
        except httpx.HTTPError:
            logger.warning(
                "Worker registration failed; continuing", exc_info=True,
                extra={"event": "worker.register_failed", "worker_id": self.client.worker_id},
            )

        if self.pull_required_models:
            self.sync_models(installed)

    def sync_models(self, installed: list[str]) -> None:
        """Pull every recently requested model that is not installed yet."""
        try:
            required = self.client.required_models()
        except httpx.HTTPError:
            logger.warning("Could not fetch required models", exc_info=True,
                           extra={"event": "worker.required_models_failed"})
            return

        missing = [m for m in required if m not in installed]
        for model in missing:
            try:
                self.runtime.pull(model)
            except InferenceError:
                logger.error("Failed to pull %s", model, exc_info=True,
                             extra={"event": "worker.pull_failed", "model": model})

    def run_once(self) -> bool:
        """One poll/execute/report cycle. Returns True if a job was handled."""
        job = None
        try:
            available = self.runtime.list_models()
            preferred = self.runtime.loaded_models()
            job = self.client.fetch_job(available, preferred)
            if job is None:
                logger.debug("No pending jobs", extra={"event": "worker.idle"})
                return False
            self._process(job)
            return True
        except (httpx.HTTPError, InferenceError) as e:
            logger.error("Worker cycle failed: %s", e, exc_info=True, extra={"event": "worker.cycle_failed"})
            if job is not None:
                self._report_failure(job["id"], f"Main loop error: {e}")
            return False

    def _process(self, job: dict) -> None:
        token = job_id_var.set(job["id"])
        try:
            logger.info(
                "Processing job with model %s", job["model"],
                extra={"event": "worker.job_started", "job_id": job["id"], "model": job["model"]},
            )
            self.client.acknowledge(job["id"])
            try:
                generation = self.runtime.generate(job["model"], job["query"])
            except InferenceError as e:
                logger.error("Generation failed: %s", e, extra={"event": "worker.job_failed", "job_id": job["id"]})
                self._report_failure(job["id"], str(e))
                return

            self.client.report(
                job["id"],
                JobStatus.SUCCEEDED,
                result=generation.text,
                processing_time_ms=generation.duration_ms,
            )
            logger.info(
                "Job finished",
                extra={
                    "event": "worker.job_succeeded",
                    "job_id": job["id"],
                    "processing_time_ms": generation.duration_ms,
                },
            )
        finally:
            job_id_var.reset(token)

    def _report_failure(self, job_id: str, message: str) -> None:
        try:
            self.client.report(job_id, JobStatus.FAILED, error=message[:MAX_ERROR_CHARS])
        except httpx.HTTPError:
            logger.error("Could not report failure for job %s", job_id, exc_info=True,
                         extra={"event": "worker.report_failed", "job_id": job_id})

    def run(self) -> None:
        self.startup()
        while not self.stop_event.is_set():
            if not self.run_once():
                self.stop_event.wait(self.poll_interval)
        logger.info("Worker stopped", extra={"event": "worker.stopped"})


def build_worker(cfg: Settings, stop_event: Optional[threading.Event] = None) -> Worker:
    worker_id = load_worker_id(cfg.worker_id, cfg.worker_id_file)
    client = DispatchClient(cfg.host, worker_id, timeout=cfg.request_timeout_seconds)
    runtime = OllamaRuntime(
        cfg.ollama_host,
        generate_timeout=cfg.generate_timeout_seconds,
        pull_timeout=cfg.pull_timeout_seconds,
    )
    return Worker(
        client,
        runtime,
        poll_interval=cfg.polling_interval_seconds,
        stop_event=stop_event,
        pull_required_models=cfg.pull_required_models,
    )


def main():
    configure_logging("worker")
    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info("Received signal %d; finishing current job", signum, extra={"event": "worker.signal"})
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    worker = build_worker(settings, stop_event)
    try:
        worker.run()
    finally:
        worker.client.close()
        worker.runtime.close()


if __name__ == "__main__":
    main()
