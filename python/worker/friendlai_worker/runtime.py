"""Thin client for the local Ollama runtime.

Only the four endpoints the worker needs: ``/api/tags`` (installed),
``/api/ps`` (loaded), ``/api/pull`` and ``/api/generate``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

logger = logging.getLogger("friendlai.worker.runtime")


class InferenceError(Exception):
    pass


class ModelNotFound(InferenceError):
    pass


class InferenceTimeout(InferenceError):
    pass


@dataclass
class Generation:
    text: str
    duration_ms: int
    done_reason: Optional[str] = None


def _ns_to_ms(value) -> int:
    return int(round((value or 0) / 1_000_000))


class OllamaRuntime:
    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        http: Optional[httpx.Client] = None,
        generate_timeout: float = 600.0,
        pull_timeout: float = 600.0,
    ):
        self.http = http or httpx.Client(base_url=base_url, timeout=30.0)
        self.generate_timeout = generate_timeout
        self.pull_timeout = pull_timeout

    def close(self) -> None:
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise InferenceTimeout(f"Ollama {path} timed out") from e
        except httpx.TransportError as e:
            raise InferenceError(f"Ollama unreachable: {e}") from e

        if response.status_code == 404:
            raise ModelNotFound(response.text or f"Ollama {path} returned 404")
        if response.is_error:
            raise InferenceError(f"Ollama {path} failed with {response.status_code}: {response.text}")
        return response

    def version(self) -> str:
        return self._request("GET", "/api/version").json().get("version", "")

    def list_models(self) -> List[str]:
        """Installed models."""
        models = self._request("GET", "/api/tags").json().get("models") or []
        return [m.get("model") or m.get("name") for m in models if m.get("model") or m.get("name")]

    def loaded_models(self) -> List[str]:
        """Models currently resident in memory."""
        models = self._request("GET", "/api/ps").json().get("models") or []
        return [m.get("model") or m.get("name") for m in models if m.get("model") or m.get("name")]

    def pull(self, model: str) -> None:
        logger.info("Pulling model %s", model, extra={"event": "runtime.pull", "model": model})
        self._request(
            "POST", "/api/pull",
            json={"model": model, "stream": False},
            timeout=self.pull_timeout,
        )
        logger.info("Pulled model %s", model, extra={"event": "runtime.pulled", "model": model})

    def generate(self, model: str, prompt: str) -> Generation:
        """Run ``prompt`` on ``model``, pulling the model first if it is missing."""
        if model not in self.list_models():
            logger.info(
                "Model %s not installed; pulling before generation", model,
                extra={"event": "runtime.model_missing", "model": model},
            )
            self.pull(model)

        data = self._request(
            "POST", "/api/generate",
            json={"model": model, "prompt": prompt, "stream": False},
            timeout=self.generate_timeout,
        ).json()

        generation = Generation(
            text=data.get("response", ""),
            duration_ms=_ns_to_ms(data.get("eval_duration")),
            done_reason=data.get("done_reason"),
        )
        logger.info(
            "Generated with %s in %dms", model, generation.duration_ms,
            extra={
                "event": "runtime.generated",
                "model": model,
                "processing_time_ms": generation.duration_ms,
            },
        )
        return generation
