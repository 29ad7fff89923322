from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):
    host: str = os.getenv("FRIENDLAI_HOST", os.getenv("HOST", "https://friendlai.xyz"))
    worker_id: Optional[str] = os.getenv("WORKER_ID") or None
    worker_id_file: str = os.getenv("WORKER_ID_FILE", "worker.json")

    polling_interval_seconds: float = float(os.getenv("POLLING_INTERVAL_SECONDS", "20"))
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

    ollama_host: str = os.getenv("OLLAMA_HOST", "http://localhost:11434")
    generate_timeout_seconds: float = float(os.getenv("GENERATE_TIMEOUT_SECONDS", "600"))
    pull_timeout_seconds: float = float(os.getenv("PULL_TIMEOUT_SECONDS", "600"))

    pull_required_models: bool = os.getenv("PULL_REQUIRED_MODELS", "false").lower() in ("1", "true", "yes")


settings = Settings()
