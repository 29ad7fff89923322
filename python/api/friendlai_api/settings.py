from __future__ import annotations

from pydantic import BaseModel
import logging
import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings(BaseModel):
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "4000"))

    cors_origins: list[str] = [o.strip() for o in os.getenv("API_CORS_ORIGINS", "http://localhost:4200").split(",") if o.strip()]

    db_url: str = os.getenv("DB_URL", "sqlite:////data/friendlai.sqlite")

    # Processing jobs untouched for this long go back to pending on the next fetch.
    stale_after_seconds: int = int(os.getenv("STALE_AFTER_SECONDS", "900"))

    recent_models_window_days: int = int(os.getenv("RECENT_MODELS_WINDOW_DAYS", "30"))

    # Installed-only workers wait this long before taking a job, so a worker
    # with the model loaded gets first pick within one poll cycle.
    fallback_delay_seconds: int = int(os.getenv("FALLBACK_DELAY_SECONDS", "30"))

    # Off: a late or duplicate worker report overwrites the previous result.
    reject_terminal_reports: bool = _env_bool("REJECT_TERMINAL_REPORTS")


settings = Settings()

logger = logging.getLogger("friendlai.api.settings")
if settings.stale_after_seconds < 60:
    logger.warning(
        "STALE_AFTER_SECONDS=%d is shorter than a typical generation; jobs may be re-dispatched while still running",
        settings.stale_after_seconds,
        extra={"event": "settings.stale_after.short"},
    )
