from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from friendlai_core.logging_config import configure_logging, request_id_var

# Configure structured logging before anything else
configure_logging("api")

from friendlai_core.database import Database
from friendlai_core.dispatch import DispatchService
from friendlai_core.errors import DispatchError, StoreError

from .settings import Settings, settings
from .db import init_db
from .metrics import inc, observe
from .routers.health import router as health_router
from .routers.jobs import router as jobs_router
from .routers.composites import router as composites_router
from .routers.worker import router as worker_router

logger = logging.getLogger("friendlai.api")


# ── Request ID middleware ──────────────────────────────────────────
# Propagates a unique ID through every request for log correlation.

class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = rid
        request_id_var.set(rid)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        response.headers["X-Request-ID"] = rid

        logger.info(
            "%s %s %s %.0fms",
            request.method, request.url.path,
            response.status_code, duration_ms,
            extra={
                "event": "http.request",
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "request_id": rid,
            },
        )

        inc("http_requests_total", {"method": request.method, "status": str(response.status_code)})
        observe("http_request_duration_ms", duration_ms)

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def _dispatch_error(request: Request, exc: DispatchError):
    if isinstance(exc, StoreError):
        logger.error(
            "Store error on %s %s: %s", request.method, request.url.path, exc.message,
            extra={"event": "http.store_error", "path": request.url.path},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message},
    )


def create_app(app_settings: Settings = settings, database: Optional[Database] = None) -> FastAPI:
    """Build the API.

    The job store is opened when the app starts and disposed when it shuts
    down; routers reach it through ``app.state``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = database or Database(app_settings.db_url)
        db.open()
        init_db(db)
        app.state.database = db
        app.state.dispatch = DispatchService(
            db,
            stale_after=timedelta(seconds=app_settings.stale_after_seconds),
            reject_terminal_reports=app_settings.reject_terminal_reports,
            recent_models_window_days=app_settings.recent_models_window_days,
            fallback_delay=timedelta(seconds=app_settings.fallback_delay_seconds),
        )
        logger.info(
            "Dispatch API started",
            extra={"event": "api.startup", "stale_after_seconds": app_settings.stale_after_seconds},
        )
        try:
            yield
        finally:
            db.close()
            logger.info("Dispatch API stopped", extra={"event": "api.shutdown"})

    app = FastAPI(title="friendlai dispatch API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DispatchError, _dispatch_error)

    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(jobs_router, prefix="/api", tags=["jobs"])
    app.include_router(composites_router, prefix="/api", tags=["multi"])
    app.include_router(worker_router, prefix="/api", tags=["worker"])
    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    main()
