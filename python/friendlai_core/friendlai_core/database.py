"""Store handle shared by the dispatch components.

A ``Database`` is constructed explicitly, opened on process startup and
closed on shutdown, and passed to whatever needs it. Nothing in the core
reaches for a module-level engine.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from . import models  # noqa: F401  (registers tables on SQLModel.metadata)

logger = logging.getLogger("friendlai.core.database")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def resolve_db_url(db_url: str, fallback_path: str = "/tmp/friendlai.db") -> str:
    """Make sure a SQLite file's parent directory exists.

    Falls back to ``fallback_path`` when the configured directory cannot be
    created. Non-SQLite URLs are returned unchanged.
    """
    if not db_url.startswith("sqlite"):
        return db_url

    sqlite_path = db_url.replace("sqlite:///", "", 1)
    if sqlite_path and sqlite_path != ":memory:" and sqlite_path != db_url and not sqlite_path.startswith("file:"):
        db_file = Path(sqlite_path)
        try:
            db_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            fallback = Path(fallback_path)
            fallback.parent.mkdir(parents=True, exist_ok=True)
            fallback_url = f"sqlite:///{fallback.as_posix()}"
            logger.warning(
                "SQLite path not writable; falling back to %s", fallback_path,
                extra={
                    "event": "db.sqlite.fallback_tmp",
                    "configured_db_url": db_url,
                    "fallback_db_url": fallback_url,
                },
            )
            return fallback_url

    return db_url


class Database:
    def __init__(self, db_url: str):
        self.url = resolve_db_url(db_url)
        self._engine: Optional[Engine] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    def open(self) -> "Database":
        if self._engine is not None:
            return self

        kwargs: dict = {"pool_pre_ping": True}
        if self.is_sqlite:
            kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            }
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        self._engine = create_engine(self.url, **kwargs)
        logger.info(
            "Database opened",
            extra={"event": "db.open", "dialect": self._engine.dialect.name},
        )
        return self

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("Database closed", extra={"event": "db.close"})

    def create_all(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

