# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Database engine and sessions.

One `Database` is built per process by the app factory and kept on
`app.state`; its engine owns the connection pool that every request reuses.
Nothing here opens a pool per request.
"""
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import ServiceUnavailableError
from .logs import logger

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def build_engine(url: str, pool_size: int = 10) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection keeps the in-memory database alive
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=pool_size,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


class Database:
    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        connect_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        engine: Optional[Engine] = None,
    ):
        self.url = url
        self.engine = engine or build_engine(url, pool_size)
        self.connect_attempts = max(1, connect_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._connected = False
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)

    def connect(self) -> None:
        """Ping the database, retrying with exponential backoff."""
        if self._connected:
            return
        for attempt in range(self.connect_attempts):
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                self._connected = True
                logger.info("Database connected (%s)", self.engine.url.get_backend_name())
                return
            except OperationalError as e:
                retries_left = self.connect_attempts - attempt - 1
                logger.error("Database connection attempt %d failed: %s (retries left: %d)", attempt + 1, e, retries_left)
                if retries_left == 0:
                    raise ServiceUnavailableError("Database unavailable") from e
                self._sleep(self.backoff_seconds * (2 ** attempt))

    def create_all(self) -> None:
        # Tables and their indexes come from the model metadata
        from . import models  # noqa: F401

        self.connect()
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        self.connect()
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def health_check(self) -> dict:
        checked_at = utcnow().isoformat()
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {"status": "healthy", "timestamp": checked_at, "backend": self.engine.url.get_backend_name()}
        except OperationalError as e:
            logger.error("Database health check failed: %s", e)
            return {"status": "unhealthy", "timestamp": checked_at, "error": "database unreachable"}

    def close(self) -> None:
        self.engine.dispose()
        self._connected = False
        logger.info("Database connection pool closed")
