"""SQLAlchemy base and engine/session factory construction.

Engines are built by the application entry point (``web.main`` lifespan) and
injected into the stores; nothing here connects at import time.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.env import env_bool, env_str


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""


def resolve_database_url(url: Optional[str] = None) -> str:
    """Return the configured DSN, enforcing PostgreSQL unless explicitly relaxed."""
    database_url = url or env_str("DATABASE_URL") or env_str("TEST_DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL or TEST_DATABASE_URL must be set.")
    allow_non_postgres = env_bool("DATABASE_ALLOW_NON_POSTGRES", False)
    if not database_url.lower().startswith("postgresql") and not allow_non_postgres:
        raise RuntimeError(f"DATABASE_URL must be a PostgreSQL DSN. Got: {database_url}")
    return database_url


def build_engine(url: Optional[str] = None) -> Engine:
    database_url = resolve_database_url(url)
    connect_args: Dict[str, Any] = {}
    engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        engine_kwargs.pop("pool_pre_ping")
        if ":memory:" in database_url:
            engine_kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **engine_kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_schema(engine: Engine) -> None:
    """Create the quota tables when they do not exist yet (local/dev and tests)."""
    import models  # noqa: F401  - registers mappers on Base.metadata

    Base.metadata.create_all(bind=engine)
