"""Database configuration for the identifier cache."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """Create the process-wide engine (and its connection pool) for ``database_url``."""

    if database_url.startswith("sqlite"):
        options: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            options["poolclass"] = StaticPool
        return create_engine(database_url, future=True, **options)
    return create_engine(
        database_url,
        future=True,
        pool_size=10,
        max_overflow=10,
        pool_timeout=2,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def init_db(engine: Engine) -> None:
    """Create database tables if they do not already exist."""
    from . import models  # noqa: F401  # Import models for metadata registration

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency that provides a database session."""
    with session_scope(request.app.state.session_factory) as session:
        yield session
