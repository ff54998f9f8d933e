"""Engine and session factory for the result database."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .db_models import Base


def create_result_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""

    if url.startswith("sqlite") and (url.endswith(":memory:") or url in {"sqlite://", "sqlite:///"}):
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def init_db(engine: Engine) -> sessionmaker[Session]:
    """Create tables and return a session factory bound to ``engine``."""

    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


__all__ = ["create_result_engine", "init_db"]
