"""
Database connection and session management.

The engine is built on first use so that importing this module never reads
settings. An invalid environment then surfaces as ConfigError from
``load_settings`` instead of failing at import time.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import load_settings


@lru_cache
def get_engine() -> Engine:
    """Return the process-wide engine for DATABASE_URL."""
    return create_engine(
        load_settings().database_url,
        pool_pre_ping=True,
        echo=False,
    )


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db() -> None:
    """
    Create the daemon's tables if they do not exist yet.
    """
    from app.models import Base

    Base.metadata.create_all(bind=get_engine())


def database_health() -> dict[str, Any]:
    """
    Return structured database health details.
    """
    engine = get_engine()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {
            "ok": True,
            "dialect": engine.dialect.name,
            "database": engine.url.database,
        }
    except SQLAlchemyError as exc:
        return {
            "ok": False,
            "error": str(exc),
        }
