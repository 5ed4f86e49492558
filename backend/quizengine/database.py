"""
Database connection and session management module.

Uses SQLAlchemy for ORM operations. Supports PostgreSQL (production/Docker)
and SQLite (local development fallback).
Provides the engine factory, session factory and dependency injection for
FastAPI routes. The engine is opened at import and disposed by the
application lifespan on shutdown.
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from quizengine.config import DATABASE_URL


def build_engine(url: str):
    """
    Create a SQLAlchemy engine configured for the given database type.

    SQLite does not support pool_size, max_overflow, or pool_pre_ping, and
    needs check_same_thread=False because FastAPI serves sync routes from a
    thread pool.
    """
    engine_kwargs = {"echo": False}

    if url.startswith("postgresql"):
        engine_kwargs.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
        })
    elif url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}

    new_engine = create_engine(url, **engine_kwargs)

    # Enable WAL mode and foreign keys for SQLite (better concurrency)
    if url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(DATABASE_URL)

# Session factory - creates new database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (portable across SQLite and PostgreSQL)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    """
    FastAPI dependency that provides a database session.

    Yields a session and ensures proper cleanup after request completion.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Create all database tables directly (used for SQLite local dev and tests).
    For PostgreSQL, use Alembic migrations instead.
    """
    # Importing the models registers them with Base.metadata
    import quizengine.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


def dispose_engine():
    """Close all pooled connections (called on application shutdown)."""
    engine.dispose()
