"""
Database connection and setup
SQLAlchemy engine for the catalog database
"""
from typing import Any, Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.models import Base
from config.settings import settings

T = TypeVar("T")

DATABASE_URL = settings.database_url

# SQLite connections are shared with the cache refresh threads
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    echo=False  # Set to True to see SQL queries
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)


def run_in_session(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run ``fn(session, *args, **kwargs)`` in a session of its own.

    Cache producers use this instead of the request session: a background
    refresh may run after the request that triggered it has finished.
    """
    db = SessionLocal()
    try:
        return fn(db, *args, **kwargs)
    finally:
        db.close()
