"""
Database configuration and session management for the relational backend.

This module sets up the database connection using SQLAlchemy and provides
a session factory for database operations.
"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

# Base class for declarative models
Base = declarative_base()


def make_engine(url: str = DATABASE_URL):
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite connections are shared across the threads FastAPI runs sync
    handlers on, so same-thread checking is disabled for them.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(engine):
    """Create the tables if needed and return a session factory bound to the engine."""
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(session_factory):
    """
    Provide a transactional scope around a series of operations.

    Commits when the block exits normally, rolls back and re-raises otherwise.

    Usage:
        with session_scope(SessionLocal) as db:
            db.add(obj)
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
