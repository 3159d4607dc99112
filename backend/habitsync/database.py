import logging
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create Base class
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    In-memory SQLite databases share one connection (``StaticPool``) so the
    schema survives across sessions and worker threads.
    """
    connect_args = kwargs.pop("connect_args", {})
    if "sqlite" in db_url:
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        if ":memory:" in db_url:
            kwargs.setdefault("poolclass", StaticPool)

    return create_engine(db_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps row attributes readable after the
    session closes; the gateway serialises rows to dicts outside of it.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def db_session(session_factory: Any):
    """Session context manager: commit on success, rollback on error, always close.

    Usage:
        with db_session(factory) as db:
            db.add(row)
    """
    session = session_factory()

    try:
        yield session
        session.commit()
        logger.debug("Database session committed successfully")

    except Exception as e:
        session.rollback()
        logger.error(f"Database session rolled back due to error: {e}")
        raise

    finally:
        session.close()


def initialize_database(engine: Engine) -> None:
    """Create all backend tables on *engine*."""
    # Import models so they are registered with Base
    from habitsync.models import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
