"""
Database engine and session management.

Provides engine creation with settings appropriate to SQLite or PostgreSQL,
idempotent schema creation and a transactional session scope.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, pool
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import ConfigurationError
from .tables import Base

logger = logging.getLogger(__name__)


def create_database_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements
        pool_size: Connections kept in the pool (non-SQLite only)
        max_overflow: Connections allowed beyond pool_size (non-SQLite only)

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If the database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        url = make_url(database_url)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid database URL: {e}") from e

    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        if not in_memory:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        # A shared in-memory database only exists on a single connection
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=pool.StaticPool if in_memory else pool.NullPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )

    logger.info(f"Database engine created for backend {url.get_backend_name()}")
    return engine


def init_database(engine: Engine) -> None:
    """Create all tables if they don't exist. Safe to call repeatedly."""
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise ConfigurationError(f"Failed to initialize database: {e}") from e


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory used by the SQL repositories."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Provide a transactional scope: commit on success, roll back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
