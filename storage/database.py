"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages the connection to the shared coordination database.

- Builds the SQLAlchemy engine from DATABASE_URL
- Provides the session factory and transaction scope
- Creates the schema for `init-db`

============================================================
DATABASE REQUIREMENTS
============================================================
- Any SQLAlchemy URL (PostgreSQL in production, SQLite for tests)
- The only cross-process primitive used is a conditional UPDATE,
  so no advisory locks or SERIALIZABLE isolation are needed

============================================================
"""

import os
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dotenv import load_dotenv

from storage.models import Base
from storage.repositories.exceptions import TransactionError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite:///blotter_coordination.db"


def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("DATABASE_URL")
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"DATABASE_URL not set, using default: {url}")
    return url


def create_database_engine(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create SQLAlchemy engine for the coordination database.

    Pool arguments are ignored for SQLite, which uses its own pool.

    Args:
        database_url: SQLAlchemy URL (defaults to DATABASE_URL)
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_timeout: Seconds to wait for available connection
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    database_url = database_url or get_database_url()
    url = make_url(database_url)

    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    if url.get_backend_name() == "sqlite":
        # Election and ingestion run their DB work on worker threads
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )
    else:
        engine = create_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Database connection established")

    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    """Build the session factory used by services."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception and re-raises it unchanged.
    A failed commit is raised as TransactionError.

    Usage:
        with session_scope(factory) as session:
            LeaseRepository(session).try_acquire(...)
            # Commits automatically at end
    """
    session = session_factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    else:
        try:
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise TransactionError(
                repository_name="session_scope",
                phase="commit",
                original_error=str(e)
            ) from e
    finally:
        session.close()


def verify_database_connection(engine: Engine) -> bool:
    """
    Verify database connection is working.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.info("Database connection verified successfully")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False


def create_all_tables(engine: Engine) -> None:
    """
    Create all coordination tables that do not exist yet.

    Raises:
        SQLAlchemyError: if table creation fails
    """
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info(
        "Database tables ready: %s", ", ".join(sorted(Base.metadata.tables))
    )


__all__ = [
    "DEFAULT_DATABASE_URL",
    "get_database_url",
    "create_database_engine",
    "get_session_factory",
    "session_scope",
    "verify_database_connection",
    "create_all_tables",
]
