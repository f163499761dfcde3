"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages the database engine and sessions.

- Builds the engine from DATABASE_URL
- Provides session and transaction context managers
- Creates the schema and verifies the connection at startup

============================================================
DESIGN PRINCIPLES
============================================================
- Explicit transaction boundaries: commit only on success,
  roll back on ANY exception
- No hidden globals: the Database object is passed to the
  components that need it
- PostgreSQL in production, SQLite for local runs and tests

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.exceptions import DatabaseError
from storage.models.base import Base


logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///risk_core.db"


# =============================================================
# CONFIGURATION
# =============================================================

def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgresql+asyncpg"):
        # The risk core uses the sync driver
        url = url.replace("postgresql+asyncpg", "postgresql")

    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"DATABASE_URL not set, using default: {url}")

    return url


def _engine_options(url: str, echo: bool) -> dict:
    if url.startswith("sqlite"):
        options = {
            "echo": echo,
            "connect_args": {"check_same_thread": False},
        }
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            options["poolclass"] = StaticPool
        return options

    return {
        "echo": echo,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


# =============================================================
# DATABASE
# =============================================================

class Database:
    """
    Engine plus session factory.

    Usage:
        db = Database.from_env()
        db.create_all()
        with db.transaction_scope() as session:
            PositionRepository(session).add(position)
    """

    def __init__(self, url: str, echo: bool = False):
        self._url = url
        self._engine: Engine = create_engine(url, **_engine_options(url, echo))
        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )

        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug("Database connection established")

        logger.info(f"Database engine created for: {url.split('@')[-1]}")

    @classmethod
    def from_env(cls, echo: bool = False) -> "Database":
        return cls(get_database_url(), echo=echo)

    @property
    def engine(self) -> Engine:
        return self._engine

    # ---------------------------------------------------------
    # SESSION MANAGEMENT
    # ---------------------------------------------------------

    def new_session(self) -> Session:
        """Caller is responsible for committing and closing."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Session with automatic rollback on error and cleanup.

        Does NOT commit; use transaction_scope() for writes.
        """
        session = self.new_session()
        try:
            yield session
        except Exception as e:
            logger.error(f"Error in database session, rolling back: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """
        Explicit transaction boundary.

        Commits only if no exception occurs.
        Rolls back on ANY exception and re-raises it unchanged.
        """
        session = self.new_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    # ---------------------------------------------------------
    # INITIALIZATION
    # ---------------------------------------------------------

    def verify_connection(self) -> bool:
        """
        Raises:
            DatabaseError: if the database cannot be reached
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified")
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise DatabaseError(f"Cannot connect to database: {e}", cause=e) from e

    def create_all(self) -> None:
        """Create all tables of the risk core."""
        # Registers every model with Base.metadata
        import storage.models  # noqa: F401

        try:
            Base.metadata.create_all(bind=self._engine)
            logger.info("Database tables created")
        except SQLAlchemyError as e:
            logger.critical(f"Failed to create database tables: {e}")
            raise DatabaseError(f"Table creation failed: {e}", cause=e) from e

    def dispose(self) -> None:
        self._engine.dispose()


def init_database(url: Optional[str] = None, echo: bool = False) -> Database:
    """Create the Database, verify the connection and create the schema."""
    database = Database(url or get_database_url(), echo=echo)
    database.verify_connection()
    database.create_all()
    return database
