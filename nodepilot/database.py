"""
NodePilot - Database Connection Management
==========================================

This module handles database connections, session management, and provides
dependency injection for FastAPI endpoints.

The machine records and the persisted node status rows both live behind
this layer; the scheduler opens short-lived sessions through
`db_manager.get_session_context()` while API requests get theirs from
`get_db()`.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import get_settings, get_database_engine_kwargs, is_sqlite
from .models.database_models import create_all_tables


# =============================================================================
# LOGGER SETUP
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# DATABASE ENGINE SETUP
# =============================================================================

class DatabaseManager:
    """
    Manages database connections and sessions for the application.

    One instance (`db_manager`) is shared by the whole process; tests
    create their own pointed at an in-memory database.
    """

    def __init__(self):
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self.database_url: Optional[str] = None

    def initialize(self, database_url: Optional[str] = None) -> None:
        """
        Initialize the database engine and session factory.

        Args:
            database_url: Override for the configured DATABASE_URL
        """
        if self._engine is not None:
            logger.warning("Database already initialized, skipping...")
            return

        self.database_url = database_url or get_settings().database_url
        logger.info(f"Initializing database connection to: {self._get_safe_db_url()}")

        engine_kwargs = get_database_engine_kwargs(self.database_url)

        # In-memory SQLite must share a single connection or every session
        # would see its own empty database
        if self.database_url.startswith("sqlite") and ":memory:" in self.database_url:
            engine_kwargs["poolclass"] = StaticPool

        self._engine = create_engine(self.database_url, **engine_kwargs)

        if is_sqlite(self.database_url):
            self._setup_sqlite_optimizations()

        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self._engine
        )

        self._create_tables()

        logger.info("Database initialization completed successfully")

    def _get_safe_db_url(self) -> str:
        """Get database URL without exposing password in logs."""
        url = self.database_url or ""
        if "://" in url and "@" in url:
            scheme, rest = url.split("://", 1)
            credentials, host = rest.rsplit("@", 1)
            user = credentials.split(":")[0]
            return f"{scheme}://{user}:***@{host}"
        return url

    def _setup_sqlite_optimizations(self) -> None:
        """Configure SQLite for concurrent readers and enforced foreign keys."""
        @event.listens_for(self._engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

        logger.debug("SQLite optimizations configured")

    def _create_tables(self) -> None:
        """Create all database tables if they don't exist."""
        try:
            create_all_tables(self._engine)
            logger.info("Database tables created/verified successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise

    @property
    def is_initialized(self) -> bool:
        return self._session_factory is not None

    def get_session(self) -> Session:
        """
        Get a new database session.

        Always close sessions when you're done to prevent connection leaks.
        """
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        return self._session_factory()

    @contextmanager
    def get_session_context(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Usage:
            with db_manager.get_session_context() as session:
                machine = session.query(Machine).first()
        """
        session = self.get_session()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close all database connections."""
        if self._engine:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._engine

    def health_check(self) -> dict:
        """
        Check database health and return status information.

        Executes a trivial query and reports per-table row counts.
        """
        try:
            with self.get_session_context() as session:
                result = session.execute(text("SELECT 1 as health_check")).fetchone()

                from .models.database_models import get_table_counts
                table_counts = get_table_counts(session)

                return {
                    "status": "healthy",
                    "database_type": "sqlite" if is_sqlite(self.database_url or "") else "postgresql",
                    "connection_test": result[0] == 1,
                    "table_counts": table_counts
                }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }


# =============================================================================
# GLOBAL DATABASE MANAGER INSTANCE
# =============================================================================

db_manager = DatabaseManager()


# =============================================================================
# FASTAPI DEPENDENCY INJECTION
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides database sessions to endpoints.

    Usage in FastAPI endpoints:
        @router.get("/machines")
        def list_machines(db: Session = Depends(get_db)):
            return db.query(Machine).all()
    """
    with db_manager.get_session_context() as session:
        yield session


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def init_database(database_url: Optional[str] = None) -> None:
    """
    Initialize the database. Call this during application startup.

    It's designed to be safe to call multiple times.
    """
    try:
        db_manager.initialize(database_url)
        logger.info("Database initialization completed")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def close_database() -> None:
    """Close database connections. Call this during application shutdown."""
    try:
        db_manager.close()
        logger.info("Database connections closed successfully")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
