# ucoin_rewards/db.py
"""Database session and connection management for the rewards ledger"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from ucoin_rewards.config import settings
from ucoin_rewards.models.db import Base

logger = logging.getLogger(__name__)

class Database:
    """Database connection and session manager for the ledger"""

    def __init__(self):
        """Initialize database manager state"""
        self._engine = None
        self._SessionLocal = None

    def _get_connection_string(self, url: Optional[str] = None) -> str:
        """
        Resolve the database connection string.

        Args:
            url: Explicit URL, falls back to the DATABASE_URL setting

        Raises:
            ValueError: If no database URL is configured
        """
        connection_string = url or settings.DATABASE_URL
        if not connection_string:
            logger.error("Failed to initialize database connection: DATABASE_URL is not set")
            raise ValueError("DATABASE_URL setting is required")
        return connection_string

    def init(self, url: Optional[str] = None) -> None:
        """
        Initialize database connection and create tables.

        This should be called once at application startup.

        Raises:
            SQLAlchemyError: If database initialization fails
        """
        try:
            connection_string = self._get_connection_string(url)
            self._engine = create_engine(connection_string)
            Base.metadata.create_all(self._engine)
            self._SessionLocal = sessionmaker(bind=self._engine, expire_on_commit=False)
            logger.info("Database initialized successfully")

        except SQLAlchemyError as e:
            logger.error(f"Database initialization failed: {e}")
            raise

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of database operations.

        Usage:
            with db.session() as session:
                session.add(some_object)

        Yields:
            Session: SQLAlchemy database session

        Raises:
            RuntimeError: If database not initialized
            SQLAlchemyError: If database operations fail
        """
        if not self._SessionLocal:
            raise RuntimeError("Database not initialized. Call init() first.")

        session = self._SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session(self) -> Session:
        """
        Get a new database session.

        Raises:
            RuntimeError: If database not initialized
        """
        if not self._SessionLocal:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._SessionLocal()

    def dispose(self) -> None:
        """
        Clean up database connections.
        Should be called during application shutdown.
        """
        if self._engine:
            self._engine.dispose()
            self._engine = None
            self._SessionLocal = None

# Global database instance
db = Database()
