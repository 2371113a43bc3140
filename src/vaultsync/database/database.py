"""Database connection and session management."""

import os
from pathlib import Path
from typing import Generator, Optional
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base
from ..utils.logging import get_logger


logger = get_logger("database")

STATE_DIR_NAME = ".vaultsync"


def default_database_url(vault_path: str) -> str:
    """SQLite state database stored inside the (hidden) vault state directory."""
    db_path = Path(vault_path).expanduser().resolve() / STATE_DIR_NAME / "state.db"
    return f"sqlite:///{db_path}"


class DatabaseManager:
    """Database connection and session manager."""

    def __init__(self, database_url: str):
        """Initialize database manager."""
        self.database_url = database_url

        if self.database_url.startswith("sqlite"):
            self.engine = create_engine(
                self.database_url,
                poolclass=StaticPool,
                connect_args={
                    "check_same_thread": False,
                    "timeout": 20
                },
                echo=False
            )
        else:
            self.engine = create_engine(
                self.database_url,
                pool_pre_ping=True,
                pool_recycle=300,
                echo=False
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        logger.info("Database manager initialized", database_url=self.database_url)

    def create_tables(self):
        """Create all database tables."""
        try:
            if self.database_url.startswith("sqlite:///") and ":memory:" not in self.database_url:
                db_dir = os.path.dirname(self.database_url.replace("sqlite:///", "", 1))
                if db_dir:
                    os.makedirs(db_dir, exist_ok=True)

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error("Failed to create database tables", error=str(e))
            raise

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("Database transaction rolled back", error=str(e))
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        """Test database connection."""
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database connection test failed", error=str(e))
            return False

    def close(self):
        """Close database connections."""
        self.engine.dispose()
        logger.info("Database connections closed")


def init_database(database_url: str, create_tables: bool = True) -> DatabaseManager:
    """Create a database manager and make sure it is usable."""
    manager = DatabaseManager(database_url)

    if create_tables:
        manager.create_tables()

    if not manager.test_connection():
        raise RuntimeError("Failed to establish database connection")

    return manager
