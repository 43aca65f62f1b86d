"""
Record Store Connection
SQLAlchemy engine and transactional sessions for the migration record store.
"""

import os
from contextlib import contextmanager
from typing import Dict, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from table_migrator.config_manager import ConfigManager
from table_migrator.database.models import Base
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///./data/migration.db'


class DatabaseConnection:
    """Engine plus session factory for one record store URL."""

    def __init__(self, db_config: Dict = None):
        """
        Args:
            db_config: `database` config section (url, busy_timeout, pool settings)
        """
        if db_config is None:
            db_config = ConfigManager().get_database_config()
        self._db_config = db_config
        self._engine: Engine = self._build_engine()
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info(f"Record store engine ready for {self._engine.url.render_as_string(hide_password=True)}")

    def _build_engine(self) -> Engine:
        url = self._db_config.get('url') or DEFAULT_DATABASE_URL
        echo = os.getenv('SQL_ECHO', 'false').lower() == 'true'

        if url.startswith('sqlite'):
            self._ensure_sqlite_dir(url)
            # Execution units write from worker threads
            return create_engine(
                url,
                connect_args={
                    'check_same_thread': False,
                    'timeout': self._db_config.get('busy_timeout', 30)
                },
                echo=echo
            )

        return create_engine(
            url,
            pool_size=self._db_config.get('pool_size', 5),
            max_overflow=self._db_config.get('max_overflow', 10),
            pool_timeout=self._db_config.get('pool_timeout', 30),
            pool_pre_ping=True,
            echo=echo
        )

    @staticmethod
    def _ensure_sqlite_dir(url: str) -> None:
        path = url.split(':///', 1)[-1]
        if path and path != ':memory:':
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)

    @property
    def engine(self) -> Engine:
        return self._engine

    def new_session(self) -> Session:
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Commit on success, roll back and re-raise on any error.

        Usage:
            with db.session_scope() as session:
                session.add(record)
        """
        session = self.new_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Record store transaction rolled back: {e}")
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create the record table and its indexes when missing."""
        Base.metadata.create_all(self._engine)
        logger.info("Migration record schema is in place")

    def drop_schema(self) -> None:
        Base.metadata.drop_all(self._engine)
        logger.warning("Migration record schema dropped")

    def check_connection(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Record store unreachable: {e}")
            return False

    def dispose(self) -> None:
        self._engine.dispose()
        logger.info("Record store connections released")


_db: DatabaseConnection = None


def get_db() -> DatabaseConnection:
    """Get the shared record store connection, creating the schema on first use."""
    global _db
    if _db is None:
        _db = DatabaseConnection()
        _db.create_schema()
    return _db
