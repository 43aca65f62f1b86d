"""
Migration Record Store Module
Durable, write-through persistence for migration records.
"""

from typing import Iterable, List

from sqlalchemy.exc import SQLAlchemyError

from table_migrator.database.connection import DatabaseConnection, get_db
from table_migrator.database.models import MigrationRecord
from table_migrator.errors import PersistenceError
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)


class MigrationRecordStore:
    """
    Persists migration records one write at a time.

    Every save commits immediately. A save that would move a stored record
    to an earlier state is refused.
    """

    def __init__(self, db: DatabaseConnection = None):
        """Initialize with a database connection (defaults to the shared one)."""
        self.db = db or get_db()

    # ========================================
    # Writes
    # ========================================

    def save(self, record: MigrationRecord) -> MigrationRecord:
        """
        Insert or update a record and return it with its id assigned.

        Raises:
            PersistenceError: If the write fails or would regress the stored state
        """
        try:
            with self.db.session_scope() as session:
                self._save_in_session(session, record)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Error: Persisting migration record: {e}",
                table_name=record.source_table
            ) from e
        return record

    def save_all(self, records: Iterable[MigrationRecord]) -> List[MigrationRecord]:
        """Insert or update several records in a single transaction."""
        records = list(records)
        try:
            with self.db.session_scope() as session:
                for record in records:
                    self._save_in_session(session, record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Error: Persisting migration records: {e}") from e
        return records

    def _save_in_session(self, session, record: MigrationRecord) -> None:
        if record.id is None:
            session.add(record)
            session.flush()
            return

        stored = session.get(MigrationRecord, record.id)
        if stored is not None and stored.current_state > record.current_state:
            raise PersistenceError(
                f"Refusing to move record {record.id} from {stored.current_state.name} "
                f"back to {record.current_state.name}",
                table_name=record.source_table
            )

        merged = session.merge(record)
        session.flush()
        record.updated_at = merged.updated_at
        record.created_at = merged.created_at

    # ========================================
    # Reads
    # ========================================

    def find_by_ids(self, ids: Iterable[int]) -> List[MigrationRecord]:
        """Get records by id, ordered by id. Unknown ids are skipped."""
        ids = list(ids)
        if not ids:
            return []
        try:
            with self.db.session_scope() as session:
                return session.query(MigrationRecord).filter(
                    MigrationRecord.id.in_(ids)
                ).order_by(MigrationRecord.id).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Error: Reading migration records: {e}") from e

    def find_by_processing_done(self, done: bool) -> List[MigrationRecord]:
        """Get records whose row processing is (or is not) done."""
        try:
            with self.db.session_scope() as session:
                return session.query(MigrationRecord).filter(
                    MigrationRecord.row_processing_done == done
                ).order_by(MigrationRecord.id).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Error: Reading migration records: {e}") from e

    def get(self, record_id: int) -> MigrationRecord:
        """Get a single record or None."""
        records = self.find_by_ids([record_id])
        return records[0] if records else None
