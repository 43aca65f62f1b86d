"""
SQLAlchemy ORM Models
Defines the migration record and its ordered step state.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

from table_migrator.errors import InvalidStateTransitionError
from table_migrator.schemas import MigrationBatchRequest, RecordSummary, TableRef
from table_migrator.utils.helpers import isoformat_or_none, sanitize_string

Base = declarative_base()


class MigrationState(enum.IntEnum):
    """Ordered checkpoints a table passes through. Only moves forward."""

    PENDING = 0
    DDL_EXTRACTED = 1
    DDL_TRANSLATED = 2
    TABLE_CREATED = 3
    DATA_UNLOADED = 4
    DATA_LOADED = 5
    DONE = 6


# ============================================
# MIGRATION RECORD
# ============================================

class MigrationRecord(Base):
    """One table participating in a migration batch."""
    __tablename__ = 'migration_records'

    id = Column(Integer, primary_key=True)
    request_log_id = Column(String(64))

    # Source and target coordinates
    source_database = Column(String(255), nullable=False)
    source_schema = Column(String(255), nullable=False)
    source_table = Column(String(255), nullable=False)
    target_database = Column(String(255))
    target_schema = Column(String(255))
    target_table = Column(String(255))

    # Transfer parameters
    warehouse = Column(String(255))
    stage_location = Column(String(1024))
    source_file_format = Column(String(255))
    load_file_format = Column(String(32))
    location = Column(String(64), default='us')
    ddl_bucket = Column(String(255))
    translation_bucket = Column(String(255))
    is_schema = Column(Boolean, default=False)

    # Progress
    state = Column(Enum(MigrationState, name='migration_state'), nullable=False, default=MigrationState.PENDING)
    target_table_preexisting = Column(Boolean, nullable=False, default=False)
    row_processing_done = Column(Boolean, nullable=False, default=False)

    # Auxiliary
    workflow_name = Column(String(1024))
    source_ddl_path = Column(String(1024))
    translated_ddl_path = Column(String(1024))
    statement_handle = Column(String(255))
    last_error = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_migration_records_processing_done', 'row_processing_done'),
    )

    @classmethod
    def for_table(
        cls,
        request: MigrationBatchRequest,
        table_name: str,
        request_log_id: str = None
    ) -> 'MigrationRecord':
        """Create an unsaved record for one table of a batch. Target name equals source name."""
        return cls(
            request_log_id=request_log_id,
            source_database=request.source_database,
            source_schema=request.source_schema,
            source_table=table_name,
            target_database=request.target_database,
            target_schema=request.target_schema,
            target_table=table_name,
            warehouse=request.warehouse,
            stage_location=request.stage_location,
            source_file_format=request.source_file_format,
            load_file_format=request.load_file_format,
            location=request.location,
            ddl_bucket=request.ddl_bucket,
            translation_bucket=request.translation_bucket,
            is_schema=request.is_schema,
            state=MigrationState.PENDING,
            target_table_preexisting=False,
            row_processing_done=False
        )

    # ========================================
    # State transitions
    # ========================================

    @property
    def current_state(self) -> MigrationState:
        return MigrationState(self.state) if self.state is not None else MigrationState.PENDING

    def advance_to(self, state: MigrationState) -> None:
        """
        Move the record forward to `state`.

        Jumps over intermediate states are allowed. Re-entering the current
        state is a no-op.

        Raises:
            InvalidStateTransitionError: If `state` is behind the current state
        """
        state = MigrationState(state)
        current = self.current_state
        if state < current:
            raise InvalidStateTransitionError(
                f"Cannot move record {self.id} from {current.name} back to {state.name}",
                table_name=self.source_table
            )
        self.state = state
        self.row_processing_done = state is MigrationState.DONE

    def has_reached(self, state: MigrationState) -> bool:
        return self.current_state >= state

    def record_error(self, message: str) -> None:
        self.last_error = sanitize_string(message, max_length=4000)

    # ========================================
    # Step flags
    # ========================================

    @property
    def ddl_extracted(self) -> bool:
        return self.has_reached(MigrationState.DDL_EXTRACTED)

    @property
    def ddl_translated(self) -> bool:
        return not self.target_table_preexisting and self.has_reached(MigrationState.DDL_TRANSLATED)

    @property
    def table_created(self) -> bool:
        return self.has_reached(MigrationState.TABLE_CREATED)

    @property
    def data_unloaded(self) -> bool:
        return self.has_reached(MigrationState.DATA_UNLOADED)

    @property
    def data_loaded(self) -> bool:
        return self.has_reached(MigrationState.DATA_LOADED)

    @property
    def source_ref(self) -> TableRef:
        return TableRef(self.source_database, self.source_schema, self.source_table)

    @property
    def target_ref(self) -> TableRef:
        return TableRef(self.target_database, self.target_schema, self.target_table)

    def to_summary(self) -> RecordSummary:
        return RecordSummary(
            id=self.id,
            source_database=self.source_database,
            source_schema=self.source_schema,
            source_table=self.source_table,
            ddl_extracted=self.ddl_extracted,
            ddl_translated=self.ddl_translated,
            table_created=self.table_created,
            data_unloaded=self.data_unloaded,
            data_loaded=self.data_loaded,
            row_processing_done=bool(self.row_processing_done),
            created_at=isoformat_or_none(self.created_at),
            updated_at=isoformat_or_none(self.updated_at),
            is_success=bool(self.row_processing_done),
            request_log_id=self.request_log_id,
            last_error=self.last_error
        )

    def __repr__(self) -> str:
        return f"<MigrationRecord {self.id} {self.source_ref.qualified_name} {self.current_state.name}>"
