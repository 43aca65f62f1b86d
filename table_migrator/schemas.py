"""
Request and Value Types Module
Immutable request objects and the per-call value structs exchanged between
the orchestrator, the execution units and the external collaborators.
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from table_migrator.errors import MigrationError, RequestValidationError
from table_migrator.utils.helpers import split_names


# ============================================
# BATCH REQUESTS
# ============================================

# camelCase request keys accepted alongside the snake_case ones
_REQUEST_ALIASES = {
    'sourceDatabaseName': 'source_database',
    'sourceSchemaName': 'source_schema',
    'sourceTableName': 'tables',
    'tableNames': 'tables',
    'targetDatabaseName': 'target_database',
    'targetSchemaName': 'target_schema',
    'gcsBucketForDDLs': 'ddl_bucket',
    'gcsBucketForTranslation': 'translation_bucket',
    'snowflakeStageLocation': 'stage_location',
    'snowflakeFileFormatValue': 'source_file_format',
    'bqLoadFileFormat': 'load_file_format',
    'bqTableExists': 'target_table_exists',
    'schema': 'is_schema',
    'isSchema': 'is_schema',
}

LOAD_FILE_FORMATS = ('CSV', 'PARQUET')


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized = {}
    for key, value in data.items():
        normalized[_REQUEST_ALIASES.get(key, key)] = value
    return normalized


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def _require(data: Dict[str, Any], names: Tuple[str, ...]) -> None:
    missing = [name for name in names if not str(data.get(name) or '').strip()]
    if missing:
        raise RequestValidationError(f"Missing required field(s): {', '.join(missing)}")


@dataclass(frozen=True)
class MigrationBatchRequest:
    """A request to migrate a set of tables from one source schema."""

    source_database: str
    source_schema: str
    target_database: str
    target_schema: str
    ddl_bucket: str
    translation_bucket: str
    tables: Tuple[str, ...] = ()
    is_schema: bool = False
    warehouse: Optional[str] = None
    location: str = 'us'
    stage_location: Optional[str] = None
    source_file_format: Optional[str] = None
    load_file_format: str = 'CSV'
    target_table_exists: bool = False

    DDL_FIELDS = (
        'source_database', 'source_schema', 'target_database',
        'target_schema', 'ddl_bucket', 'translation_bucket'
    )
    DATA_FIELDS = ('stage_location', 'source_file_format', 'load_file_format')

    @classmethod
    def from_dict(cls, data: Dict[str, Any], require_data_fields: bool = True) -> 'MigrationBatchRequest':
        """
        Build and validate a request from a JSON body.

        Args:
            data: Request body (snake_case or camelCase keys)
            require_data_fields: Whether the unload/load fields are mandatory

        Raises:
            RequestValidationError: If required fields are missing or invalid
        """
        if not isinstance(data, dict):
            raise RequestValidationError("Request body must be a JSON object")

        data = _normalize_keys(data)
        _require(data, cls.DDL_FIELDS)
        if require_data_fields:
            _require(data, cls.DATA_FIELDS)

        is_schema = _as_bool(data.get('is_schema', False))
        tables = tuple(split_names(data.get('tables')))
        if not is_schema and not tables:
            raise RequestValidationError("Table names are required unless is_schema is set")

        load_file_format = str(data.get('load_file_format') or 'CSV').strip().upper()
        if load_file_format not in LOAD_FILE_FORMATS:
            raise RequestValidationError(
                f"Unsupported load file format '{load_file_format}', expected one of {LOAD_FILE_FORMATS}"
            )

        return cls(
            source_database=str(data['source_database']).strip(),
            source_schema=str(data['source_schema']).strip(),
            target_database=str(data['target_database']).strip(),
            target_schema=str(data['target_schema']).strip(),
            ddl_bucket=str(data['ddl_bucket']).strip(),
            translation_bucket=str(data['translation_bucket']).strip(),
            tables=tables,
            is_schema=is_schema,
            warehouse=data.get('warehouse'),
            location=str(data.get('location') or 'us').strip(),
            stage_location=data.get('stage_location'),
            source_file_format=data.get('source_file_format'),
            load_file_format=load_file_format,
            target_table_exists=_as_bool(data.get('target_table_exists', False))
        )

    def ddl_request(self) -> 'DDLRequest':
        return DDLRequest(
            database=self.source_database,
            schema=self.source_schema,
            tables=self.tables,
            is_schema=self.is_schema
        )


@dataclass(frozen=True)
class UnloadBatchRequest:
    """A request to only export a list of tables to the stage location."""

    source_database: str
    source_schema: str
    stage_location: str
    source_file_format: str
    tables: Tuple[str, ...]
    warehouse: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UnloadBatchRequest':
        """Build and validate an unload-only request from a JSON body."""
        if not isinstance(data, dict):
            raise RequestValidationError("Request body must be a JSON object")

        data = _normalize_keys(data)
        _require(data, ('source_database', 'source_schema', 'stage_location', 'source_file_format'))
        tables = tuple(split_names(data.get('tables')))
        if not tables:
            raise RequestValidationError("Table name list must not be empty")

        return cls(
            source_database=str(data['source_database']).strip(),
            source_schema=str(data['source_schema']).strip(),
            stage_location=str(data['stage_location']).strip(),
            source_file_format=str(data['source_file_format']).strip(),
            tables=tables,
            warehouse=data.get('warehouse')
        )


# ============================================
# COLLABORATOR VALUE STRUCTS
# ============================================

@dataclass(frozen=True)
class TableRef:
    database: str
    schema: str
    table: str

    @property
    def qualified_name(self) -> str:
        return f"{self.database}.{self.schema}.{self.table}"


@dataclass(frozen=True)
class DDLRequest:
    database: str
    schema: str
    tables: Tuple[str, ...] = ()
    is_schema: bool = False


@dataclass(frozen=True)
class TranslationRequest:
    """Inputs for one batch translation workflow."""

    source_database: str
    source_schema: str
    target_database: str
    target_schema: str
    ddl_bucket: str
    translation_bucket: str
    input_folder: str
    output_folder: str
    location: str = 'us'


@dataclass(frozen=True)
class WorkflowHandle:
    name: str
    output_folder: str


@dataclass(frozen=True)
class LoadJobRequest:
    """Bulk load of exported files into an existing target table."""

    target: TableRef
    source_uri: str
    file_format: str
    schema: Any = None
    location: str = 'us'
    skip_leading_rows: int = 0


@dataclass(frozen=True)
class UnloadCommand:
    """One export statement to run on the source warehouse."""

    statement: str
    database: str
    schema: str
    table_name: str
    warehouse: Optional[str] = None
    timeout: int = 60

    def to_body(self) -> Dict[str, Any]:
        """Request body for the statements endpoint."""
        body = {
            'statement': self.statement,
            'timeout': self.timeout,
            'database': self.database,
            'schema': self.schema,
        }
        if self.warehouse:
            body['warehouse'] = self.warehouse
        return body


@dataclass(frozen=True)
class CommandOutcome:
    """Result of a completed submit-and-poll cycle."""

    statement_handle: Optional[str]
    message: str
    attempts: int = 0


@dataclass
class PollAttemptState:
    """Transient progress of polling one statement handle."""

    statement_handle: str
    attempt: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


# ============================================
# RESULTS
# ============================================

@dataclass(frozen=True)
class OperationResult:
    """Outcome of advancing one record."""

    record_id: Optional[int]
    table_name: str
    success: bool
    error: Optional[MigrationError] = None

    @classmethod
    def ok(cls, record_id: Optional[int], table_name: str) -> 'OperationResult':
        return cls(record_id=record_id, table_name=table_name, success=True)

    @classmethod
    def failed(cls, record_id: Optional[int], table_name: str, error: MigrationError) -> 'OperationResult':
        return cls(record_id=record_id, table_name=table_name, success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record_id': self.record_id,
            'table_name': self.table_name,
            'success': self.success,
            'error': self.error.to_dict() if self.error else None
        }


@dataclass(frozen=True)
class RecordSummary:
    """Read-only status view of a migration record."""

    id: int
    source_database: str
    source_schema: str
    source_table: str
    ddl_extracted: bool
    ddl_translated: bool
    table_created: bool
    data_unloaded: bool
    data_loaded: bool
    row_processing_done: bool
    created_at: Optional[str]
    updated_at: Optional[str]
    is_success: bool
    request_log_id: Optional[str]
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RecoveryStatus(Enum):
    NO_CANDIDATES = 'no_candidates'
    NONE_ELIGIBLE = 'none_eligible'
    RESUMED = 'resumed'


@dataclass(frozen=True)
class RecoveryResult:
    """Outcome of a recovery scan."""

    status: RecoveryStatus
    record_ids: List[int] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.status is RecoveryStatus.NO_CANDIDATES:
            return "No failed request present to process"
        if self.status is RecoveryStatus.NONE_ELIGIBLE:
            return "Unfinished records exist but none has unloaded data to resume from"
        return f"Resumed processing of {len(self.record_ids)} record(s)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'record_ids': list(self.record_ids),
            'message': self.message
        }
