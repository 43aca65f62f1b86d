"""
Table Migration Unit Module
Drives one migration record from its last checkpoint to completion:
create target table, export data, load data.
"""

import asyncio
import contextvars
from typing import Any, Awaitable, Callable, Optional, Type

from table_migrator.collaborators.base import ArtifactStore, WarehouseClient
from table_migrator.database.models import MigrationRecord, MigrationState
from table_migrator.database.queries import MigrationRecordStore
from table_migrator.errors import (
    ExportCommandError, LoadJobError, MigrationError, PersistenceError,
    TableAlreadyExistsError, TableCreationError, TableNotExistsError, UnitTimeoutError
)
from table_migrator.schemas import LoadJobRequest, OperationResult
from table_migrator.snowflake_client import SnowflakeRestClient
from table_migrator.utils.helpers import replace_ignore_case
from table_migrator.utils.logger import get_logger, reset_request_log_id, set_request_log_id

logger = get_logger(__name__)

# Set when the running unit was cancelled while a pool call was in flight
_cancel_requested: contextvars.ContextVar = contextvars.ContextVar('cancel_requested', default=False)


def stage_uri(stage_location: str, table_name: str) -> str:
    """URI of the files exported for a table, e.g. gs://bucket/path/TABLE/*."""
    location = stage_location or ''
    if location.startswith('gs://'):
        location = location[len('gs://'):]
    return f"gs://{location.strip('/')}/{table_name}/*"


def rewrite_translated_ddl(ddl: str, record: MigrationRecord) -> str:
    """Point translated DDL at the target database, schema and table."""
    ddl = replace_ignore_case(ddl, record.source_database, record.target_database)
    ddl = replace_ignore_case(ddl, record.source_schema, record.target_schema)
    return replace_ignore_case(ddl, record.source_table, record.target_table)


class TableMigrationUnit:
    """
    Resumable per-table state machine.

    Each step is skipped when the record already reached it, and each
    completed step is persisted before the next one starts. `advance`
    never raises for step failures; it returns a failed OperationResult
    after persisting the record with its error.

    Cancelling a unit does not abandon a blocking call already on a pool
    thread. The call is allowed to finish and its checkpoint is persisted,
    then the unit stops before the next step with `UnitTimeoutError`.
    """

    def __init__(
        self,
        store: MigrationRecordStore,
        warehouse: WarehouseClient,
        artifacts: ArtifactStore,
        snowflake_client: SnowflakeRestClient,
        run_blocking: Callable[..., Awaitable[Any]] = None,
        table_query: Callable[[str], Optional[str]] = None
    ):
        """
        Args:
            store: Record store used for write-through checkpoints
            warehouse: Target warehouse client
            artifacts: Artifact store holding translated DDL
            snowflake_client: Submit-and-poll client used for the export step
            run_blocking: Coroutine function running blocking calls off the loop
            table_query: Lookup of a custom extraction query per table
        """
        self.store = store
        self.warehouse = warehouse
        self.artifacts = artifacts
        self.snowflake_client = snowflake_client
        self._run = run_blocking or asyncio.to_thread
        self._table_query = table_query or (lambda table_name: None)

    async def advance(self, record: MigrationRecord) -> OperationResult:
        """Advance a record as far as it will go and report the outcome."""
        token = set_request_log_id(record.request_log_id)
        cancel_token = _cancel_requested.set(False)
        try:
            logger.info(f"Advancing {record!r}")

            await self._create_table(record)
            self._stop_if_cancelled(record)
            await self._unload_data(record)
            self._stop_if_cancelled(record)
            await self._load_data(record)

            record.advance_to(MigrationState.DONE)
            record.last_error = None
            await self._persist(record)

            logger.info(f"Table {record.source_table} migrated")
            return OperationResult.ok(record.id, record.source_table)

        except MigrationError as e:
            e.table_name = e.table_name or record.source_table
            e.request_log_id = e.request_log_id or record.request_log_id
            logger.error(f"Migration of record {record.id} stopped at {record.current_state.name}: {e}")
            await self._persist_failure(record, e)
            return OperationResult.failed(record.id, record.source_table, e)
        finally:
            _cancel_requested.reset(cancel_token)
            reset_request_log_id(token)

    # ========================================
    # Steps
    # ========================================

    async def _create_table(self, record: MigrationRecord) -> None:
        if record.table_created:
            return

        exists = await self._call(TableCreationError, record, self.warehouse.table_exists, record.target_ref)
        if exists:
            raise TableAlreadyExistsError(table_name=record.target_table)

        if not record.translated_ddl_path:
            raise TableCreationError(
                "Error: Creating table in BigQuery, no translated DDL path on record",
                table_name=record.target_table
            )

        translated = await self._call(
            TableCreationError, record,
            self.artifacts.read, record.translation_bucket, record.translated_ddl_path
        )
        ddl = rewrite_translated_ddl(translated or '', record)
        if not ddl.strip():
            raise TableCreationError(table_name=record.target_table)

        logger.info(f"Creating table {record.target_ref.qualified_name}")
        created = await self._call(TableCreationError, record, self.warehouse.run_query, ddl, record.location)
        if not created:
            raise TableCreationError(table_name=record.target_table)

        record.advance_to(MigrationState.TABLE_CREATED)
        await self._persist(record)

    async def _unload_data(self, record: MigrationRecord) -> None:
        if record.data_unloaded:
            return

        command = self.snowflake_client.build_unload_command(
            table_name=record.source_table,
            database=record.source_database,
            schema=record.source_schema,
            stage_location=record.stage_location,
            file_format=record.source_file_format,
            warehouse=record.warehouse,
            query=self._table_query(record.source_table)
        )
        try:
            outcome = await self.snowflake_client.submit_and_poll(command)
        except MigrationError:
            raise
        except Exception as e:
            raise ExportCommandError(f"Error: Unloading data from Snowflake: {e}", table_name=record.source_table) from e

        logger.info(f"Statement handle {outcome.statement_handle} exported table {record.source_table}")
        record.statement_handle = outcome.statement_handle
        record.advance_to(MigrationState.DATA_UNLOADED)
        await self._persist(record)

    async def _load_data(self, record: MigrationRecord) -> None:
        if record.data_loaded:
            return

        target = record.target_ref
        exists = await self._call(LoadJobError, record, self.warehouse.table_exists, target)
        if not exists:
            raise TableNotExistsError(table_name=record.target_table)

        schema = await self._call(LoadJobError, record, self.warehouse.get_schema, target)
        file_format = (record.load_file_format or 'CSV').upper()
        request = LoadJobRequest(
            target=target,
            source_uri=stage_uri(record.stage_location, record.target_table),
            file_format=file_format,
            schema=schema,
            location=record.location or 'us',
            skip_leading_rows=1 if file_format == 'CSV' else 0
        )

        loaded = await self._call(LoadJobError, record, self.warehouse.run_load_job, request)
        if not loaded:
            raise LoadJobError(table_name=record.target_table)

        record.advance_to(MigrationState.DATA_LOADED)
        await self._persist(record)

    # ========================================
    # Helpers
    # ========================================

    async def _call(self, error_cls: Type[MigrationError], record: MigrationRecord, func: Callable, *args) -> Any:
        """Run a blocking collaborator call, wrapping untyped failures in `error_cls`."""
        self._stop_if_cancelled(record)
        try:
            return await self._settle(func, *args)
        except MigrationError:
            raise
        except Exception as e:
            raise error_cls(f"{error_cls.default_message}: {e}", table_name=record.target_table) from e

    async def _settle(self, func: Callable, *args) -> Any:
        """
        Run a blocking call on the pool and wait for its real outcome.

        If the unit is cancelled meanwhile, the thread keeps running, so the
        call is awaited to completion and the cancellation is remembered for
        `_stop_if_cancelled`.
        """
        future = asyncio.ensure_future(self._run(func, *args))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            if future.cancelled():
                raise
            logger.warning(f"Unit cancelled during {getattr(func, '__name__', func)}, waiting for it to finish")
            _cancel_requested.set(True)
            return await future

    def _stop_if_cancelled(self, record: MigrationRecord) -> None:
        if _cancel_requested.get():
            raise UnitTimeoutError(table_name=record.source_table)

    async def _persist(self, record: MigrationRecord) -> None:
        await self._settle(self.store.save, record)

    async def _persist_failure(self, record: MigrationRecord, error: MigrationError) -> None:
        record.record_error(str(error))
        try:
            await self._persist(record)
        except PersistenceError as e:
            logger.error(f"Could not persist failure of record {record.id}: {e}")
