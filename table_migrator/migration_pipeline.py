"""
Migration Pipeline Module
Orchestrates batch migrations: extracts and translates DDL, persists one
record per table, fans the records out to execution units and collects
their outcomes.
"""

import asyncio
import functools
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from table_migrator.collaborators.base import (
    ArtifactStore, DDLExtractor, TranslationWorkflowService, WarehouseClient, WorkflowState
)
from table_migrator.config_manager import ConfigManager
from table_migrator.database.models import MigrationRecord, MigrationState
from table_migrator.database.queries import MigrationRecordStore
from table_migrator.errors import (
    DdlExtractionError, MigrationError, PersistenceError, TranslationWorkflowError,
    TranslationWorkflowPausedError, UnitTimeoutError, WorkerPoolRejectedError
)
from table_migrator.schemas import (
    MigrationBatchRequest, OperationResult, RecordSummary, RecoveryResult,
    RecoveryStatus, TranslationRequest, UnloadBatchRequest, WorkflowHandle
)
from table_migrator.snowflake_client import SnowflakeRestClient
from table_migrator.table_migration_unit import TableMigrationUnit
from table_migrator.utils.helpers import date_folder
from table_migrator.utils.logger import (
    get_logger, get_request_log_id, new_request_log_id,
    reset_request_log_id, set_request_log_id
)
from table_migrator.worker_pool import WorkerPool

logger = get_logger(__name__)

DDL_PREFIX = 'snowflake-ddls'
TRANSLATED_PREFIX = 'translated-snowflake-ddls'
BACKUP_PREFIX = 'backup-ddls'
BACKUP_TIMESTAMP_FORMAT = '%Y_%m_%d_%H_%M_%S'


def ddl_folder(database: str, schema: str) -> str:
    return f"{DDL_PREFIX}/{database}/{schema}"


def qualify_table_name(ddl: str, database: str, schema: str, table_name: str) -> str:
    """Rewrite the bare table name in extracted DDL to database.schema.table."""
    return ddl.replace(table_name, f"{database}.{schema}.{table_name}")


class MigrationPipeline:
    """
    Batch orchestrator for table migrations.

    Batch-level failures (DDL extraction, translation, persistence of the
    initial records) are raised to the caller. Per-table failures are
    recorded on the table's record and never stop sibling tables.
    """

    def __init__(
        self,
        store: MigrationRecordStore,
        extractor: DDLExtractor,
        artifacts: ArtifactStore,
        translation: TranslationWorkflowService,
        warehouse: WarehouseClient,
        snowflake_client: SnowflakeRestClient,
        pool: WorkerPool,
        unit: TableMigrationUnit = None,
        migration_config: Dict = None,
        table_query: Callable[[str], Optional[str]] = None,
        sleep: Callable[[float], None] = None
    ):
        if migration_config is None:
            migration_config = ConfigManager().get_migration_config()

        self.store = store
        self.extractor = extractor
        self.artifacts = artifacts
        self.translation = translation
        self.warehouse = warehouse
        self.snowflake_client = snowflake_client
        self.pool = pool
        self._table_query = table_query or (lambda table_name: None)
        self.unit = unit or TableMigrationUnit(
            store=store,
            warehouse=warehouse,
            artifacts=artifacts,
            snowflake_client=snowflake_client,
            run_blocking=pool.run,
            table_query=self._table_query
        )

        self.workflow_duration = migration_config.get('workflow_duration_seconds', 120)
        self.workflow_poll_interval = migration_config.get('workflow_poll_interval_seconds', 5)
        self.batch_timeout = migration_config.get('batch_timeout_seconds', 0)
        self.timezone = migration_config.get('timezone', 'UTC')
        self._sleep = sleep or time.sleep

        # Track statistics
        self.stats = {
            'batches': 0,
            'tables_succeeded': 0,
            'tables_failed': 0
        }

    # ========================================
    # Batch migration
    # ========================================

    def migrate(self, request: MigrationBatchRequest) -> List[int]:
        """
        Migrate every table of a batch.

        Returns:
            Ids of all records created for the batch, whatever their outcome

        Raises:
            DdlExtractionError: Extraction or DDL upload failed
            TranslationWorkflowError: Translation failed, paused or timed out
            PersistenceError: Records could not be stored
        """
        request_log_id = get_request_log_id() or new_request_log_id()
        logger.info(
            f"Starting migration of {request.source_database}.{request.source_schema} "
            f"tables={list(request.tables) or 'ALL'} target_exists={request.target_table_exists}"
        )

        ddls = self._extract_ddls(request)
        ddl_paths = self._write_ddls(request, ddls)

        records = []
        for table_name, ddl_path in ddl_paths.items():
            record = MigrationRecord.for_table(request, table_name, request_log_id)
            record.source_ddl_path = ddl_path
            if request.target_table_exists:
                record.target_table_preexisting = True
                record.advance_to(MigrationState.TABLE_CREATED)
            else:
                record.advance_to(MigrationState.DDL_EXTRACTED)
            records.append(record)
        self.store.save_all(records)
        record_ids = [record.id for record in records]
        logger.info(f"Persisted {len(records)} migration record(s): {record_ids}")

        if not request.target_table_exists:
            handle = self._translate(request)
            for record in records:
                record.workflow_name = handle.name
                record.translated_ddl_path = f"{handle.output_folder}/{record.target_table}.sql"
                record.advance_to(MigrationState.DDL_TRANSLATED)
            self.store.save_all(records)

        results = self._run_units(records)
        self._log_summary(results)
        return record_ids

    def process_failed_records(self) -> RecoveryResult:
        """
        Resume unfinished records whose data was already exported.

        Only records with `data_unloaded` set are re-run; earlier failures
        need a fresh batch request.
        """
        candidates = self.store.find_by_processing_done(False)
        if not candidates:
            logger.info("No failed request present to process")
            return RecoveryResult(RecoveryStatus.NO_CANDIDATES)

        eligible = [record for record in candidates if record.data_unloaded]
        if not eligible:
            logger.info(f"{len(candidates)} unfinished record(s), none eligible for automatic recovery")
            return RecoveryResult(RecoveryStatus.NONE_ELIGIBLE)

        request_log_id = get_request_log_id()
        for record in eligible:
            record.request_log_id = request_log_id or record.request_log_id
        self.store.save_all(eligible)

        record_ids = [record.id for record in eligible]
        logger.info(f"Resuming {len(eligible)} record(s): {record_ids}")

        results = self._run_units(eligible)
        self._log_summary(results)
        return RecoveryResult(RecoveryStatus.RESUMED, record_ids)

    def status_of(self, ids: List[int]) -> List[RecordSummary]:
        """Get the status of records by id. Unknown ids are omitted."""
        return [record.to_summary() for record in self.store.find_by_ids(ids)]

    # ========================================
    # Partial operations
    # ========================================

    def extract_and_translate(self, request: MigrationBatchRequest) -> str:
        """
        Extract, upload and translate DDL without migrating any data.

        Raises:
            DdlExtractionError: If any stage fails
        """
        try:
            ddls = self._extract_ddls(request)
            self._write_ddls(request, ddls)
            handle = self._translate(request)
        except DdlExtractionError:
            raise
        except MigrationError as e:
            logger.error(f"Extract and translate request failed: {e}")
            raise DdlExtractionError(f"Error: Extract and translate DDL failed: {e.message}") from e

        return (
            f"Extract & translate DDL request completed successfully at "
            f"{datetime.utcnow().isoformat()}, translated DDLs in "
            f"gs://{request.translation_bucket}/{handle.output_folder}"
        )

    def unload_tables(self, request: UnloadBatchRequest) -> Dict[str, str]:
        """
        Export a list of tables to the stage location in parallel.

        Returns:
            Mapping of table name to "Success" or "Failed: <reason>"
        """
        parent_log_id = get_request_log_id() or new_request_log_id()
        factories = [
            functools.partial(self._unload_one, request, table_name, f"{parent_log_id}:{table_name}")
            for table_name in request.tables
        ]
        outcomes = asyncio.run(self._gather_admitted(factories))

        results = {}
        for table_name, outcome in zip(request.tables, outcomes):
            if isinstance(outcome, MigrationError):
                outcome.table_name = outcome.table_name or table_name
                results[table_name] = f"Failed: {outcome}"
            else:
                results[table_name] = 'Success'
        return results

    async def _unload_one(self, request: UnloadBatchRequest, table_name: str, request_log_id: str) -> str:
        token = set_request_log_id(request_log_id)
        try:
            command = self.snowflake_client.build_unload_command(
                table_name=table_name,
                database=request.source_database,
                schema=request.source_schema,
                stage_location=request.stage_location,
                file_format=request.source_file_format,
                warehouse=request.warehouse,
                query=self._table_query(table_name)
            )
            outcome = await self.snowflake_client.submit_and_poll(command)
            logger.info(f"Statement handle {outcome.statement_handle} exported table {table_name}")
            return outcome.statement_handle
        finally:
            reset_request_log_id(token)

    # ========================================
    # DDL extraction and translation
    # ========================================

    def _extract_ddls(self, request: MigrationBatchRequest) -> Dict[str, str]:
        try:
            ddls = self.extractor.extract(request.ddl_request())
        except MigrationError:
            raise
        except Exception as e:
            logger.error(f"DDL extraction failed: {e}")
            raise DdlExtractionError(f"Error: Executing the query in Snowflake to extract DDL: {e}") from e

        if not ddls:
            raise DdlExtractionError("Error: No DDL extracted for the requested tables")
        return ddls

    def _write_ddls(self, request: MigrationBatchRequest, ddls: Dict[str, str]) -> Dict[str, str]:
        """Back up previous DDL files and upload the new ones. Returns table name to gs:// path."""
        folder = ddl_folder(request.source_database, request.source_schema)
        backup_root = f"{BACKUP_PREFIX}/{datetime.utcnow().strftime(BACKUP_TIMESTAMP_FORMAT)}"

        paths = {}
        try:
            moved = self.artifacts.backup_prefix(request.ddl_bucket, folder, backup_root)
            if moved:
                logger.info(f"Backed up {moved} previous DDL file(s) to {backup_root}")

            for table_name, ddl in ddls.items():
                path = f"{folder}/{table_name}.sql"
                content = qualify_table_name(ddl, request.source_database, request.source_schema, table_name)
                self.artifacts.write(request.ddl_bucket, path, content)
                paths[table_name] = f"gs://{request.ddl_bucket}/{path}"
        except MigrationError:
            raise
        except Exception as e:
            logger.error(f"Writing DDL files failed: {e}")
            raise DdlExtractionError(f"Error: Writing DDL files to gs://{request.ddl_bucket}: {e}") from e

        return paths

    def _translate(self, request: MigrationBatchRequest) -> WorkflowHandle:
        """Run one translation workflow for the batch and wait for it to finish."""
        translation_request = TranslationRequest(
            source_database=request.source_database,
            source_schema=request.source_schema,
            target_database=request.target_database,
            target_schema=request.target_schema,
            ddl_bucket=request.ddl_bucket,
            translation_bucket=request.translation_bucket,
            input_folder=ddl_folder(request.source_database, request.source_schema),
            output_folder=(
                f"{TRANSLATED_PREFIX}/{request.source_database}/{request.source_schema}/"
                f"{date_folder(timezone=self.timezone)}"
            ),
            location=request.location or 'us'
        )

        try:
            handle = self.translation.create(translation_request)
        except MigrationError:
            raise
        except Exception as e:
            logger.error(f"Creating the translation workflow failed: {e}")
            raise TranslationWorkflowError(f"Error: Migration Workflow execution error: {e}") from e

        self._wait_for_workflow(handle)
        return handle

    def _wait_for_workflow(self, handle: WorkflowHandle) -> None:
        logger.info(f"Waiting up to {self.workflow_duration}s for translation workflow {handle.name}")
        deadline = time.monotonic() + self.workflow_duration

        while time.monotonic() < deadline:
            self._sleep(self.workflow_poll_interval)
            try:
                state = self.translation.get_state(handle)
            except Exception as e:
                raise TranslationWorkflowError(f"Error: Reading translation workflow state: {e}") from e

            logger.debug(f"Translation workflow {handle.name} state: {state.name}")
            if state is WorkflowState.COMPLETED:
                logger.info(f"Translation workflow {handle.name} completed")
                return
            if state is WorkflowState.PAUSED:
                raise TranslationWorkflowPausedError(f"Error: Migration Workflow {handle.name} is paused")
            if state is WorkflowState.UNKNOWN:
                raise TranslationWorkflowError(f"Error: Migration Workflow {handle.name} is in an unknown state")

        raise TranslationWorkflowError(
            f"Error: Migration Workflow execution error, could not finish within {self.workflow_duration}s"
        )

    # ========================================
    # Fan-out / fan-in
    # ========================================

    def _run_units(self, records: List[MigrationRecord]) -> List[OperationResult]:
        factories = [functools.partial(self.unit.advance, record) for record in records]
        outcomes = asyncio.run(self._gather_admitted(factories))

        results = []
        for record, outcome in zip(records, outcomes):
            if isinstance(outcome, OperationResult):
                results.append(outcome)
                continue

            # Rejected, timed out or crashed before the unit could record it
            outcome.table_name = outcome.table_name or record.source_table
            outcome.request_log_id = outcome.request_log_id or record.request_log_id
            logger.error(f"Record {record.id} failed: {outcome}")
            record.record_error(str(outcome))
            try:
                self.store.save(record)
            except PersistenceError as e:
                logger.error(f"Could not persist failure of record {record.id}: {e}")
            results.append(OperationResult.failed(record.id, record.source_table, outcome))
        return results

    async def _gather_admitted(self, factories: List[Callable[[], Awaitable[Any]]]) -> List[Any]:
        """
        Run coroutine factories on the pool, in order.

        Each slot of the returned list holds the coroutine's result or the
        MigrationError that replaced it (rejection, batch deadline, crash).
        """
        results: List[Any] = [None] * len(factories)
        tasks = {}

        for index, factory in enumerate(factories):
            try:
                self.pool.admit()
            except WorkerPoolRejectedError as e:
                logger.warning(str(e))
                results[index] = e
                continue
            tasks[index] = asyncio.ensure_future(self.pool.run_admitted(factory))

        if not tasks:
            return results

        _, pending = await asyncio.wait(list(tasks.values()), timeout=self.batch_timeout or None)
        if pending:
            logger.warning(f"Batch deadline of {self.batch_timeout}s reached, cancelling {len(pending)} unit(s)")
            # Units settle their in-flight pool calls before stopping
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for index, task in tasks.items():
            if task.cancelled():
                results[index] = UnitTimeoutError()
            elif task.exception() is not None:
                error = task.exception()
                if not isinstance(error, MigrationError):
                    logger.error(f"Unit crashed: {error}", exc_info=error)
                    error = MigrationError(f"Error: Unexpected failure: {error}")
                results[index] = error
            else:
                results[index] = task.result()

        return results

    def _log_summary(self, results: List[OperationResult]) -> None:
        succeeded = sum(1 for result in results if result.success)
        failed = len(results) - succeeded

        self.stats['batches'] += 1
        self.stats['tables_succeeded'] += succeeded
        self.stats['tables_failed'] += failed

        logger.info(f"Batch finished: {succeeded} succeeded, {failed} failed")
        for result in results:
            if not result.success:
                logger.error(f"  {result.table_name}: {result.error}")


# ========================================
# Wiring
# ========================================

_pipeline: MigrationPipeline = None


def build_pipeline(config: ConfigManager = None) -> MigrationPipeline:
    """Build a pipeline with the Snowflake, GCS and BigQuery adapters from configuration."""
    from table_migrator.collaborators.bigquery_client import BigQueryWarehouseClient
    from table_migrator.collaborators.gcs_store import GCSArtifactStore
    from table_migrator.collaborators.snowflake_ddl import SnowflakeDDLExtractor
    from table_migrator.collaborators.translation_workflow import BigQueryTranslationService
    from table_migrator.token_service import get_token_service

    config = config or ConfigManager()
    gcp_config = config.get_gcp_config()
    project = gcp_config.get('project')

    pool = WorkerPool(config=config.get_migration_config())
    snowflake_client = SnowflakeRestClient(
        token_service=get_token_service(),
        snowflake_config=config.get_snowflake_config(),
        run_blocking=pool.run
    )

    return MigrationPipeline(
        store=MigrationRecordStore(),
        extractor=SnowflakeDDLExtractor(config.get_snowflake_config().get('connection_url', '')),
        artifacts=GCSArtifactStore(project=project),
        translation=BigQueryTranslationService(),
        warehouse=BigQueryWarehouseClient(project=project, job_timeout=gcp_config.get('job_timeout')),
        snowflake_client=snowflake_client,
        pool=pool,
        migration_config=config.get_migration_config(),
        table_query=config.get_table_query
    )


def get_pipeline() -> MigrationPipeline:
    """Get the shared pipeline, building it on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


def run_migration(request_data: Dict) -> List[int]:
    """
    Convenience function to migrate a batch described by a request dict.

    Args:
        request_data: Batch request body

    Returns:
        Ids of the records created for the batch
    """
    request = MigrationBatchRequest.from_dict(request_data)
    return get_pipeline().migrate(request)
