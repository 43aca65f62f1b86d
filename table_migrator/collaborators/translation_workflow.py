"""
BigQuery Translation Workflow Service
Creates batch SQL translation workflows (Snowflake to BigQuery) and reads their state.
"""

from datetime import datetime, timezone

from google.cloud import bigquery_migration_v2

from table_migrator.collaborators.base import TranslationWorkflowService, WorkflowState
from table_migrator.schemas import TranslationRequest, WorkflowHandle
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)

TRANSLATION_TYPE = 'Translation_Snowflake2BQ'
TASK_NAME = 'translation-task'
REQUEST_SOURCE = 'Snowflake-to-BQ'

_STATES = {
    bigquery_migration_v2.MigrationWorkflow.State.DRAFT: WorkflowState.PENDING,
    bigquery_migration_v2.MigrationWorkflow.State.RUNNING: WorkflowState.RUNNING,
    bigquery_migration_v2.MigrationWorkflow.State.PAUSED: WorkflowState.PAUSED,
    bigquery_migration_v2.MigrationWorkflow.State.COMPLETED: WorkflowState.COMPLETED,
}


class BigQueryTranslationService(TranslationWorkflowService):
    """TranslationWorkflowService backed by the BigQuery Migration API."""

    def __init__(self, client: bigquery_migration_v2.MigrationServiceClient = None):
        self._client = client or bigquery_migration_v2.MigrationServiceClient()

    def create(self, request: TranslationRequest) -> WorkflowHandle:
        source_dialect = bigquery_migration_v2.Dialect()
        source_dialect.snowflake_dialect = bigquery_migration_v2.SnowflakeDialect()
        target_dialect = bigquery_migration_v2.Dialect()
        target_dialect.bigquery_dialect = bigquery_migration_v2.BigQueryDialect()

        # Source db/schema are renamed to the target project/dataset during translation
        name_mapping = bigquery_migration_v2.ObjectNameMapping(
            source=bigquery_migration_v2.NameMappingKey(
                database=request.source_database,
                schema=request.source_schema
            ),
            target=bigquery_migration_v2.NameMappingValue(
                database=request.target_database,
                schema=request.target_schema
            )
        )

        translation_config = bigquery_migration_v2.TranslationConfigDetails(
            gcs_source_path=f"gs://{request.ddl_bucket}/{request.input_folder}",
            gcs_target_path=f"gs://{request.translation_bucket}/{request.output_folder}",
            source_dialect=source_dialect,
            target_dialect=target_dialect,
            source_env=bigquery_migration_v2.SourceEnv(
                default_database=request.source_database,
                schema_search_path=[request.source_schema]
            ),
            name_mapping_list=bigquery_migration_v2.ObjectNameMappingList(name_map=[name_mapping]),
            request_source=REQUEST_SOURCE
        )

        workflow = bigquery_migration_v2.MigrationWorkflow(
            display_name=f"{TRANSLATION_TYPE}-{datetime.now(timezone.utc).isoformat()}"
        )
        workflow.tasks[TASK_NAME] = bigquery_migration_v2.MigrationTask(
            type_=TRANSLATION_TYPE,
            translation_config_details=translation_config
        )

        parent = f"projects/{request.target_database}/locations/{request.location or 'us'}"
        response = self._client.create_migration_workflow(
            request=bigquery_migration_v2.CreateMigrationWorkflowRequest(
                parent=parent,
                migration_workflow=workflow
            )
        )
        logger.info(f"Created translation workflow {response.name}")
        return WorkflowHandle(name=response.name, output_folder=request.output_folder)

    def get_state(self, handle: WorkflowHandle) -> WorkflowState:
        response = self._client.get_migration_workflow(name=handle.name)
        return _STATES.get(response.state, WorkflowState.UNKNOWN)
