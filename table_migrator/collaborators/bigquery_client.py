"""
BigQuery Warehouse Client
Table existence checks, DDL execution and load jobs against BigQuery.
"""

import uuid
from typing import Any

from google.api_core.exceptions import NotFound
from google.cloud import bigquery

from table_migrator.collaborators.base import WarehouseClient
from table_migrator.schemas import LoadJobRequest, TableRef
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)

JOB_ID_PREFIX = 'Snowflake_'

_SOURCE_FORMATS = {
    'CSV': bigquery.SourceFormat.CSV,
    'PARQUET': bigquery.SourceFormat.PARQUET,
}


def _new_job_id() -> str:
    return f"{JOB_ID_PREFIX}{uuid.uuid4()}"


class BigQueryWarehouseClient(WarehouseClient):
    """WarehouseClient backed by google-cloud-bigquery."""

    def __init__(self, client: bigquery.Client = None, project: str = None, job_timeout: float = None):
        self._client = client or bigquery.Client(project=project)
        self.job_timeout = job_timeout

    @staticmethod
    def _table_id(table: TableRef) -> str:
        return f"{table.database}.{table.schema}.{table.table}"

    def table_exists(self, table: TableRef) -> bool:
        try:
            self._client.get_table(self._table_id(table))
            return True
        except NotFound:
            return False

    def get_schema(self, table: TableRef) -> Any:
        return self._client.get_table(self._table_id(table)).schema

    def run_query(self, sql: str, location: str = 'us') -> bool:
        logger.info(f"Running query job: {sql}")
        job_config = bigquery.QueryJobConfig(use_legacy_sql=False)
        job = self._client.query(
            sql,
            job_config=job_config,
            job_id=_new_job_id(),
            location=location or 'us'
        )
        job.result(timeout=self.job_timeout)
        if job.error_result:
            logger.error(f"Query job {job.job_id} failed: {job.error_result}")
            return False
        return job.done()

    def run_load_job(self, request: LoadJobRequest) -> bool:
        job_config = bigquery.LoadJobConfig(
            source_format=_SOURCE_FORMATS[request.file_format.upper()],
            schema=request.schema,
            write_disposition=bigquery.WriteDisposition.WRITE_APPEND
        )
        if request.skip_leading_rows:
            job_config.skip_leading_rows = request.skip_leading_rows

        job_id = _new_job_id()
        logger.info(f"Starting load job {job_id} from {request.source_uri} into {request.target.qualified_name}")

        job = self._client.load_table_from_uri(
            request.source_uri,
            self._table_id(request.target),
            job_config=job_config,
            job_id=job_id,
            location=request.location or 'us'
        )
        job.result(timeout=self.job_timeout)

        if job.error_result:
            logger.error(f"Load job {job_id} failed: {job.error_result}")
            return False

        logger.info(f"Load job {job_id} loaded {job.output_rows} row(s)")
        return True
