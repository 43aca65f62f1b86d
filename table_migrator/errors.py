"""
Error Taxonomy Module
Typed exceptions raised across the migration engine, with stable error codes.
"""

from typing import Any, Dict


class MigrationError(Exception):
    """Base exception for all migration errors."""

    error_code = 1999
    default_message = "Error: Migration failed"

    def __init__(
        self,
        message: str = None,
        error_code: int = None,
        table_name: str = None,
        request_log_id: str = None
    ):
        self.message = message or self.default_message
        if error_code is not None:
            self.error_code = error_code
        self.table_name = table_name
        self.request_log_id = request_log_id
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.table_name:
            return f"{self.table_name}, {self.message}, Error Code:{self.error_code}"
        return f"{self.message}, Error Code:{self.error_code}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON friendly dictionary."""
        return {
            'error': self.__class__.__name__,
            'error_code': self.error_code,
            'message': self.message,
            'table_name': self.table_name,
            'request_log_id': self.request_log_id
        }


class ConfigLoadError(MigrationError):
    error_code = 1000
    default_message = "Error: Loading configuration data file"


class ExportCommandError(MigrationError):
    error_code = 1001
    default_message = "Error: Unloading data from Snowflake"


class TokenRefreshError(MigrationError):
    error_code = 1002
    default_message = "Error: Unable to refresh token based on the received parameters"


class TableCreationError(MigrationError):
    error_code = 1003
    default_message = "Error: Creating table in BigQuery"


class LoadJobError(MigrationError):
    error_code = 1004
    default_message = "Error: During the BigQuery load job execution"


class PersistenceError(MigrationError):
    error_code = 1005
    default_message = "Error: Persisting migration record"


class PollTimeoutError(MigrationError):
    error_code = 1006
    default_message = (
        "Error: Polling the submitted command exceeded the max attempts "
        "within the given duration"
    )


class TableAlreadyExistsError(MigrationError):
    error_code = 1007
    default_message = "Error: table already exists, hence application will not create the same table"


class RequestValidationError(MigrationError):
    error_code = 1008
    default_message = "Error: Invalid migration request"


class ResponseParsingError(MigrationError):
    error_code = 1009
    default_message = "Error: Failed to parse the received JSON response from snowflake rest API execution"


class TranslationWorkflowError(MigrationError):
    error_code = 1010
    default_message = "Error: Migration Workflow execution error"
    retryable = False


class TranslationWorkflowPausedError(TranslationWorkflowError):
    """The translation workflow stopped in PAUSED state; resubmitting the batch may succeed."""
    default_message = "Error: Migration Workflow is paused"
    retryable = True


class DdlExtractionError(MigrationError):
    error_code = 1011
    default_message = "Error: Executing the query in Snowflake to extract DDL"


class EncryptionError(MigrationError):
    error_code = 1012
    default_message = "Error: Encrypting the values"


class TableNotExistsError(MigrationError):
    error_code = 1014
    default_message = "Error: table does not exists"


class InvalidStateTransitionError(MigrationError):
    error_code = 1017
    default_message = "Error: Migration record state can only move forward"


class WorkerPoolRejectedError(MigrationError):
    error_code = 1018
    default_message = "Error: Worker pool queue is full, table was not scheduled"


class UnitTimeoutError(MigrationError):
    error_code = 1019
    default_message = "Error: Table migration did not finish before the batch deadline"
