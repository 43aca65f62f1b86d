"""
Collaborator Contracts
Narrow interfaces the orchestrator uses to reach external systems.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict

from table_migrator.schemas import DDLRequest, LoadJobRequest, TableRef, TranslationRequest, WorkflowHandle


class WorkflowState(Enum):
    PENDING = 'PENDING'
    RUNNING = 'RUNNING'
    PAUSED = 'PAUSED'
    COMPLETED = 'COMPLETED'
    UNKNOWN = 'UNKNOWN'


class DDLExtractor(ABC):
    """Reads table definitions from the source warehouse."""

    @abstractmethod
    def extract(self, request: DDLRequest) -> Dict[str, str]:
        """Return a mapping of table name to DDL text."""


class ArtifactStore(ABC):
    """Object storage for DDL files and exported data."""

    @abstractmethod
    def write(self, bucket: str, path: str, content: str) -> None:
        ...

    @abstractmethod
    def read(self, bucket: str, path: str) -> str:
        ...

    @abstractmethod
    def move(self, bucket: str, source_prefix: str, destination_prefix: str) -> int:
        """Move every object under a prefix. Returns the number of objects moved."""

    def backup_prefix(self, bucket: str, prefix: str, backup_root: str) -> int:
        """Move existing artifacts under `prefix` below `backup_root`."""
        return self.move(bucket, prefix, f"{backup_root.rstrip('/')}/{prefix}")


class TranslationWorkflowService(ABC):
    """Batch SQL translation service."""

    @abstractmethod
    def create(self, request: TranslationRequest) -> WorkflowHandle:
        ...

    @abstractmethod
    def get_state(self, handle: WorkflowHandle) -> WorkflowState:
        ...


class WarehouseClient(ABC):
    """Target warehouse operations."""

    @abstractmethod
    def table_exists(self, table: TableRef) -> bool:
        ...

    @abstractmethod
    def get_schema(self, table: TableRef) -> Any:
        ...

    @abstractmethod
    def run_query(self, sql: str, location: str = 'us') -> bool:
        """Run a statement. Returns True on success."""

    @abstractmethod
    def run_load_job(self, request: LoadJobRequest) -> bool:
        """Run a load job to completion. Returns True on success."""
