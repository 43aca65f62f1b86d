"""
Google Cloud Storage Artifact Store
Stores DDL files and translated DDL files in GCS buckets.
"""

from google.cloud import storage

from table_migrator.collaborators.base import ArtifactStore
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)


class GCSArtifactStore(ArtifactStore):
    """ArtifactStore backed by google-cloud-storage."""

    def __init__(self, client: storage.Client = None, project: str = None):
        self._client = client or storage.Client(project=project)

    def write(self, bucket: str, path: str, content: str) -> None:
        blob = self._client.bucket(bucket).blob(path)
        blob.upload_from_string(content.encode('utf-8'), content_type='text/plain')
        logger.info(f"File written to gs://{bucket}/{path}")

    def read(self, bucket: str, path: str) -> str:
        blob = self._client.bucket(bucket).blob(path)
        return blob.download_as_bytes().decode('utf-8')

    def move(self, bucket: str, source_prefix: str, destination_prefix: str) -> int:
        gcs_bucket = self._client.bucket(bucket)
        source_prefix = source_prefix.rstrip('/') + '/'
        destination_prefix = destination_prefix.rstrip('/') + '/'

        moved = 0
        for blob in self._client.list_blobs(bucket, prefix=source_prefix):
            new_name = destination_prefix + blob.name[len(source_prefix):]
            gcs_bucket.copy_blob(blob, gcs_bucket, new_name)
            blob.delete()
            moved += 1

        logger.info(f"Moved {moved} object(s) from gs://{bucket}/{source_prefix} to {destination_prefix}")
        return moved
