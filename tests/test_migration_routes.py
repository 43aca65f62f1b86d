"""
Unit Tests for the Migration API
Tests request validation and response mapping with a mocked pipeline.
"""

import unittest
from unittest.mock import Mock, patch

from table_migrator.app import create_app
from table_migrator.errors import (
    EncryptionError, RequestValidationError, TableCreationError, TokenRefreshError, TranslationWorkflowError
)
from table_migrator.schemas import RecordSummary, RecoveryResult, RecoveryStatus


MIGRATE_BODY = {
    'sourceDatabaseName': 'SALES',
    'sourceSchemaName': 'PUBLIC',
    'sourceTableName': 'ORDERS,CUSTOMERS',
    'targetDatabaseName': 'my-project',
    'targetSchemaName': 'sales_ds',
    'gcsBucketForDDLs': 'ddl-bucket',
    'gcsBucketForTranslation': 'translation-bucket',
    'snowflakeStageLocation': 'stage-bucket/unload',
    'snowflakeFileFormatValue': 'SF_CSV_FORMAT',
    'bqLoadFileFormat': 'CSV',
}


def _summary(record_id, table_name, done):
    return RecordSummary(
        id=record_id, source_database='SALES', source_schema='PUBLIC', source_table=table_name,
        ddl_extracted=True, ddl_translated=True, table_created=True, data_unloaded=done,
        data_loaded=done, row_processing_done=done, created_at=None, updated_at=None,
        is_success=done, request_log_id='log-1',
        last_error=None if done else f"{table_name}, Error: x, Error Code:1001"
    )


class RoutesTestCase(unittest.TestCase):

    def setUp(self):
        self.app = create_app('testing')
        self.client = self.app.test_client()
        self.pipeline = Mock()
        self.token_service = Mock()
        patchers = [
            patch('table_migrator.api.migration_routes.get_pipeline', return_value=self.pipeline),
            patch('table_migrator.api.migration_routes.get_token_service', return_value=self.token_service),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)


class TestMigrateRoute(RoutesTestCase):
    """Test POST /api/migration/migrate-data."""

    def test_migrate_returns_ids(self):
        """Test that a valid batch returns the record ids with a mixed per-record status."""
        self.pipeline.migrate.return_value = [11, 12]
        self.pipeline.status_of.return_value = [_summary(11, 'ORDERS', True), _summary(12, 'CUSTOMERS', False)]

        response = self.client.post('/api/migration/migrate-data', json=MIGRATE_BODY)

        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertTrue(data['success'])
        self.assertEqual(data['request_ids'], [11, 12])
        self.assertTrue(data['request_log_id'])
        self.pipeline.status_of.assert_called_once_with([11, 12])
        self.assertEqual([r['is_success'] for r in data['records']], [True, False])
        self.assertIn('Error Code:1001', data['records'][1]['last_error'])

        batch = self.pipeline.migrate.call_args.args[0]
        self.assertEqual(batch.tables, ('ORDERS', 'CUSTOMERS'))

    def test_invalid_body(self):
        """Test that validation errors map to 400 without calling the pipeline."""
        response = self.client.post('/api/migration/migrate-data', json={'sourceDatabaseName': 'SALES'})

        self.assertEqual(response.status_code, 400)
        data = response.get_json()
        self.assertFalse(data['success'])
        self.assertEqual(data['details']['error_code'], 1008)
        self.pipeline.migrate.assert_not_called()

    def test_batch_failure(self):
        """Test that batch-level errors map to 500 with the correlation id."""
        self.pipeline.migrate.side_effect = TranslationWorkflowError()

        response = self.client.post('/api/migration/migrate-data', json=MIGRATE_BODY)

        self.assertEqual(response.status_code, 500)
        data = response.get_json()
        self.assertEqual(data['details']['error_code'], 1010)
        self.assertEqual(data['details']['request_log_id'], data['request_log_id'])


class TestRecoveryAndStatusRoutes(RoutesTestCase):
    """Test recovery and status endpoints."""

    def test_process_failed_request(self):
        """Test that recovery returns the status of each resumed record."""
        self.pipeline.process_failed_records.return_value = RecoveryResult(RecoveryStatus.RESUMED, [3, 4])
        self.pipeline.status_of.return_value = [_summary(3, 'ORDERS', True), _summary(4, 'ITEMS', False)]

        response = self.client.get('/api/migration/process-failed-request')

        data = response.get_json()
        self.assertEqual(data['status'], 'resumed')
        self.assertEqual(data['record_ids'], [3, 4])
        self.pipeline.status_of.assert_called_once_with([3, 4])
        self.assertEqual([r['is_success'] for r in data['records']], [True, False])

    def test_process_failed_request_nothing_to_do(self):
        self.pipeline.process_failed_records.return_value = RecoveryResult(RecoveryStatus.NO_CANDIDATES)

        response = self.client.get('/api/migration/process-failed-request')

        data = response.get_json()
        self.assertEqual(data['message'], 'No failed request present to process')
        self.assertEqual(data['records'], [])
        self.pipeline.status_of.assert_not_called()

    def test_status(self):
        """Test that status returns one summary per known id."""
        self.pipeline.status_of.return_value = [_summary(5, 'ORDERS', False)]

        response = self.client.get('/api/migration/status?ids=5,6')

        self.assertEqual(response.status_code, 200)
        self.pipeline.status_of.assert_called_once_with([5, 6])
        records = response.get_json()['records']
        self.assertEqual(records[0]['source_table'], 'ORDERS')
        self.assertFalse(records[0]['is_success'])

    def test_status_bad_ids(self):
        response = self.client.get('/api/migration/status?ids=5,abc')
        self.assertEqual(response.status_code, 400)

    def test_status_without_ids(self):
        response = self.client.get('/api/migration/status')
        self.assertEqual(response.status_code, 400)


class TestPartialRoutes(RoutesTestCase):
    """Test extract-only and unload-only endpoints."""

    def test_extract_ddl_without_data_fields(self):
        """Test that extract-only requests need no stage or format fields."""
        self.pipeline.extract_and_translate.return_value = 'Extract & translate DDL request completed successfully'
        body = {k: v for k, v in MIGRATE_BODY.items() if not k.startswith(('snowflake', 'bq'))}

        response = self.client.post('/api/migration/extract-ddl', json=body)

        self.assertEqual(response.status_code, 200)
        self.assertIn('completed successfully', response.get_json()['message'])

    def test_unload_to_stage(self):
        self.pipeline.unload_tables.return_value = {'ORDERS': 'Success'}

        response = self.client.post('/api/migration/unload-to-stage', json={
            'sourceDatabaseName': 'SALES',
            'sourceSchemaName': 'PUBLIC',
            'snowflakeStageLocation': 'stage-bucket/unload',
            'snowflakeFileFormatValue': 'SF_CSV_FORMAT',
            'tableNames': ['ORDERS'],
        })

        self.assertEqual(response.get_json()['tables'], {'ORDERS': 'Success'})

    def test_unexpected_error(self):
        self.pipeline.unload_tables.side_effect = TableCreationError()

        response = self.client.post('/api/migration/unload-to-stage', json={
            'source_database': 'SALES',
            'source_schema': 'PUBLIC',
            'stage_location': 'stage',
            'source_file_format': 'FMT',
            'tables': 'ORDERS',
        })

        self.assertEqual(response.status_code, 500)


class TestTokenRoutes(RoutesTestCase):
    """Test OAuth endpoints."""

    def test_save_oauth_values(self):
        values = {'clientId': 'c', 'clientSecret': 's', 'refreshToken': 'r'}

        response = self.client.post('/api/migration/save-oauth-values', json=values)

        self.assertEqual(response.status_code, 200)
        self.token_service.save_credentials.assert_called_once_with(values)

    def test_refresh_token(self):
        self.token_service.refresh_token.return_value = {'access_token': 'a', 'expires_in': 600}

        response = self.client.get('/api/migration/refresh-token')

        data = response.get_json()
        self.assertTrue(data['success'])
        self.assertEqual(data['expires_in'], 600)
        self.assertNotIn('access_token', data)

    def test_refresh_token_not_configured(self):
        """Test that refreshing before OAuth values are saved is a conflict."""
        self.token_service.refresh_token.return_value = None

        response = self.client.get('/api/migration/refresh-token')

        self.assertEqual(response.status_code, 409)

    def test_refresh_token_failure(self):
        self.token_service.refresh_token.side_effect = TokenRefreshError()

        response = self.client.get('/api/migration/refresh-token')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()['details']['error_code'], 1002)


class TestEncryptRoute(RoutesTestCase):
    """Test POST /api/migration/encrypt-values."""

    def test_encrypt_values(self):
        self.token_service.encrypt_values.return_value = {'password': 'gAAAA-token'}

        response = self.client.post('/api/migration/encrypt-values', json={'password': 'p'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['values'], {'password': 'gAAAA-token'})
        self.token_service.encrypt_values.assert_called_once_with({'password': 'p'})

    def test_empty_body(self):
        self.token_service.encrypt_values.side_effect = RequestValidationError()

        response = self.client.post('/api/migration/encrypt-values', json={})

        self.assertEqual(response.status_code, 400)

    def test_blank_value(self):
        self.token_service.encrypt_values.side_effect = EncryptionError()

        response = self.client.post('/api/migration/encrypt-values', json={'password': ''})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()['details']['error_code'], 1012)


class TestAppRoutes(unittest.TestCase):
    """Test application-level routes."""

    def test_not_found(self):
        client = create_app('testing').test_client()
        response = client.get('/api/migration/unknown')
        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.get_json()['success'])

    def test_root(self):
        client = create_app('testing').test_client()
        data = client.get('/').get_json()
        self.assertIn('/api/migration/migrate-data', data['endpoints'])


if __name__ == '__main__':
    unittest.main()
