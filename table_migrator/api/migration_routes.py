"""
Migration API Blueprint
Provides REST endpoints for running, resuming and monitoring table migrations.
"""

from flask import Blueprint, jsonify, request

from table_migrator.errors import MigrationError, RequestValidationError
from table_migrator.migration_pipeline import get_pipeline
from table_migrator.schemas import MigrationBatchRequest, UnloadBatchRequest
from table_migrator.token_service import get_token_service
from table_migrator.utils.helpers import parse_id_list
from table_migrator.utils.logger import get_logger, request_log_context

logger = get_logger(__name__)

migration_bp = Blueprint('migration', __name__, url_prefix='/api/migration')


def _error_response(error: Exception, request_log_id: str):
    """Map an exception to a JSON error response."""
    if isinstance(error, MigrationError):
        error.request_log_id = error.request_log_id or request_log_id
        status = 400 if isinstance(error, RequestValidationError) else 500
        body = {'success': False, 'error': str(error), 'details': error.to_dict()}
    else:
        status = 500
        body = {'success': False, 'error': str(error)}
    body['request_log_id'] = request_log_id
    return jsonify(body), status


@migration_bp.route('/migrate-data', methods=['POST'])
def migrate_data():
    """
    Migrate a batch of tables.

    Body:
        Batch request (source/target coordinates, buckets, stage location, formats)

    Returns:
        JSON with the ids and per-record status of the records created for the batch
    """
    with request_log_context() as request_log_id:
        try:
            batch = MigrationBatchRequest.from_dict(request.get_json(silent=True))
            logger.info(f"Migration triggered via API for {batch.source_database}.{batch.source_schema}")

            pipeline = get_pipeline()
            record_ids = pipeline.migrate(batch)

            return jsonify({
                'success': True,
                'request_ids': record_ids,
                'records': [summary.to_dict() for summary in pipeline.status_of(record_ids)],
                'request_log_id': request_log_id
            })

        except Exception as e:
            logger.error(f"Migration request failed: {e}")
            return _error_response(e, request_log_id)


@migration_bp.route('/process-failed-request', methods=['GET'])
def process_failed_request():
    """
    Resume unfinished records whose data was already exported.

    Returns:
        JSON with the recovery status and the status of each resumed record
    """
    with request_log_context() as request_log_id:
        try:
            pipeline = get_pipeline()
            result = pipeline.process_failed_records()
            body = result.to_dict()
            summaries = pipeline.status_of(result.record_ids) if result.record_ids else []
            body['records'] = [summary.to_dict() for summary in summaries]
            body.update({'success': True, 'request_log_id': request_log_id})
            return jsonify(body)

        except Exception as e:
            logger.error(f"Processing failed requests failed: {e}")
            return _error_response(e, request_log_id)


@migration_bp.route('/status', methods=['GET'])
def get_status():
    """
    Get the status of migration records.

    Query params:
        ids: Comma-separated record ids

    Returns:
        JSON with one summary per known record
    """
    with request_log_context() as request_log_id:
        try:
            try:
                ids = parse_id_list(request.args.get('ids'))
            except ValueError:
                raise RequestValidationError("ids must be a comma-separated list of integers")
            if not ids:
                raise RequestValidationError("ids query parameter is required")

            summaries = get_pipeline().status_of(ids)
            return jsonify({
                'success': True,
                'records': [summary.to_dict() for summary in summaries]
            })

        except Exception as e:
            logger.error(f"Status request failed: {e}")
            return _error_response(e, request_log_id)


@migration_bp.route('/extract-ddl', methods=['POST'])
def extract_ddl():
    """Extract, upload and translate DDL for a schema or list of tables."""
    with request_log_context() as request_log_id:
        try:
            batch = MigrationBatchRequest.from_dict(request.get_json(silent=True), require_data_fields=False)
            message = get_pipeline().extract_and_translate(batch)
            return jsonify({'success': True, 'message': message, 'request_log_id': request_log_id})

        except Exception as e:
            logger.error(f"Extract DDL request failed: {e}")
            return _error_response(e, request_log_id)


@migration_bp.route('/unload-to-stage', methods=['POST'])
def unload_to_stage():
    """
    Export a list of tables to the stage location.

    Returns:
        JSON mapping each table to "Success" or "Failed: <reason>"
    """
    with request_log_context() as request_log_id:
        try:
            unload_request = UnloadBatchRequest.from_dict(request.get_json(silent=True))
            results = get_pipeline().unload_tables(unload_request)
            return jsonify({'success': True, 'tables': results, 'request_log_id': request_log_id})

        except Exception as e:
            logger.error(f"Unload request failed: {e}")
            return _error_response(e, request_log_id)


@migration_bp.route('/save-oauth-values', methods=['POST'])
def save_oauth_values():
    """Store OAuth values (client id, client secret, refresh token) encrypted in memory."""
    with request_log_context() as request_log_id:
        try:
            get_token_service().save_credentials(request.get_json(silent=True))
            return jsonify({'success': True, 'message': 'OAuth values saved'})

        except Exception as e:
            logger.error(f"Saving OAuth values failed: {e}")
            return _error_response(e, request_log_id)


@migration_bp.route('/refresh-token', methods=['GET'])
def refresh_token():
    """Refresh the access token now."""
    with request_log_context() as request_log_id:
        try:
            body = get_token_service().refresh_token()
            if body is None:
                return jsonify({'success': False, 'message': 'OAuth values are not set'}), 409
            return jsonify({
                'success': True,
                'message': 'Token refreshed',
                'expires_in': body.get('expires_in')
            })

        except Exception as e:
            logger.error(f"Token refresh request failed: {e}")
            return _error_response(e, request_log_id)


@migration_bp.route('/encrypt-values', methods=['POST'])
def encrypt_values():
    """Encrypt each value of the posted mapping and return the mapping."""
    with request_log_context() as request_log_id:
        try:
            encrypted = get_token_service().encrypt_values(request.get_json(silent=True))
            return jsonify({'success': True, 'values': encrypted})

        except Exception as e:
            logger.error(f"Encrypting values failed: {e}")
            return _error_response(e, request_log_id)
