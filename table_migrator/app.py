"""
Migration Service Application
Builds the Flask app serving the migration API and the scheduler that keeps
the Snowflake access token fresh.
"""

import os
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from flask import Flask, jsonify
from flask_cors import CORS

from table_migrator.config_manager import ConfigManager
from table_migrator.database.connection import get_db
from table_migrator.errors import MigrationError
from table_migrator.utils.logger import get_logger, request_log_context, setup_logging

API_ENDPOINTS = {
    '/health': 'Service and record store status',
    '/api/migration/migrate-data': 'Migrate a batch of tables (POST)',
    '/api/migration/process-failed-request': 'Resume unfinished tables (GET)',
    '/api/migration/status?ids=1,2': 'Record status (GET)',
    '/api/migration/extract-ddl': 'Extract and translate DDL only (POST)',
    '/api/migration/unload-to-stage': 'Export tables to the stage location only (POST)',
    '/api/migration/save-oauth-values': 'Store OAuth values (POST)',
    '/api/migration/refresh-token': 'Refresh the access token (GET)',
    '/api/migration/encrypt-values': 'Encrypt the values of a mapping (POST)',
}


def _register_error_handlers(app: Flask) -> None:

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Resource not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'success': False, 'error': 'Unexpected server error'}), 500


def create_app(config_name: str = None) -> Flask:
    """
    Build the migration service.

    Args:
        config_name: 'testing' enables Flask test mode

    Returns:
        Flask application with the migration blueprint registered
    """
    setup_logging()
    logger = get_logger(__name__)

    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=os.getenv('FLASK_SECRET_KEY', 'change-me'),
        JSON_SORT_KEYS=False,
        TESTING=config_name == 'testing'
    )

    CORS(app)

    from table_migrator.api.migration_routes import migration_bp
    app.register_blueprint(migration_bp)

    @app.route('/health', methods=['GET'])
    def health():
        store_ok = get_db().check_connection()
        return jsonify({
            'status': 'ok' if store_ok else 'degraded',
            'record_store': 'reachable' if store_ok else 'unreachable',
            'checked_at': datetime.utcnow().isoformat()
        })

    @app.route('/', methods=['GET'])
    def index():
        return jsonify({
            'service': 'table-migrator',
            'version': '1.0.0',
            'endpoints': API_ENDPOINTS
        })

    _register_error_handlers(app)

    logger.info("Migration service created")
    return app


def create_scheduler(app: Flask = None) -> BackgroundScheduler:
    """
    Build the background scheduler with the token refresh job.

    Args:
        app: Application the scheduler runs beside

    Returns:
        Scheduler, not yet started
    """
    logger = get_logger(__name__)
    scheduler_config = ConfigManager().get_scheduler_config()

    scheduler = BackgroundScheduler()
    if not scheduler_config.get('enabled', True):
        logger.info("Token refresh scheduling disabled")
        return scheduler

    interval = scheduler_config.get('token_refresh_interval_seconds', 600)
    initial_delay = scheduler_config.get('token_refresh_initial_delay_seconds', 300)
    trigger = IntervalTrigger(seconds=interval)

    @scheduler.scheduled_job(
        trigger,
        id='token_refresh',
        next_run_time=datetime.now(trigger.timezone) + timedelta(seconds=initial_delay)
    )
    def scheduled_token_refresh():
        with request_log_context():
            try:
                from table_migrator.token_service import get_token_service
                get_token_service().refresh_token()
                logger.info("Scheduled token refresh finished")
            except MigrationError as e:
                logger.error(f"Scheduled token refresh failed: {e}")

    logger.info(f"Token refresh every {interval}s, first run in {initial_delay}s")
    return scheduler


if __name__ == '__main__':
    service = create_app()
    token_scheduler = create_scheduler(service)
    token_scheduler.start()

    try:
        service.run(
            host=os.getenv('FLASK_HOST', '0.0.0.0'),
            port=int(os.getenv('FLASK_PORT', 8080)),
            debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true'
        )
    finally:
        token_scheduler.shutdown()
