#!/usr/bin/env python
"""
Run Migration Script
Command-line script for running, resuming and inspecting table migrations.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from table_migrator.errors import MigrationError
from table_migrator.migration_pipeline import get_pipeline
from table_migrator.schemas import MigrationBatchRequest, UnloadBatchRequest
from table_migrator.utils.helpers import parse_id_list
from table_migrator.utils.logger import setup_logging, get_logger, request_log_context


def _load_request(path: str) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _print_status(pipeline, ids):
    for summary in pipeline.status_of(ids):
        steps = [
            ('extracted', summary.ddl_extracted),
            ('translated', summary.ddl_translated),
            ('created', summary.table_created),
            ('unloaded', summary.data_unloaded),
            ('loaded', summary.data_loaded),
        ]
        flags = ' '.join(f"{name}={'Y' if done else 'N'}" for name, done in steps)
        print(f"[{summary.id}] {summary.source_database}.{summary.source_schema}.{summary.source_table} "
              f"{flags} success={summary.is_success}")
        if summary.last_error:
            print(f"      last error: {summary.last_error}")


def main():
    """Main entry point for the migration script."""
    parser = argparse.ArgumentParser(description='Run Snowflake to BigQuery table migrations')
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--request', help='JSON file with a batch migration request')
    group.add_argument('--extract-only', metavar='REQUEST', help='Extract and translate DDL only')
    group.add_argument('--unload-only', metavar='REQUEST', help='Export tables to the stage location only')
    group.add_argument('--recover', action='store_true', help='Resume unfinished records')
    group.add_argument('--status', metavar='IDS', help='Comma-separated record ids to report on')

    args = parser.parse_args()

    setup_logging()
    logger = get_logger(__name__)

    with request_log_context() as request_log_id:
        try:
            pipeline = get_pipeline()

            if args.request:
                batch = MigrationBatchRequest.from_dict(_load_request(args.request))
                ids = pipeline.migrate(batch)
                print(f"\n{'='*50}")
                print("Migration Batch Complete")
                print(f"{'='*50}")
                print(f"Request Log ID: {request_log_id}")
                _print_status(pipeline, ids)

            elif args.extract_only:
                batch = MigrationBatchRequest.from_dict(_load_request(args.extract_only), require_data_fields=False)
                print(pipeline.extract_and_translate(batch))

            elif args.unload_only:
                unload_request = UnloadBatchRequest.from_dict(_load_request(args.unload_only))
                for table_name, outcome in pipeline.unload_tables(unload_request).items():
                    print(f"{table_name}: {outcome}")

            elif args.recover:
                result = pipeline.process_failed_records()
                print(result.message)
                if result.record_ids:
                    _print_status(pipeline, result.record_ids)

            else:
                _print_status(pipeline, parse_id_list(args.status))

        except (MigrationError, ValueError, OSError) as e:
            logger.error(f"Migration command failed: {e}")
            print(f"\nError: {e}")
            sys.exit(1)


if __name__ == '__main__':
    main()
