#!/usr/bin/env python
"""
Create the migration record schema in the configured record store.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from table_migrator.database.connection import DatabaseConnection
from table_migrator.errors import MigrationError
from table_migrator.utils.logger import setup_logging, get_logger


def main():
    parser = argparse.ArgumentParser(description='Create the migration record schema')
    parser.add_argument(
        '--drop',
        action='store_true',
        help='Drop the migration records table first (all progress is lost)'
    )
    args = parser.parse_args()

    setup_logging()
    logger = get_logger(__name__)

    try:
        db = DatabaseConnection()
        if not db.check_connection():
            print("Error: record store is unreachable")
            sys.exit(1)

        if args.drop:
            answer = input("Drop every migration record? (yes/no): ")
            if answer.strip().lower() != 'yes':
                print("Nothing dropped")
                sys.exit(0)
            db.drop_schema()

        db.create_schema()

        tables = sorted(inspect(db.engine).get_table_names())
        print(f"Record store ready ({len(tables)} table(s)):")
        for table in tables:
            print(f"  - {table}")

    except (MigrationError, SQLAlchemyError) as e:
        logger.error(f"Schema creation failed: {e}")
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
