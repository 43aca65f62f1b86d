"""
Unit Tests for the Migration Record Store
Tests write-through persistence against a temporary SQLite database.
"""

import tempfile
import unittest

from fakes import make_batch_request, make_test_db

from table_migrator.database.models import MigrationRecord, MigrationState
from table_migrator.database.queries import MigrationRecordStore
from table_migrator.errors import PersistenceError


class TestMigrationRecordStore(unittest.TestCase):
    """Test saving and querying migration records."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db = make_test_db(self.tmpdir.name)
        self.store = MigrationRecordStore(self.db)
        self.request = make_batch_request()

    def tearDown(self):
        self.db.dispose()
        self.tmpdir.cleanup()

    def _new_record(self, table_name='ORDERS', state=MigrationState.DDL_EXTRACTED):
        record = MigrationRecord.for_table(self.request, table_name, 'log-1')
        record.advance_to(state)
        return record

    def test_save_assigns_id(self):
        """Test that inserting a record assigns a surrogate id and timestamps."""
        record = self.store.save(self._new_record())

        self.assertIsNotNone(record.id)
        self.assertIsNotNone(record.created_at)

        stored = self.store.get(record.id)
        self.assertEqual(stored.source_table, 'ORDERS')
        self.assertEqual(stored.current_state, MigrationState.DDL_EXTRACTED)

    def test_update_is_visible(self):
        """Test that a later save of the same record updates the row."""
        record = self.store.save(self._new_record())
        record.advance_to(MigrationState.TABLE_CREATED)
        record.translated_ddl_path = 'out/ORDERS.sql'
        self.store.save(record)

        stored = self.store.get(record.id)
        self.assertEqual(stored.current_state, MigrationState.TABLE_CREATED)
        self.assertEqual(stored.translated_ddl_path, 'out/ORDERS.sql')

    def test_regression_refused(self):
        """Test that a stale copy cannot move the stored row backwards."""
        record = self.store.save(self._new_record(state=MigrationState.DATA_UNLOADED))

        stale = self.store.get(record.id)
        stale.state = MigrationState.TABLE_CREATED

        with self.assertRaises(PersistenceError):
            self.store.save(stale)
        self.assertEqual(self.store.get(record.id).current_state, MigrationState.DATA_UNLOADED)

    def test_save_all(self):
        """Test that several records are inserted in one call."""
        records = self.store.save_all([self._new_record('A'), self._new_record('B'), self._new_record('C')])
        ids = [record.id for record in records]

        self.assertEqual(len(set(ids)), 3)
        self.assertEqual([r.source_table for r in self.store.find_by_ids(ids)], ['A', 'B', 'C'])

    def test_find_by_ids_skips_unknown(self):
        """Test that unknown ids are omitted."""
        record = self.store.save(self._new_record())
        self.assertEqual(len(self.store.find_by_ids([record.id, 9999])), 1)
        self.assertEqual(self.store.find_by_ids([]), [])

    def test_find_by_processing_done(self):
        """Test the recovery scan by row_processing_done."""
        done = self.store.save(self._new_record('DONE_TABLE', MigrationState.DONE))
        pending = self.store.save(self._new_record('PENDING_TABLE', MigrationState.DATA_UNLOADED))

        unfinished = self.store.find_by_processing_done(False)
        finished = self.store.find_by_processing_done(True)

        self.assertEqual([r.id for r in unfinished], [pending.id])
        self.assertEqual([r.id for r in finished], [done.id])


if __name__ == '__main__':
    unittest.main()
