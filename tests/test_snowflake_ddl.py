"""
Unit Tests for the Snowflake DDL Extractor
Tests table listing and DDL queries against a mocked engine.
"""

import unittest
from unittest.mock import MagicMock, Mock

from table_migrator.collaborators.snowflake_ddl import SnowflakeDDLExtractor
from table_migrator.errors import DdlExtractionError
from table_migrator.schemas import DDLRequest


def _row(name):
    row = Mock()
    row._mapping = {'name': name}
    return row


class TestSnowflakeDDLExtractor(unittest.TestCase):

    def setUp(self):
        self.conn = Mock()
        self.engine = MagicMock()
        self.engine.connect.return_value.__enter__.return_value = self.conn
        self.extractor = SnowflakeDDLExtractor(connection_url='snowflake://u:p@acct/{database}/{schema}')

    def _use_engine(self, schema):
        self.extractor._engines[('SALES', schema)] = self.engine

    def _statements(self):
        return [str(call.args[0]) for call in self.conn.execute.call_args_list]

    def test_whole_schema(self):
        """Test that the schema's tables are listed and each DDL is read."""
        self._use_engine('PUBLIC')
        ddl_result = Mock()
        ddl_result.scalar.return_value = 'create or replace TABLE ORDERS (ID NUMBER);'
        self.conn.execute.side_effect = [[_row('ORDERS')], ddl_result]

        ddls = self.extractor.extract(DDLRequest('SALES', 'PUBLIC', is_schema=True))

        self.assertEqual(list(ddls), ['ORDERS'])
        self.assertEqual(self._statements()[0], 'SHOW TABLES IN SCHEMA PUBLIC')
        self.assertEqual(self.conn.execute.call_args_list[1].args[1], {'table_name': 'ORDERS'})

    def test_quoted_schema_accepted(self):
        self._use_engine('"Mixed Case"')
        self.conn.execute.return_value = []

        with self.assertRaises(DdlExtractionError):
            self.extractor.extract(DDLRequest('SALES', '"Mixed Case"', is_schema=True))
        self.assertEqual(self._statements(), ['SHOW TABLES IN SCHEMA "Mixed Case"'])

    def test_invalid_schema_rejected(self):
        """Test that a schema name that is not an identifier never reaches Snowflake."""
        for schema in ('PUBLIC; DROP TABLE ORDERS', 'PUBLIC\n', '"a"b"', ''):
            self._use_engine(schema)
            with self.assertRaises(DdlExtractionError):
                self.extractor.extract(DDLRequest('SALES', schema, is_schema=True))

        self.conn.execute.assert_not_called()
        self.engine.connect.assert_not_called()

    def test_missing_ddl(self):
        self._use_engine('PUBLIC')
        ddl_result = Mock()
        ddl_result.scalar.return_value = None
        self.conn.execute.return_value = ddl_result

        with self.assertRaises(DdlExtractionError) as ctx:
            self.extractor.extract(DDLRequest('SALES', 'PUBLIC', tables=('MISSING',)))
        self.assertEqual(ctx.exception.table_name, 'MISSING')


if __name__ == '__main__':
    unittest.main()
