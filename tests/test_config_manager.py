"""
Unit Tests for the Configuration Manager
Tests YAML loading, environment substitution and table query lookup.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from table_migrator.config_manager import ConfigManager
from table_migrator.errors import ConfigLoadError


CONFIG_YAML = """
snowflake:
  account_url: ${TEST_SNOWFLAKE_URL:-https://default.snowflakecomputing.com}
  max_attempts: 3
migration:
  max_pool_size: ${TEST_POOL_SIZE:-10}
gcp:
  project: ${TEST_UNSET_PROJECT}
"""

QUERIES_YAML = """
tables:
  CUSTOMERS: |
    SELECT ID, NAME FROM CUSTOMERS
"""


class TestConfigManager(unittest.TestCase):
    """Test configuration loading from a temporary config directory."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.config_dir = Path(self.tmpdir.name)
        (self.config_dir / 'config.yaml').write_text(CONFIG_YAML, encoding='utf-8')
        ConfigManager.reset()

    def tearDown(self):
        ConfigManager.reset()
        self.tmpdir.cleanup()

    def _load(self, **env):
        env.setdefault('CONFIG_DIR', str(self.config_dir))
        with patch.dict(os.environ, env):
            return ConfigManager()

    def test_defaults_applied(self):
        """Test that ${VAR:-default} falls back to the default."""
        config = self._load()
        self.assertEqual(config.get_snowflake_config()['account_url'], 'https://default.snowflakecomputing.com')
        self.assertEqual(config.get_migration_config()['max_pool_size'], 10)

    def test_environment_overrides(self):
        """Test that set environment variables win over defaults."""
        config = self._load(TEST_SNOWFLAKE_URL='https://acme.snowflakecomputing.com', TEST_POOL_SIZE='3')
        self.assertEqual(config.get_snowflake_config()['account_url'], 'https://acme.snowflakecomputing.com')
        self.assertEqual(config.get_migration_config()['max_pool_size'], 3)

    def test_unset_variable_kept(self):
        """Test that a required variable that is not set is left as written."""
        config = self._load()
        self.assertEqual(config.get_gcp_config()['project'], '${TEST_UNSET_PROJECT}')

    def test_singleton(self):
        self.assertIs(self._load(), self._load())

    def test_missing_sections_are_empty(self):
        config = self._load()
        self.assertEqual(config.get_oauth_config(), {})
        self.assertEqual(config.get_table_queries(), {})
        self.assertIsNone(config.get_table_query('ORDERS'))

    def test_table_query(self):
        """Test that per-table extraction queries are read and trimmed."""
        (self.config_dir / 'table_queries.yaml').write_text(QUERIES_YAML, encoding='utf-8')
        config = self._load()

        self.assertEqual(config.get_table_query('CUSTOMERS'), 'SELECT ID, NAME FROM CUSTOMERS')
        self.assertIsNone(config.get_table_query('ORDERS'))

    def test_invalid_yaml(self):
        """Test that malformed YAML raises a configuration error."""
        (self.config_dir / 'config.yaml').write_text('snowflake: [unclosed', encoding='utf-8')

        with self.assertRaises(ConfigLoadError) as ctx:
            self._load()
        self.assertEqual(ctx.exception.error_code, 1000)

    def test_missing_config_dir(self):
        with self.assertRaises(ConfigLoadError):
            self._load(CONFIG_DIR=str(self.config_dir / 'missing'))

    def test_reload(self):
        """Test that reload picks up changed files."""
        config = self._load()
        (self.config_dir / 'config.yaml').write_text('migration:\n  max_pool_size: 2\n', encoding='utf-8')

        with patch.dict(os.environ, {'CONFIG_DIR': str(self.config_dir)}):
            config.reload()
        self.assertEqual(config.get_migration_config()['max_pool_size'], 2)


if __name__ == '__main__':
    unittest.main()
