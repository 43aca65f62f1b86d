"""
Configuration Module
Loads the migration service settings from YAML files, with `${VAR}` and
`${VAR:-default}` placeholders resolved from the environment.
"""

import os
import re
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

from table_migrator.errors import ConfigLoadError

_ENV_PLACEHOLDER = re.compile(r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}')


def expand_env_placeholders(text: str) -> str:
    """
    Replace environment placeholders in raw YAML text.

    `${NAME}` is left untouched when NAME is unset; `${NAME:-fallback}`
    becomes the fallback.
    """
    def _resolve(match):
        value = os.getenv(match.group(1))
        if value is not None:
            return value
        if match.group(2) is not None:
            return match.group(2)
        return match.group(0)

    return _ENV_PLACEHOLDER.sub(_resolve, text)


class ConfigManager:
    """Process-wide access to config.yaml and table_queries.yaml."""

    _instance = None
    _config: Dict = None
    _table_queries: Dict = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self._load()

    def _load(self) -> None:
        load_dotenv()

        self._config_dir = self._locate_config_dir()
        self._config = self._read_yaml(self._config_dir / 'config.yaml')

        # Optional per-table extraction queries
        self._table_queries = self._read_yaml(self._config_dir / 'table_queries.yaml')

    def _locate_config_dir(self) -> Path:
        """CONFIG_DIR when set, otherwise the first known location that exists."""
        override = os.getenv('CONFIG_DIR')
        if override:
            directory = Path(override)
            if not directory.is_dir():
                raise ConfigLoadError(f"Configuration directory not found: {override}")
            return directory

        candidates = (
            Path(__file__).parent.parent / 'config',
            Path.cwd() / 'config',
            Path('/app/config'),  # container image
        )
        for directory in candidates:
            if directory.exists():
                return directory

        raise ConfigLoadError("Configuration directory not found")

    def _read_yaml(self, file_path: Path) -> Dict:
        """Parse one YAML file after placeholder expansion. Missing files read as empty."""
        if not file_path.exists():
            return {}

        raw = file_path.read_text(encoding='utf-8')

        try:
            data = yaml.safe_load(expand_env_placeholders(raw)) or {}
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML in {file_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigLoadError(f"Expected a mapping at the top of {file_path}")
        return data

    # ========================================
    # Sections
    # ========================================

    def get_snowflake_config(self) -> Dict:
        """Snowflake REST API endpoint, polling and JDBC settings."""
        return self._config.get('snowflake', {})

    def get_oauth_config(self) -> Dict:
        return self._config.get('oauth', {})

    def get_database_config(self) -> Dict:
        """Migration record store connection settings."""
        return self._config.get('database', {})

    def get_migration_config(self) -> Dict:
        """Worker pool, deadline and translation wait settings."""
        return self._config.get('migration', {})

    def get_gcp_config(self) -> Dict:
        return self._config.get('gcp', {})

    def get_logging_config(self) -> Dict:
        return self._config.get('logging', {})

    def get_scheduler_config(self) -> Dict:
        return self._config.get('scheduler', {})

    def get_security_config(self) -> Dict:
        """Passphrase used to encrypt OAuth values in memory."""
        return self._config.get('security', {})

    # ========================================
    # Table Query Mapping
    # ========================================

    def get_table_queries(self) -> Dict[str, str]:
        """Get the table name to extraction query mapping."""
        return self._table_queries.get('tables', {}) or {}

    def get_table_query(self, table_name: str) -> Optional[str]:
        """
        Get the custom extraction query for a table.

        Used when a table should be exported through a SELECT rather than
        in full (unsupported column types, reformatted values, PII columns).

        Args:
            table_name: Name of the table

        Returns:
            Query text or None when the table is exported in full
        """
        query = self.get_table_queries().get(table_name)
        if query:
            return query.strip()
        return None

    def reload(self) -> None:
        """Re-read both files from the configuration directory."""
        self._config = None
        self._table_queries = None
        self._load()

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access reloads from disk."""
        cls._instance = None
        cls._config = None
        cls._table_queries = None
