"""
Centralized configuration management for the clinical tabular loading system.

This module provides the ConfigManager class that serves as the single source of truth
for all configuration management, including database connections, loader settings,
load definition files and environment variable handling.
"""

import os
import json
import logging

from pathlib import Path
from typing import Dict, List, Any, Optional, Union
from dataclasses import dataclass, field

import yaml

from ..exceptions import ConfigurationError
from ..models import (
    ColumnDescriptor, ObjectMapEntry, SourceDescriptor, Provenance, LoadDefinition
)
from .processing_defaults import ProcessingDefaults


ENV_PREFIX = 'CLINICAL_ETL_'

SOURCE_REGISTRATION_FIELDS = ('source_type_name', 'user_email', 'documentation_title')


@dataclass
class DatabaseConfig:
    """Database configuration with environment variable support."""
    connection_string: str
    driver: str = "ODBC Driver 17 for SQL Server"
    server: str = "localhost\\SQLEXPRESS"
    database: str = "ClinicalResearchDB"
    trusted_connection: bool = True
    connection_timeout: int = ProcessingDefaults.CONNECTION_TIMEOUT
    target_schema: str = ProcessingDefaults.TARGET_SCHEMA

    @classmethod
    def from_environment(cls) -> 'DatabaseConfig':
        """Create database configuration from environment variables."""
        target_schema = os.environ.get(f'{ENV_PREFIX}DB_SCHEMA', cls.target_schema)
        connection_timeout = int(os.environ.get(f'{ENV_PREFIX}DB_CONNECTION_TIMEOUT', cls.connection_timeout))

        # Primary connection string from environment
        connection_string = os.environ.get(f'{ENV_PREFIX}CONNECTION_STRING')
        if connection_string:
            return cls(connection_string=connection_string, connection_timeout=connection_timeout,
                       target_schema=target_schema)

        # Build connection string from individual components
        driver = os.environ.get(f'{ENV_PREFIX}DB_DRIVER', cls.driver)
        server = os.environ.get(f'{ENV_PREFIX}DB_SERVER', cls.server)
        database = os.environ.get(f'{ENV_PREFIX}DB_DATABASE', cls.database)
        trusted_connection = os.environ.get(f'{ENV_PREFIX}DB_TRUSTED_CONNECTION', 'true').lower() == 'true'

        connection_string = (
            f"DRIVER={{{driver}}};"
            f"SERVER={server};"
            f"DATABASE={database};"
        )
        if trusted_connection:
            connection_string += "Trusted_Connection=yes;"
        else:
            username = os.environ.get(f'{ENV_PREFIX}DB_USERNAME', '')
            password = os.environ.get(f'{ENV_PREFIX}DB_PASSWORD', '')
            connection_string += f"UID={username};PWD={password};"
        connection_string += (
            f"Connection Timeout={connection_timeout};"
            f"Application Name=Clinical ETL Loader;"
            f"TrustServerCertificate=yes;"
            f"Encrypt=no;"
        )

        return cls(
            connection_string=connection_string,
            driver=driver,
            server=server,
            database=database,
            trusted_connection=trusted_connection,
            connection_timeout=connection_timeout,
            target_schema=target_schema
        )


@dataclass
class LoaderSettings:
    """Row processing settings with environment variable support."""
    empty_cell_markers: tuple = ProcessingDefaults.EMPTY_CELL_MARKERS
    reference_timezone: str = ProcessingDefaults.REFERENCE_TIMEZONE
    progress_interval: int = ProcessingDefaults.PROGRESS_INTERVAL
    multiple_delimiter: str = ProcessingDefaults.MULTIPLE_DELIMITER

    def __post_init__(self):
        self.empty_cell_markers = tuple(self.empty_cell_markers or ())
        if self.progress_interval < 1:
            raise ConfigurationError(f"progress_interval must be positive: {self.progress_interval}")
        if not self.multiple_delimiter:
            raise ConfigurationError("multiple_delimiter cannot be empty")

    @classmethod
    def from_environment(cls) -> 'LoaderSettings':
        """Create loader settings from environment variables."""
        markers = os.environ.get(f'{ENV_PREFIX}EMPTY_CELL_MARKERS')
        return cls(
            empty_cell_markers=tuple(m.strip() for m in markers.split(',') if m.strip()) if markers
            else cls.empty_cell_markers,
            reference_timezone=os.environ.get(f'{ENV_PREFIX}REFERENCE_TIMEZONE', cls.reference_timezone),
            progress_interval=int(os.environ.get(f'{ENV_PREFIX}PROGRESS_INTERVAL', cls.progress_interval)),
            multiple_delimiter=os.environ.get(f'{ENV_PREFIX}MULTIPLE_DELIMITER', cls.multiple_delimiter)
        )


class ConfigManager:
    """
    Centralized configuration manager serving as single source of truth.

    This class consolidates all configuration management including:
    - Database connection configuration
    - Loader settings
    - Load definition loading (YAML or JSON)
    """

    def __init__(self, base_config_path: Optional[Union[str, Path]] = None):
        """
        Initialize the centralized configuration manager.

        Args:
            base_config_path: Base path for relative definition paths. If None, uses
                              CLINICAL_ETL_CONFIG_PATH or the current directory.
        """
        self.logger = logging.getLogger(__name__)

        self.base_config_path = Path(base_config_path or os.environ.get(f'{ENV_PREFIX}CONFIG_PATH', Path.cwd()))
        self.database_config = DatabaseConfig.from_environment()
        self.loader_settings = LoaderSettings.from_environment()

        # Cache for loaded definitions
        self._definition_cache: Dict[str, LoadDefinition] = {}

        self.logger.info(f"ConfigManager initialized with base path: {self.base_config_path}")
        self.logger.info(f"Database server: {self.database_config.server}, schema: {self.database_config.target_schema}")

    def load_definition(self, definition_path: Union[str, Path]) -> LoadDefinition:
        """
        Load a load definition file with caching.

        Relative source paths inside the definition are resolved against the
        definition file's directory.

        Args:
            definition_path: Path to a .yaml/.yml or .json definition

        Returns:
            Parsed and validated load definition

        Raises:
            ConfigurationError: If the file is missing, unparseable or structurally invalid
        """
        full_path = Path(definition_path)
        if not full_path.is_absolute():
            full_path = self.base_config_path / full_path

        cache_key = str(full_path)
        if cache_key in self._definition_cache:
            self.logger.debug(f"Returning cached load definition for {cache_key}")
            return self._definition_cache[cache_key]

        if not full_path.exists():
            raise ConfigurationError(f"Load definition file not found: {full_path}")

        try:
            with open(full_path, 'r', encoding='utf-8') as file:
                if full_path.suffix.lower() in ['.yaml', '.yml']:
                    definition_data = yaml.safe_load(file)
                elif full_path.suffix.lower() == '.json':
                    definition_data = json.load(file)
                else:
                    raise ConfigurationError(f"Unsupported file format: {full_path.suffix}")
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to parse load definition file {full_path}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read load definition file {full_path}: {e}")

        definition = self.parse_definition(definition_data, base_path=full_path.parent)
        self._definition_cache[cache_key] = definition

        self.logger.info(
            f"Loaded definition from {full_path}: {len(definition.object_map)} object map entries, "
            f"{len(definition.column_map)} columns"
        )
        return definition

    def parse_definition(self, data: Any, base_path: Optional[Path] = None) -> LoadDefinition:
        """
        Build a LoadDefinition from parsed definition data.

        All structural problems are collected and reported together.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Load definition must be a mapping")

        errors: List[str] = []

        source = self._parse_section('source', data.get('source'), errors,
                                     lambda value: self._parse_source(value, base_path))
        object_map = self._parse_list('object_map', data.get('object_map'), errors, ObjectMapEntry)
        column_map = self._parse_list('column_map', data.get('column_map'), errors, ColumnDescriptor)

        provenance = None
        if data.get('provenance') is not None:
            provenance = self._parse_section('provenance', data['provenance'], errors,
                                             lambda value: Provenance(**value))

        source_registration = data.get('source_registration')
        if source_registration is not None:
            missing = [name for name in SOURCE_REGISTRATION_FIELDS if not source_registration.get(name)]
            if missing:
                errors.append(f"source_registration: missing {', '.join(missing)}")

        if errors:
            raise ConfigurationError(
                f"Load definition has {len(errors)} error(s):\n" + "\n".join(f"  - {e}" for e in errors)
            )

        subject_code = data.get('subject_code')
        return LoadDefinition(
            source=source,
            object_map=object_map,
            column_map=column_map,
            provenance=provenance,
            source_registration=source_registration,
            subject_code=str(subject_code) if subject_code is not None else None
        )

    @staticmethod
    def _parse_source(value: Dict[str, Any], base_path: Optional[Path]) -> SourceDescriptor:
        value = dict(value)
        path = Path(str(value.pop('path', '') or ''))
        if base_path is not None and str(path) and not path.is_absolute():
            path = base_path / path
        return SourceDescriptor(path=str(path) if str(path) != '.' else '', **value)

    @staticmethod
    def _parse_section(name: str, value: Any, errors: List[str], build) -> Any:
        if not isinstance(value, dict):
            errors.append(f"{name}: expected a mapping")
            return None
        try:
            return build(value)
        except (ConfigurationError, TypeError, ValueError) as e:
            errors.append(f"{name}: {e}")
            return None

    @staticmethod
    def _parse_list(name: str, value: Any, errors: List[str], build) -> List[Any]:
        if not isinstance(value, list) or not value:
            errors.append(f"{name}: expected a non-empty list")
            return []
        parsed = []
        for position, item in enumerate(value):
            if not isinstance(item, dict):
                errors.append(f"{name}[{position}]: expected a mapping")
                continue
            item = dict(item)
            if name == 'object_map' and 'class' in item and 'kind' not in item:
                item['kind'] = item.pop('class')
            try:
                parsed.append(build(**item))
            except (ConfigurationError, TypeError, ValueError) as e:
                errors.append(f"{name}[{position}]: {e}")
        return parsed


# Global configuration manager instance
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager(base_config_path: Optional[Union[str, Path]] = None) -> ConfigManager:
    """
    Get the global configuration manager instance.

    Args:
        base_config_path: Base path for configuration files. Only used on first call.

    Returns:
        Global ConfigManager instance
    """
    global _global_config_manager

    if _global_config_manager is None:
        _global_config_manager = ConfigManager(base_config_path)

    return _global_config_manager


def reset_config_manager() -> None:
    """Reset the global configuration manager instance."""
    global _global_config_manager
    _global_config_manager = None
