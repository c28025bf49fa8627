"""
Clinical Tabular Loading System

A declarative loader that materializes spreadsheet-like clinical and research data
(subjects, time-stamped events, researchers, IRBs, studies, publications) into a
normalized relational schema, one all-or-nothing transaction per source file.
"""

__version__ = "1.0.0"
__author__ = "Clinical ETL Team"

# Import core models and interfaces for easy access
from .models import (
    RecordKind,
    ExistingRecordAction,
    ReconciliationPolicy,
    ColumnDescriptor,
    ObjectMapEntry,
    SourceDescriptor,
    Provenance,
    DataListEntry,
    RowWarning,
    LoadResult,
    LoadDefinition
)

from .interfaces import (
    RowSourceInterface,
    RecordStoreInterface
)

from .exceptions import (
    ETLError,
    ConfigurationError,
    InputError,
    ConsistencyError,
    RecordValidationError,
    DatabaseConnectionError
)

__all__ = [
    # Core models
    "RecordKind",
    "ExistingRecordAction",
    "ReconciliationPolicy",
    "ColumnDescriptor",
    "ObjectMapEntry",
    "SourceDescriptor",
    "Provenance",
    "DataListEntry",
    "RowWarning",
    "LoadResult",
    "LoadDefinition",

    # Interfaces
    "RowSourceInterface",
    "RecordStoreInterface",

    # Exceptions
    "ETLError",
    "ConfigurationError",
    "InputError",
    "ConsistencyError",
    "RecordValidationError",
    "DatabaseConnectionError"
]
