"""Record store and existing-record lookup."""

from .record_resolver import ExistingRecordResolver
from .record_store import SqlServerRecordStore

__all__ = ['ExistingRecordResolver', 'SqlServerRecordStore']
