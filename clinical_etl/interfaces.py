"""
Abstract interfaces for the clinical tabular loading system.

This module defines the contracts the loading engine relies on: the row source
adapters that read tabular files and the record store that persists records.
Implementations are injected into the loader, which keeps the core engine free of
file-format and database specifics.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import List, Dict, Any, Optional

from .models import RecordKind, Provenance


class RowSourceInterface(ABC):
    """Abstract interface for tabular row sources (CSV, legacy and modern spreadsheets, DBF)."""

    @abstractmethod
    def sheets(self) -> List[str]:
        """
        List the pages/sheets available in the source.

        Returns:
            Sheet names; single-page formats return one synthetic name
        """
        pass

    @abstractmethod
    def select_default_page(self, name: Optional[str] = None) -> None:
        """
        Select the page rows are read from.

        Args:
            name: Sheet name, or None for the first sheet

        Raises:
            ConfigurationError: If the named sheet does not exist
        """
        pass

    @abstractmethod
    def row_count(self) -> int:
        """Number of rows in the selected page, header included."""
        pass

    @abstractmethod
    def row(self, index: int) -> List[Any]:
        """
        Read one row.

        Args:
            index: 1-indexed row number

        Returns:
            Ordered cell values of the row
        """
        pass

    def close(self) -> None:
        """Release any file handles held by the source."""
        pass


class RecordStoreInterface(ABC):
    """
    Abstract interface for the relational record store the loader writes into.

    Records are exchanged as dictionaries that carry at least an 'id' key.
    All methods run inside the transaction opened by transaction().
    """

    @abstractmethod
    @contextmanager
    def transaction(self):
        """
        Context manager wrapping one all-or-nothing unit of work.

        Commits when the block exits normally and rolls back on any exception,
        which is re-raised.
        """
        pass

    @abstractmethod
    def find(self, kind: RecordKind, conditions: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Find records of a kind whose fields equal the given values.

        Args:
            kind: Record kind to query
            conditions: Field name to value equality conditions

        Returns:
            Matching records (possibly empty)
        """
        pass

    @abstractmethod
    def create(self, kind: RecordKind, attributes: Dict[str, Any],
               provenance: Optional[Provenance]) -> Dict[str, Any]:
        """
        Validate and create a record, stamping it with provenance.

        Raises:
            RecordValidationError: If required fields are missing or uniqueness is violated
        """
        pass

    @abstractmethod
    def update_with_provenance(self, kind: RecordKind, record: Dict[str, Any],
                               attributes: Dict[str, Any], provenance: Provenance) -> Dict[str, Any]:
        """Update an existing record and stamp the change with provenance."""
        pass

    @abstractmethod
    def direct_insert_event(self, attributes: Dict[str, Any]) -> Any:
        """
        Insert an event and its data list without validation or provenance logging.

        Returns:
            Identifier of the inserted event
        """
        pass

    @abstractmethod
    def hard_delete_events(self, subject: Dict[str, Any], event_name: str) -> int:
        """
        Permanently delete all events with the given name for a subject.

        Returns:
            Number of events deleted
        """
        pass

    @abstractmethod
    def add_membership(self, kind: RecordKind, record: Dict[str, Any], subject: Dict[str, Any]) -> bool:
        """
        Add a subject to an IRB, study or publication unless it is already a member.

        Returns:
            True if a membership was added, False if it already existed
        """
        pass

    @abstractmethod
    def set_role_association(self, researcher: Dict[str, Any], subject_id: Any,
                             researcher_type: Optional[str], role: Optional[str]) -> None:
        """Associate a researcher with a subject under a type and role."""
        pass

    @abstractmethod
    def touch(self, kind: RecordKind, record: Dict[str, Any]) -> None:
        """Refresh the modification timestamp of a record."""
        pass

    @abstractmethod
    def find_event_dictionary(self, name: str) -> Optional[Dict[str, Any]]:
        """Look up an event dictionary entry by name."""
        pass

    @abstractmethod
    def count_events(self, subject_id: Any, event_name: str) -> int:
        """Count the events with a given name already stored for a subject."""
        pass

    @abstractmethod
    def register_source(self, source_type_name: str, user_email: str, documentation_title: str,
                        location: str, notes: Optional[str] = None) -> Provenance:
        """
        Create a source record for a file about to be loaded.

        Raises:
            ConfigurationError: If the source type, user or documentation cannot be found
        """
        pass

    def close(self) -> None:
        """Release database resources."""
        pass
