"""
Row Processor - executes a compiled loader plan against one source row at a time.

For every row that passes the row conditions, each plan entry is processed in
order:

    1. cell values are extracted (empty markers and blank cells become None)
    2. multi-valued entries fan out into one instance per ';'-separated part
    3. instances whose values are all None are skipped
    4. attribute sets are built, then resolved against the record store
       (update / ignore lookups, event fast-path insert, provenance-stamped create)
    5. the resolved record is associated with the row subject

A Subject entry replaces the row subject for the remaining entries of the row.
The processor never commits; the surrounding DatabaseLoader owns the transaction.
"""

import logging

from typing import List, Any, Dict, Optional, Sequence, Tuple

from ..exceptions import ETLError, ConfigurationError, InputError, RecordValidationError
from ..interfaces import RecordStoreInterface
from ..mapping.attribute_builder import AttributeBuilder
from ..mapping.condition_engine import CompiledCondition
from ..mapping.loader_plan import LoaderPlanEntry
from ..models import RecordKind, ExistingRecordAction, Provenance, LoadResult
from ..database.record_resolver import ExistingRecordResolver
from ..utils import StringUtils, ValidationUtils


class RowProcessor:
    """
    Applies the loader plan to individual rows.

    Counters and row warnings are accumulated on the LoadResult passed in.
    """

    def __init__(self, plan: List[LoaderPlanEntry], conditions: Sequence[CompiledCondition],
                 store: RecordStoreInterface, builder: AttributeBuilder, provenance: Provenance,
                 result: LoadResult, subject: Optional[Dict[str, Any]] = None,
                 empty_cell_markers: Sequence[Any] = (), multiple_delimiter: str = ';'):
        """
        Initialize the row processor.

        Args:
            plan: Compiled loader plan
            conditions: Compiled row conditions
            store: Record store (inside an open transaction)
            builder: Attribute builder
            provenance: Provenance stamped on created/updated records
            result: Load result receiving counters and warnings
            subject: Externally supplied subject for the whole load, if any
            empty_cell_markers: Cell values treated as empty
            multiple_delimiter: Separator of multi-valued cells
        """
        self.logger = logging.getLogger(__name__)
        self.plan = plan
        self.conditions = list(conditions)
        self.store = store
        self.builder = builder
        self.provenance = provenance
        self.result = result
        self.subject = subject
        self.empty_cell_markers = tuple(empty_cell_markers)
        self.multiple_delimiter = multiple_delimiter
        self.resolver = ExistingRecordResolver(store)

    def skip_row(self, row: Sequence[Any]) -> bool:
        """True when any row condition evaluates false for its cell."""
        for condition in self.conditions:
            if not condition.evaluate(self.cell_value(row, condition.column_index)):
                return True
        return False

    def ensure_subject_available(self) -> Optional[Dict[str, Any]]:
        """
        Initial row subject: the external subject, or None when rows supply it.

        Raises:
            ConfigurationError: If there is no external subject and the plan does not start with a Subject entry
        """
        if self.subject is not None:
            return self.subject
        if not self.plan or self.plan[0].kind != RecordKind.SUBJECT:
            raise ConfigurationError("Subject not derivable: not provided in row or initialization")
        return None

    def process_row(self, row_number: int, row: Sequence[Any]) -> bool:
        """
        Process one source row.

        Args:
            row_number: 1-indexed row number (for error context)
            row: Cell values

        Returns:
            False if the row was skipped by a condition, True otherwise

        Raises:
            ETLError: Any fatal error, annotated with the row number and plan entry
        """
        if self.skip_row(row):
            self.result.rows_skipped += 1
            return False

        row_subject = self.ensure_subject_available()

        for entry in self.plan:
            try:
                if self.subject is None:
                    self.destroy_existing_events(entry, row_subject)
                row_subject = self._process_entry(entry, row, row_number, row_subject)
            except ETLError as e:
                if e.row_number is None:
                    e.row_number = row_number
                if e.entry is None:
                    e.entry = entry.describe()
                raise

        if row_subject is not None:
            self.store.touch(RecordKind.SUBJECT, row_subject)
            self.result.add_subject_code(row_subject.get('subject_code'))
        return True

    def destroy_existing_events(self, entry: LoaderPlanEntry, subject: Optional[Dict[str, Any]]) -> int:
        """Hard delete the subject's events for a 'destroy' event entry."""
        if entry.existing_records.action != ExistingRecordAction.DESTROY or entry.kind != RecordKind.EVENT:
            return 0
        if subject is None:
            return 0

        self.logger.warning(f"Destroying existing '{entry.event_name}' events for subject {subject.get('subject_code')}")
        deleted = self.store.hard_delete_events(subject, entry.event_name)
        self.result.events_destroyed += deleted
        return deleted

    def cell_value(self, row: Sequence[Any], index: int) -> Any:
        """Cell at index with empty markers and blanks mapped to None."""
        value = self._raw_cell(row, index)
        if value in self.empty_cell_markers or StringUtils.is_blank(value):
            return None
        return value

    def split_instances(self, entry: LoaderPlanEntry, column_values: Dict[str, Any],
                        data_values: Dict[str, Any]) -> List[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """
        Split extracted values into per-instance (column values, data values) pairs.

        Raises:
            InputError: If the fields of a multi-valued entry split into different counts
        """
        if not entry.multiple:
            return [(column_values, data_values)]

        split_columns = {name: self._split(value) for name, value in column_values.items()}
        split_data = {name: self._split(value) for name, value in data_values.items()}

        counts = {len(parts) for parts in list(split_columns.values()) + list(split_data.values())}
        if not counts:
            return [(column_values, data_values)]
        if len(counts) != 1:
            raise InputError(
                f"Multiplicity mismatch: values split into {sorted(counts)} parts: {column_values} {data_values}",
                attributes=dict(column_values)
            )

        return [
            ({name: parts[n] for name, parts in split_columns.items()},
             {name: parts[n] for name, parts in split_data.items()})
            for n in range(counts.pop())
        ]

    def _process_entry(self, entry: LoaderPlanEntry, row: Sequence[Any], row_number: int,
                       row_subject: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        column_values = {name: self.cell_value(row, index) for name, index in entry.column_fields.items()}
        data_values = {name: self.cell_value(row, index) for name, index in entry.data_fields.items()}

        for instance_columns, instance_data in self.split_instances(entry, column_values, data_values):
            if ValidationUtils.all_none(instance_columns.values()) and ValidationUtils.all_none(instance_data.values()):
                continue

            attributes = self.builder.build(entry, instance_columns, instance_data, row_subject)
            record = self._resolve(entry, attributes, row_number)
            row_subject = entry.strategy.associate(self.store, record, entry, row_subject)

        return row_subject

    def _resolve(self, entry: LoaderPlanEntry, attributes: Dict[str, Any],
                 row_number: int) -> Optional[Dict[str, Any]]:
        action = entry.existing_records.action

        if action.requires_lookup:
            record = self.resolver.find_existing(entry, attributes)
            if record is not None:
                if action == ExistingRecordAction.UPDATE:
                    self.result.records_updated += 1
                    return self.store.update_with_provenance(
                        entry.kind, record, entry.strategy.prepare_attributes(dict(attributes)), self.provenance
                    )
                self.result.records_ignored += 1
                return record

        if entry.strategy.fast_path:
            self.result.events_inserted += 1
            return entry.strategy.persist(self.store, attributes, self.provenance)

        try:
            record = entry.strategy.persist(self.store, attributes, self.provenance)
        except RecordValidationError as e:
            message = f"{entry.describe()} failed to save: {e.message} | {e.errors}"
            self.logger.error(f"##### WARNING!! Row {row_number}: {message}")
            self.result.add_warning(row_number, entry.kind.value, message)
            return None

        self.result.records_created += 1
        return record

    @staticmethod
    def _raw_cell(row: Sequence[Any], index: int) -> Any:
        return row[index] if 0 <= index < len(row) else None

    def _split(self, value: Any) -> List[Any]:
        if value is None or isinstance(value, str):
            return StringUtils.split_multiple(value, self.multiple_delimiter)
        # Native numbers and dates carry a single value
        return [value]
