"""
Loader Plan compiler.

Turns a declarative object map and column map into an ordered loader plan: one
compiled entry per object map entry carrying its column bindings, data-list
bindings (events), multiplicity flag, time-format hints, resolved event dictionary
and record kind strategy. Row filter conditions are compiled alongside.

All configuration problems surface here, before any row is read.

Example (sleep stage file: subject code, wake period, decimal labtime, stage):

    column_map = [
        ColumnDescriptor(target='subject', field='subject_code'),
        ColumnDescriptor(target='datum', event_name='scored_epoch', field='sleep_wake_period'),
        ColumnDescriptor(target='event', event_name='scored_epoch', field='labtime_decimal'),
        ColumnDescriptor(target='datum', event_name='scored_epoch', field='scored_stage'),
    ]
    object_map = [
        ObjectMapEntry(kind='subject', existing_records={'action': 'ignore', 'find_by': ['subject_code']}),
        ObjectMapEntry(kind='event', event_name='scored_epoch', existing_records={'action': 'append'},
                       static_fields={'labtime_year': 1998}, static_data_fields={'epoch_length': 30}),
    ]
"""

import logging

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence

from ..exceptions import ConfigurationError
from ..interfaces import RecordStoreInterface
from ..models import ColumnDescriptor, ObjectMapEntry, RecordKind, ReconciliationPolicy
from .condition_engine import ConditionEngine, CompiledCondition
from .record_kinds import RecordKindStrategy, strategy_for
from .time_fields import resolve_labtime_function


@dataclass
class LoaderPlanEntry:
    """
    Compiled form of one object map entry.

    Attributes:
        object_entry: The object map entry this plan entry was compiled from
        strategy: Record kind strategy selected for the entry
        column_fields: Field name -> 0-based column index
        data_fields: Data list title -> column index (events only)
        multiple: Whether cells are split into several instances
        event_dictionary: Event dictionary record (events only)
        labtime_fn: Labtime parse function name (events only)
        realtime_format: strptime format for realtime strings (events only)
    """
    object_entry: ObjectMapEntry
    strategy: RecordKindStrategy
    column_fields: Dict[str, int] = field(default_factory=dict)
    data_fields: Dict[str, int] = field(default_factory=dict)
    multiple: bool = False
    event_dictionary: Optional[Dict[str, Any]] = None
    labtime_fn: Optional[str] = None
    realtime_format: Optional[str] = None

    @property
    def kind(self) -> RecordKind:
        return self.object_entry.kind

    @property
    def existing_records(self) -> ReconciliationPolicy:
        return self.object_entry.existing_records

    @property
    def static_fields(self) -> Dict[str, Any]:
        return self.object_entry.static_fields

    @property
    def static_data_fields(self) -> Dict[str, Any]:
        return self.object_entry.static_data_fields

    @property
    def event_name(self) -> Optional[str]:
        return self.object_entry.event_name

    @property
    def researcher_type(self) -> Optional[str]:
        return self.object_entry.researcher_type

    @property
    def role(self) -> Optional[str]:
        return self.object_entry.role

    def describe(self) -> str:
        return self.object_entry.describe()


class LoaderPlanCompiler:
    """
    Compiles object/column maps into a loader plan.

    Selection rules:
    - A column belongs to an entry when its target kind and its discriminators
      (event name, researcher type, role) equal the entry's.
    - Datum columns belong to the event entry with the same event name.
    - An entry is multi-valued if any of its columns is flagged multiple.
    - A labtime function or realtime format hint is used only when exactly one of the
      entry's columns supplies it.
    """

    def __init__(self, store: RecordStoreInterface, condition_engine: Optional[ConditionEngine] = None):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.condition_engine = condition_engine or ConditionEngine()

    def compile(self, object_map: Sequence[ObjectMapEntry],
                column_map: Sequence[ColumnDescriptor]) -> List[LoaderPlanEntry]:
        """
        Compile the loader plan.

        Returns:
            Plan entries in object map order

        Raises:
            ConfigurationError: On unknown kinds, missing event dictionary entries,
                                or invalid labtime functions
        """
        if not object_map:
            raise ConfigurationError("Object map cannot be empty")

        indexed_columns = self.index_columns(column_map)
        plan = [self._compile_entry(obj, indexed_columns) for obj in object_map]

        self._warn_unused_columns(plan, indexed_columns)
        self.logger.info(f"Compiled loader plan with {len(plan)} entries: {[entry.describe() for entry in plan]}")
        return plan

    def compile_conditions(self, column_map: Sequence[ColumnDescriptor]) -> List[CompiledCondition]:
        """Compile the row filter conditions carried by column descriptors."""
        conditions = []
        for column_index, column in self.index_columns(column_map):
            if column.conditions:
                conditions.append(self.condition_engine.compile(column.conditions, column_index))

        self.logger.debug(f"Compiled {len(conditions)} row conditions")
        return conditions

    @staticmethod
    def index_columns(column_map: Sequence[ColumnDescriptor]) -> List[tuple]:
        """Pair every descriptor with its column index (explicit, else its position)."""
        indexed = []
        for position, column in enumerate(column_map):
            if isinstance(column, dict):
                column = ColumnDescriptor(**column)
            index = column.column_index if column.column_index is not None else position
            indexed.append((int(index), column))
        return indexed

    def _compile_entry(self, obj: ObjectMapEntry, indexed_columns: List[tuple]) -> LoaderPlanEntry:
        if isinstance(obj, dict):
            obj = ObjectMapEntry(**obj)

        selected = [
            (index, column) for index, column in indexed_columns
            if column.target == obj.kind and column.discriminators == obj.discriminators
        ]

        entry = LoaderPlanEntry(
            object_entry=obj,
            strategy=strategy_for(obj.kind),
            column_fields={column.field: index for index, column in selected},
            multiple=any(column.multiple for _, column in selected),
        )

        if obj.kind == RecordKind.EVENT:
            data_columns = [
                (index, column) for index, column in indexed_columns
                if column.target == RecordKind.DATUM and column.event_name == obj.event_name
            ]
            entry.data_fields = {column.field: index for index, column in data_columns}
            entry.event_dictionary = self._resolve_event_dictionary(obj.event_name)

            labtime_fn = self._single_hint(selected, 'labtime_fn', obj)
            entry.labtime_fn = resolve_labtime_function(labtime_fn) if labtime_fn else None
            entry.realtime_format = self._single_hint(selected, 'realtime_format', obj)

        self.logger.debug(
            f"Plan entry {entry.describe()}: columns={entry.column_fields} data={entry.data_fields} "
            f"multiple={entry.multiple} action={obj.existing_records.action.value}"
        )
        return entry

    def _resolve_event_dictionary(self, event_name: str) -> Dict[str, Any]:
        event_dictionary = self.store.find_event_dictionary(event_name)
        if not event_dictionary:
            raise ConfigurationError(f"Can't find Event Dictionary Entry for '{event_name}'")
        return event_dictionary

    def _single_hint(self, selected: List[tuple], attribute: str, obj: ObjectMapEntry) -> Optional[str]:
        hints = [getattr(column, attribute) for _, column in selected if getattr(column, attribute)]
        if len(hints) > 1:
            self.logger.warning(
                f"{len(hints)} columns of {obj.describe()} define {attribute}; ignoring all of them: {hints}"
            )
        return hints[0] if len(hints) == 1 else None

    def _warn_unused_columns(self, plan: List[LoaderPlanEntry], indexed_columns: List[tuple]) -> None:
        used = set()
        for entry in plan:
            used.update(entry.column_fields.values())
            used.update(entry.data_fields.values())
        for index, column in indexed_columns:
            if index not in used and not column.conditions:
                self.logger.warning(
                    f"Column {index} ({column.target.value}.{column.field}) does not match any object map entry"
                )
