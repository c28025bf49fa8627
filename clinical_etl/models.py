"""
Core data models for the clinical tabular loading system.

This module defines the declarative load configuration (column map, object map,
source descriptor), the provenance stamped on loaded records and the result
structures reported back to callers.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Tuple
from enum import Enum

from .exceptions import ConfigurationError


class RecordKind(Enum):
    """Closed set of record kinds a load definition can target."""
    SUBJECT = "subject"
    EVENT = "event"
    DATUM = "datum"
    RESEARCHER = "researcher"
    IRB = "irb"
    STUDY = "study"
    PUBLICATION = "publication"

    @classmethod
    def parse(cls, value: Any) -> 'RecordKind':
        """Resolve a kind from an enum member or a (case-insensitive) name such as 'Subject'."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ConfigurationError(f"Unknown record kind: {value!r}")


class ExistingRecordAction(Enum):
    """What to do when a candidate record may already exist in the database."""
    CREATE = "create"
    APPEND = "append"
    UPDATE = "update"
    IGNORE = "ignore"
    DESTROY = "destroy"

    @classmethod
    def parse(cls, value: Any) -> 'ExistingRecordAction':
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ConfigurationError(f"Unknown existing record action: {value!r}")

    @property
    def requires_lookup(self) -> bool:
        return self in (ExistingRecordAction.UPDATE, ExistingRecordAction.IGNORE)


@dataclass(frozen=True)
class ReconciliationPolicy:
    """
    Rule governing how a candidate record interacts with a pre-existing matching record.

    Attributes:
        action: One of create/append/update/ignore/destroy
        find_by: Ordered field names used to look up an existing record
    """
    action: ExistingRecordAction = ExistingRecordAction.CREATE
    find_by: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'action', ExistingRecordAction.parse(self.action))
        object.__setattr__(self, 'find_by', tuple(str(f) for f in (self.find_by or ())))
        if self.action.requires_lookup and not self.find_by:
            raise ConfigurationError(
                f"existing_records action '{self.action.value}' requires at least one find_by field"
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ReconciliationPolicy':
        data = data or {}
        return cls(action=data.get('action', 'create'), find_by=tuple(data.get('find_by') or ()))


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    Describes how one source column maps onto a field of a target record kind.

    Attributes:
        target: Record kind receiving the value ('datum' for event auxiliary data)
        field: Target field name (or data list title for datum targets)
        column_index: 0-based cell index in a row; defaults to the descriptor's position
        conditions: Optional row filter expression over this cell (see condition_engine)
        multiple: Whether the cell carries ';'-delimited values for several records
        labtime_fn: Optional name of the function that parses a labtime string
        realtime_format: Optional strptime format for realtime strings
        event_name: Event discriminator for event and datum targets
        researcher_type: Researcher discriminator
        role: Researcher role discriminator
    """
    target: RecordKind
    field: str
    column_index: Optional[int] = None
    conditions: Optional[str] = None
    multiple: bool = False
    labtime_fn: Optional[str] = None
    realtime_format: Optional[str] = None
    event_name: Optional[str] = None
    researcher_type: Optional[str] = None
    role: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'target', RecordKind.parse(self.target))
        if not self.field:
            raise ConfigurationError("Column descriptor field cannot be empty")
        object.__setattr__(self, 'field', str(self.field))
        if self.role is not None:
            object.__setattr__(self, 'role', str(self.role))
        if self.column_index is not None and int(self.column_index) < 0:
            raise ConfigurationError(f"column_index must be non-negative: {self.column_index}")

    @property
    def discriminators(self) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        return (self.event_name, self.researcher_type, self.role)


@dataclass(frozen=True)
class ObjectMapEntry:
    """
    One kind of record the loader produces for every applicable row.

    Attributes:
        kind: Record kind to produce
        existing_records: Reconciliation policy for already persisted records
        static_fields: Field values applied to every instance (override column values)
        static_data_fields: Data list entries applied to every event instance
        event_name: Event name (event kind only)
        researcher_type: Researcher type (researcher kind only)
        role: Researcher role (researcher kind only)
    """
    kind: RecordKind
    existing_records: ReconciliationPolicy = field(default_factory=ReconciliationPolicy)
    static_fields: Dict[str, Any] = field(default_factory=dict)
    static_data_fields: Dict[str, Any] = field(default_factory=dict)
    event_name: Optional[str] = None
    researcher_type: Optional[str] = None
    role: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'kind', RecordKind.parse(self.kind))
        if isinstance(self.existing_records, dict):
            object.__setattr__(self, 'existing_records', ReconciliationPolicy.from_dict(self.existing_records))
        object.__setattr__(self, 'static_fields', dict(self.static_fields or {}))
        object.__setattr__(self, 'static_data_fields', {str(k): v for k, v in (self.static_data_fields or {}).items()})
        if self.role is not None:
            object.__setattr__(self, 'role', str(self.role))
        if self.kind == RecordKind.DATUM:
            raise ConfigurationError("'datum' is a column target only and cannot appear in the object map")
        if self.kind == RecordKind.EVENT and not self.event_name:
            raise ConfigurationError("Event object map entries require an event_name")

    @property
    def discriminators(self) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        return (self.event_name, self.researcher_type, self.role)

    def describe(self) -> str:
        """Short label used in log lines and error context."""
        label = self.kind.value
        if self.event_name:
            label += f"[{self.event_name}]"
        if self.researcher_type or self.role:
            label += f"[{self.researcher_type}/{self.role}]"
        return label


@dataclass(frozen=True)
class SourceDescriptor:
    """
    Location and layout of a tabular source file.

    Attributes:
        path: File path; the suffix selects the row source adapter
        sheet: Optional sheet name (defaults to the first sheet)
        header: Whether row 1 is read as a header row (it is not skipped by itself)
        skip_lines: Number of leading rows to skip, header row included
        empty_cell_markers: Cell values treated as empty (e.g. '.', 'NA')
    """
    path: str
    sheet: Optional[str] = None
    header: bool = False
    skip_lines: int = 0
    empty_cell_markers: Tuple[Any, ...] = ()

    def __post_init__(self):
        if not self.path:
            raise ConfigurationError("Source path cannot be empty")
        if self.skip_lines < 0:
            raise ConfigurationError("skip_lines cannot be negative")
        object.__setattr__(self, 'empty_cell_markers', tuple(self.empty_cell_markers or ()))

    @property
    def first_row(self) -> int:
        """1-indexed number of the first data row."""
        return 1 + self.skip_lines


@dataclass(frozen=True)
class Provenance:
    """Originating source and documentation records stamped on loaded records."""
    source_id: Any
    documentation_id: Any
    user_id: Any = None


@dataclass(frozen=True)
class DataListEntry:
    """Auxiliary (EAV-style) attribute attached to a single event."""
    title: str
    value: Any


@dataclass
class RowWarning:
    """Non-fatal problem recorded while loading a row."""
    row_number: int
    kind: str
    message: str


@dataclass
class LoadResult:
    """
    Outcome of one load.

    Attributes:
        success: True when the transaction committed
        subject_codes: Distinct subject codes touched, in first-seen order
        rows_read: Rows read from the source (including skipped rows)
        rows_skipped: Rows filtered out by conditions
        records_created: Non-event records created
        records_updated: Records updated under an 'update' policy
        records_ignored: Existing records left untouched under an 'ignore' policy
        events_inserted: Events written through the fast path
        events_destroyed: Events removed by 'destroy' policies
        warnings: Per-row warnings, e.g. records that failed validation on create
        processing_time_seconds: Wall clock duration of the load
    """
    success: bool = False
    subject_codes: List[str] = field(default_factory=list)
    rows_read: int = 0
    rows_skipped: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_ignored: int = 0
    events_inserted: int = 0
    events_destroyed: int = 0
    warnings: List[RowWarning] = field(default_factory=list)
    processing_time_seconds: float = 0.0

    def add_subject_code(self, subject_code: Any) -> None:
        if subject_code is not None and subject_code not in self.subject_codes:
            self.subject_codes.append(subject_code)

    def add_warning(self, row_number: int, kind: str, message: str) -> None:
        self.warnings.append(RowWarning(row_number=row_number, kind=kind, message=message))


@dataclass
class LoadDefinition:
    """
    Complete declarative description of one load, as read from a definition file.

    Attributes:
        source: Source file descriptor
        object_map: Record kinds to produce per row, in plan order
        column_map: Column descriptors
        provenance: Provenance ids, when known up front
        source_registration: Fields used to register a new source record instead
        subject_code: Optional subject supplied for the whole load
    """
    source: SourceDescriptor
    object_map: List[ObjectMapEntry]
    column_map: List[ColumnDescriptor]
    provenance: Optional[Provenance] = None
    source_registration: Optional[Dict[str, Any]] = None
    subject_code: Optional[str] = None

    def __post_init__(self):
        if not self.object_map:
            raise ConfigurationError("At least one object map entry must be specified")
        if not self.column_map:
            raise ConfigurationError("At least one column map entry must be specified")
        if self.provenance is None and not self.source_registration:
            raise ConfigurationError("Either provenance ids or source registration fields are required")
