"""Test doubles for loader tests: an in-memory record store and a list-backed row source.

InMemoryRecordStore keeps every table in plain Python structures and restores a
snapshot when a transaction block raises, so integration tests can assert on
all-or-nothing behaviour without a database.
"""
import copy

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from clinical_etl.exceptions import ConfigurationError, RecordValidationError
from clinical_etl.interfaces import RecordStoreInterface, RowSourceInterface
from clinical_etl.models import RecordKind, Provenance


class InMemoryRecordStore(RecordStoreInterface):
    """Dictionary-backed record store with snapshot rollback."""

    REQUIRED_FIELDS = {
        RecordKind.SUBJECT: ('subject_code',),
        RecordKind.IRB: ('irb_number',),
        RecordKind.RESEARCHER: ('last_name',),
    }
    UNIQUE_FIELDS = {
        RecordKind.SUBJECT: ('subject_code',),
        RecordKind.IRB: ('irb_number',),
    }

    def __init__(self, event_dictionary_names=('x',)):
        self.records: Dict[RecordKind, List[Dict[str, Any]]] = {kind: [] for kind in RecordKind}
        self.memberships = set()
        self.role_associations: Dict[tuple, Any] = {}
        self.change_logs: List[Dict[str, Any]] = []
        self.touched: List[tuple] = []
        self.sources: List[Dict[str, Any]] = []
        self.event_dictionary = {
            name: {'id': index + 1, 'name': name} for index, name in enumerate(event_dictionary_names)
        }
        self.source_types = {}
        self.users = {}
        self.documentations = {}
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_event_insert: Optional[int] = None
        self._next_id = 1

    # Convenience accessors

    @property
    def subjects(self) -> List[Dict[str, Any]]:
        return self.records[RecordKind.SUBJECT]

    @property
    def events(self) -> List[Dict[str, Any]]:
        return self.records[RecordKind.EVENT]

    def add_record(self, kind: RecordKind, **fields) -> Dict[str, Any]:
        record = dict(fields, id=self._new_id())
        self.records[kind].append(record)
        return dict(record)

    # RecordStoreInterface

    @contextmanager
    def transaction(self):
        snapshot = self._snapshot()
        try:
            yield self
            self.commits += 1
        except Exception:
            self._restore(snapshot)
            self.rollbacks += 1
            raise

    def find(self, kind, conditions):
        return [
            dict(record) for record in self.records[kind]
            if all(record.get(name) == value for name, value in conditions.items())
        ]

    def create(self, kind, attributes, provenance):
        errors = [f"{name} can't be blank" for name in self.REQUIRED_FIELDS.get(kind, ())
                  if attributes.get(name) in (None, '')]
        for name in self.UNIQUE_FIELDS.get(kind, ()):
            if attributes.get(name) is not None and self.find(kind, {name: attributes[name]}):
                errors.append(f"{name} has already been taken")
        if errors:
            raise RecordValidationError(f"{kind.value} failed validation", kind=kind.value, errors=errors)

        record = dict(attributes, id=self._new_id())
        self.records[kind].append(record)
        self.change_logs.append({'kind': kind, 'id': record['id'], 'action': 'create', 'provenance': provenance})
        return dict(record)

    def update_with_provenance(self, kind, record, attributes, provenance):
        stored = self._by_id(kind, record['id'])
        stored.update(attributes)
        self.change_logs.append({'kind': kind, 'id': record['id'], 'action': 'update', 'provenance': provenance})
        return dict(stored)

    def direct_insert_event(self, attributes):
        if self.fail_on_event_insert is not None and len(self.events) + 1 >= self.fail_on_event_insert:
            raise RuntimeError("simulated database failure")
        event = dict(attributes, id=self._new_id())
        self.events.append(event)
        return event['id']

    def hard_delete_events(self, subject, event_name):
        keep = [e for e in self.events if not (e['subject_id'] == subject['id'] and e['name'] == event_name)]
        deleted = len(self.events) - len(keep)
        self.records[RecordKind.EVENT] = keep
        return deleted

    def add_membership(self, kind, record, subject):
        key = (kind, record['id'], subject['id'])
        if key in self.memberships:
            return False
        self.memberships.add(key)
        return True

    def set_role_association(self, researcher, subject_id, researcher_type, role):
        self.role_associations[(subject_id, researcher_type, role)] = researcher['id']

    def touch(self, kind, record):
        self.touched.append((kind, record['id']))

    def find_event_dictionary(self, name):
        return self.event_dictionary.get(name)

    def count_events(self, subject_id, event_name):
        return len([e for e in self.events if e['subject_id'] == subject_id and e['name'] == event_name])

    def register_source(self, source_type_name, user_email, documentation_title, location, notes=None):
        for table, value in ((self.source_types, source_type_name), (self.users, user_email),
                             (self.documentations, documentation_title)):
            if value not in table:
                raise ConfigurationError(f"No record for {value!r}")
        source = {'id': self._new_id(), 'location': location, 'notes': notes,
                  'source_type_id': self.source_types[source_type_name]}
        self.sources.append(source)
        return Provenance(source_id=source['id'], documentation_id=self.documentations[documentation_title],
                          user_id=self.users[user_email])

    def close(self):
        pass

    # Internals

    def _new_id(self) -> int:
        new_id = self._next_id
        self._next_id += 1
        return new_id

    def _by_id(self, kind, record_id):
        for record in self.records[kind]:
            if record['id'] == record_id:
                return record
        raise KeyError(record_id)

    def _snapshot(self):
        return copy.deepcopy((self.records, self.memberships, self.role_associations,
                              self.change_logs, self.sources, self._next_id))

    def _restore(self, snapshot):
        (self.records, self.memberships, self.role_associations,
         self.change_logs, self.sources, self._next_id) = snapshot


class ListRowSource(RowSourceInterface):
    """Row source over in-memory rows (row 1 is the first list element)."""

    def __init__(self, rows, sheet_names=('Sheet1',)):
        self.rows = [list(row) for row in rows]
        self.sheet_names = list(sheet_names)
        self.selected = self.sheet_names[0]
        self.closed = False

    def sheets(self):
        return list(self.sheet_names)

    def select_default_page(self, name=None):
        self.selected = name or self.sheet_names[0]

    def row_count(self):
        return len(self.rows)

    def row(self, index):
        return list(self.rows[index - 1])

    def close(self):
        self.closed = True
