"""
Record Store - SQL Server implementation of the loader's relational sink.

Persists subjects, events (with their data lists), researchers, IRBs, studies and
publications through a single pyodbc connection, so a whole load runs inside one
transaction that is committed or rolled back as a unit.

SCHEMA ISOLATION:
    All tables are qualified with the configured target schema: [{schema}].[table].

PROVENANCE:
    Records created or updated through create()/update_with_provenance() get a row in
    change_logs naming the user, source and documentation. direct_insert_event() is
    the event fast path and writes no change log.

Table layout:
    subjects, events, data (event data lists), event_dictionary, researchers,
    subjects_researchers (subject_id, researcher_id, researcher_type, role),
    irbs / subjects_irbs, studies / subjects_studies, publications / subjects_publications,
    source_types, users, documentations, sources, change_logs
"""

import json
import logging
import re

from contextlib import contextmanager
from datetime import datetime, date
from typing import Dict, Any, List, Optional, Tuple

import pyodbc

from ..exceptions import ConfigurationError, DatabaseConnectionError, RecordValidationError
from ..interfaces import RecordStoreInterface
from ..mapping.time_fields import Labtime
from ..models import RecordKind, Provenance, DataListEntry
from ..utils import StringUtils


KIND_TABLES = {
    RecordKind.SUBJECT: 'subjects',
    RecordKind.EVENT: 'events',
    RecordKind.RESEARCHER: 'researchers',
    RecordKind.IRB: 'irbs',
    RecordKind.STUDY: 'studies',
    RecordKind.PUBLICATION: 'publications',
}

MEMBERSHIP_TABLES = {
    RecordKind.IRB: ('subjects_irbs', 'irb_id'),
    RecordKind.STUDY: ('subjects_studies', 'study_id'),
    RecordKind.PUBLICATION: ('subjects_publications', 'publication_id'),
}

REQUIRED_FIELDS = {
    RecordKind.SUBJECT: ('subject_code',),
    RecordKind.IRB: ('irb_number', 'title'),
    RecordKind.RESEARCHER: ('last_name',),
}

UNIQUE_FIELDS = {
    RecordKind.SUBJECT: ('subject_code',),
    RecordKind.IRB: ('irb_number',),
}

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

_CONNECTION_ERRORS = ('connection', 'login', 'server', 'network', 'timeout', 'cannot open database')
_DATA_ERRORS = ('primary key', 'foreign key', 'check constraint', 'duplicate key',
                'cast specification', 'converting', 'null constraint')


class SqlServerRecordStore(RecordStoreInterface):
    """
    pyodbc-backed record store.

    The connection is opened lazily with autocommit disabled and reused for every
    operation until close(); transaction() commits or rolls back that connection.
    """

    def __init__(self, connection_string: Optional[str] = None, target_schema: str = 'dbo',
                 connection_timeout: int = 30, connection=None):
        """
        Initialize the record store.

        Args:
            connection_string: SQL Server ODBC connection string
            target_schema: Schema holding the target tables
            connection_timeout: Login timeout in seconds
            connection: Optional already-open DB-API connection (used instead of connecting)
        """
        self.logger = logging.getLogger(__name__)
        if connection is None and not connection_string:
            raise ConfigurationError("A connection string or an open connection is required")
        if not _IDENTIFIER.match(target_schema or ''):
            raise ConfigurationError(f"Invalid target schema: {target_schema!r}")

        self.connection_string = connection_string
        self.target_schema = target_schema
        self.connection_timeout = connection_timeout
        self._connection = connection

    # ------------------------------------------------------------------ connection

    def _get_connection(self):
        if self._connection is not None:
            return self._connection

        try:
            connection = pyodbc.connect(
                self.connection_string,
                autocommit=False,  # Explicit transaction control for all-or-nothing loads
                timeout=self.connection_timeout
            )
            connection.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            connection.setdecoding(pyodbc.SQL_WCHAR, encoding='utf-8')
            connection.setencoding(encoding='utf-8')
        except pyodbc.Error as e:
            error_str = str(e).lower()
            if any(conn_error in error_str for conn_error in _CONNECTION_ERRORS) and \
                    not any(data_error in error_str for data_error in _DATA_ERRORS):
                self.logger.error(f"Database connection failed: {e}")
                raise DatabaseConnectionError(f"Failed to connect to database: {e}")
            raise

        self._connection = connection
        return connection

    def _execute(self, sql: str, params: Tuple = ()):
        cursor = self._get_connection().cursor()
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"SQL: {sql} params={params}")
        cursor.execute(sql, *params)
        return cursor

    @contextmanager
    def transaction(self):
        """
        Context manager for one all-or-nothing load.

        Yields:
            The store itself
        """
        connection = self._get_connection()
        self.logger.debug("Transaction started")
        try:
            yield self
            connection.commit()
            self.logger.debug("Transaction committed")
        except Exception as e:
            try:
                connection.rollback()
                self.logger.error(f"Transaction rolled back due to error: {str(e)[:200]}")
            except pyodbc.Error as rollback_error:
                self.logger.critical(f"ROLLBACK FAILED - Database may be in inconsistent state: {rollback_error}")
            raise

    def close(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except pyodbc.Error as e:
                self.logger.warning(f"Error closing database connection: {e}")
            self._connection = None

    # ------------------------------------------------------------------ records

    def find(self, kind: RecordKind, conditions: Dict[str, Any]) -> List[Dict[str, Any]]:
        table = self._table_for(kind)
        columns = self._to_columns(kind, conditions)
        where_sql, params = self._where_clause(columns)
        cursor = self._execute(f"SELECT * FROM {self._qualified(table)}{where_sql}", params)
        return self._fetch_records(cursor)

    def create(self, kind: RecordKind, attributes: Dict[str, Any],
               provenance: Optional[Provenance]) -> Dict[str, Any]:
        table = self._table_for(kind)
        columns = self._to_columns(kind, attributes)
        self._validate(kind, table, columns)

        now = datetime.now()
        columns.setdefault('created_at', now)
        columns.setdefault('updated_at', now)
        try:
            record_id = self._insert(table, columns)
        except pyodbc.IntegrityError as e:
            raise RecordValidationError(f"{kind.value} rejected by database: {e}", kind=kind.value, errors=[str(e)])

        record = dict(columns, id=record_id)
        self._log_change(kind, record_id, 'create', provenance, {k: v for k, v in columns.items()
                                                                   if k not in ('created_at', 'updated_at')})
        return record

    def update_with_provenance(self, kind: RecordKind, record: Dict[str, Any],
                               attributes: Dict[str, Any], provenance: Provenance) -> Dict[str, Any]:
        table = self._table_for(kind)
        columns = self._to_columns(kind, attributes)
        changes = {name: [record.get(name), value] for name, value in columns.items() if record.get(name) != value}

        if changes:
            assignments = ', '.join(f"[{name}] = ?" for name in changes)
            params = tuple(value for _, value in changes.values()) + (datetime.now(), record['id'])
            self._execute(
                f"UPDATE {self._qualified(table)} SET {assignments}, [updated_at] = ? WHERE [id] = ?", params
            )
            self._log_change(kind, record['id'], 'update', provenance, changes)

        if kind == RecordKind.EVENT and 'data_list' in attributes:
            self._execute(f"DELETE FROM {self._qualified('data')} WHERE [event_id] = ?", (record['id'],))
            self._insert_data_list(record['id'], attributes['data_list'])

        updated = dict(record)
        updated.update(columns)
        return updated

    def direct_insert_event(self, attributes: Dict[str, Any]) -> Any:
        columns = self._to_columns(RecordKind.EVENT, attributes)
        now = datetime.now()
        columns.setdefault('created_at', now)
        columns.setdefault('updated_at', now)
        event_id = self._insert('events', columns)
        self._insert_data_list(event_id, attributes.get('data_list') or [])
        return event_id

    def hard_delete_events(self, subject: Dict[str, Any], event_name: str) -> int:
        params = (subject['id'], event_name)
        self._execute(
            f"DELETE FROM {self._qualified('data')} WHERE [event_id] IN "
            f"(SELECT [id] FROM {self._qualified('events')} WHERE [subject_id] = ? AND [name] = ?)",
            params
        )
        cursor = self._execute(
            f"DELETE FROM {self._qualified('events')} WHERE [subject_id] = ? AND [name] = ?", params
        )
        deleted = max(cursor.rowcount or 0, 0)
        self.logger.warning(f"Hard deleted {deleted} '{event_name}' events for subject {subject['id']}")
        return deleted

    def add_membership(self, kind: RecordKind, record: Dict[str, Any], subject: Dict[str, Any]) -> bool:
        if kind not in MEMBERSHIP_TABLES:
            raise ConfigurationError(f"{kind.value} records have no subject membership")
        table, foreign_key = MEMBERSHIP_TABLES[kind]
        qualified = self._qualified(table)

        cursor = self._execute(
            f"SELECT COUNT(*) FROM {qualified} WHERE [subject_id] = ? AND [{foreign_key}] = ?",
            (subject['id'], record['id'])
        )
        if cursor.fetchone()[0]:
            return False

        self._execute(
            f"INSERT INTO {qualified} ([subject_id], [{foreign_key}]) VALUES (?, ?)",
            (subject['id'], record['id'])
        )
        return True

    def set_role_association(self, researcher: Dict[str, Any], subject_id: Any,
                             researcher_type: Optional[str], role: Optional[str]) -> None:
        qualified = self._qualified('subjects_researchers')
        where_sql, params = self._where_clause(
            {'subject_id': subject_id, 'researcher_type': researcher_type, 'role': role}
        )
        cursor = self._execute(f"UPDATE {qualified} SET [researcher_id] = ?{where_sql}", (researcher['id'],) + params)
        if not cursor.rowcount or cursor.rowcount < 1:
            self._execute(
                f"INSERT INTO {qualified} ([subject_id], [researcher_id], [researcher_type], [role]) "
                f"VALUES (?, ?, ?, ?)",
                (subject_id, researcher['id'], researcher_type, role)
            )

    def touch(self, kind: RecordKind, record: Dict[str, Any]) -> None:
        self._execute(
            f"UPDATE {self._qualified(self._table_for(kind))} SET [updated_at] = ? WHERE [id] = ?",
            (datetime.now(), record['id'])
        )

    def find_event_dictionary(self, name: str) -> Optional[Dict[str, Any]]:
        cursor = self._execute(f"SELECT * FROM {self._qualified('event_dictionary')} WHERE [name] = ?", (name,))
        records = self._fetch_records(cursor)
        return records[0] if records else None

    def count_events(self, subject_id: Any, event_name: str) -> int:
        cursor = self._execute(
            f"SELECT COUNT(*) FROM {self._qualified('events')} WHERE [subject_id] = ? AND [name] = ?",
            (subject_id, event_name)
        )
        return int(cursor.fetchone()[0])

    def register_source(self, source_type_name: str, user_email: str, documentation_title: str,
                        location: str, notes: Optional[str] = None) -> Provenance:
        source_type_id = self._lookup_id('source_types', 'name', source_type_name)
        user_id = self._lookup_id('users', 'email', user_email)
        documentation_id = self._lookup_id('documentations', 'title', documentation_title)

        now = datetime.now()
        source_id = self._insert('sources', {
            'source_type_id': source_type_id,
            'user_id': user_id,
            'location': location,
            'notes': notes,
            'created_at': now,
            'updated_at': now,
        })
        self.logger.info(f"Registered source {source_id} for {location}")
        return Provenance(source_id=source_id, documentation_id=documentation_id, user_id=user_id)

    # ------------------------------------------------------------------ helpers

    def _qualified(self, table: str) -> str:
        return f"[{self.target_schema}].[{table}]"

    @staticmethod
    def _table_for(kind: RecordKind) -> str:
        if kind not in KIND_TABLES:
            raise ConfigurationError(f"{kind.value} is not a stored record kind")
        return KIND_TABLES[kind]

    @staticmethod
    def _to_columns(kind: RecordKind, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Translate an attribute set into column values."""
        columns = {}
        for name, value in attributes.items():
            if name == 'data_list':
                continue
            if isinstance(value, Labtime):
                columns['labtime_year'] = value.year
                columns['labtime_hour'] = value.hour
                columns['labtime_min'] = value.minute
                columns['labtime_sec'] = value.second
                continue
            if isinstance(value, datetime) and value.tzinfo is not None:
                # Stored as wall-clock time in the reference timezone
                value = value.replace(tzinfo=None)
            if not _IDENTIFIER.match(str(name)):
                raise ConfigurationError(f"Invalid {kind.value} field name: {name!r}")
            columns[str(name)] = value
        return columns

    @staticmethod
    def _where_clause(columns: Dict[str, Any]) -> Tuple[str, Tuple]:
        if not columns:
            return '', ()
        clauses, params = [], []
        for name, value in columns.items():
            if value is None:
                clauses.append(f"[{name}] IS NULL")
            else:
                clauses.append(f"[{name}] = ?")
                params.append(value)
        return ' WHERE ' + ' AND '.join(clauses), tuple(params)

    def _insert(self, table: str, columns: Dict[str, Any]) -> Any:
        names = list(columns)
        column_sql = ', '.join(f"[{name}]" for name in names)
        placeholders = ', '.join('?' for _ in names)
        cursor = self._execute(
            f"INSERT INTO {self._qualified(table)} ({column_sql}) OUTPUT INSERTED.[id] VALUES ({placeholders})",
            tuple(columns[name] for name in names)
        )
        return cursor.fetchone()[0]

    def _insert_data_list(self, event_id: Any, data_list: List[DataListEntry]) -> None:
        if not data_list:
            return
        cursor = self._get_connection().cursor()
        cursor.fast_executemany = True
        cursor.executemany(
            f"INSERT INTO {self._qualified('data')} ([event_id], [title], [value]) VALUES (?, ?, ?)",
            [(event_id, datum.title, None if datum.value is None else str(datum.value)) for datum in data_list]
        )

    def _validate(self, kind: RecordKind, table: str, columns: Dict[str, Any]) -> None:
        errors = []
        for name in REQUIRED_FIELDS.get(kind, ()):
            if StringUtils.is_blank(columns.get(name)):
                errors.append(f"{name} can't be blank")

        for name in UNIQUE_FIELDS.get(kind, ()):
            value = columns.get(name)
            if value is None:
                continue
            cursor = self._execute(f"SELECT COUNT(*) FROM {self._qualified(table)} WHERE [{name}] = ?", (value,))
            if cursor.fetchone()[0]:
                errors.append(f"{name} has already been taken")

        if errors:
            raise RecordValidationError(
                f"{kind.value} failed validation: {'; '.join(errors)}", kind=kind.value, errors=errors
            )

    def _log_change(self, kind: RecordKind, record_id: Any, action: str,
                    provenance: Optional[Provenance], changes: Dict[str, Any]) -> None:
        if provenance is None:
            return
        self._insert('change_logs', {
            'record_type': kind.value,
            'record_id': record_id,
            'action': action,
            'user_id': provenance.user_id,
            'source_id': provenance.source_id,
            'documentation_id': provenance.documentation_id,
            'changes': json.dumps(changes, default=_json_default),
            'created_at': datetime.now(),
        })

    def _lookup_id(self, table: str, column: str, value: Any) -> Any:
        cursor = self._execute(f"SELECT [id] FROM {self._qualified(table)} WHERE [{column}] = ?", (value,))
        row = cursor.fetchone()
        if row is None:
            raise ConfigurationError(f"No {table} record with {column} = {value!r}")
        return row[0]

    @staticmethod
    def _fetch_records(cursor) -> List[Dict[str, Any]]:
        names = [column[0] for column in cursor.description or []]
        return [dict(zip(names, row)) for row in cursor.fetchall()]


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
