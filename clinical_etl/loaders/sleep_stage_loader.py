"""
Sleep stage loader - loads scored sleep epochs for one subject.

Each subject directory holds a '<code>Slp.01.csv' file of scored epochs
(subject code, sleep/wake period, decimal labtime, scored stage) and a
'<code>Sleep.xls' workbook whose file names encode the recording year. The
labtime year comes from the subject's admit date when it is known, otherwise
from the first '_YY_' token found in the workbook's first column.

    <parent_path>/<subject_code>/Sleep/<subject_code>Slp.01.csv
    <parent_path>/<subject_code>/Sleep/<subject_code>Sleep.xls
"""

import logging
import os
import re

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import pyodbc
import yaml

from ..exceptions import ETLError, ConfigurationError, InputError
from ..interfaces import RecordStoreInterface
from ..models import ColumnDescriptor, ObjectMapEntry, SourceDescriptor, RecordKind, LoadResult
from ..processing.database_loader import DatabaseLoader
from ..sources.row_sources import XlsRowSource


YEAR_SCAN_LAST_ROW = 100
EPOCH_LENGTH_SECONDS = 30

_YEAR_TOKEN = re.compile(r'.*_*.(\d\d)_.*')


@dataclass
class SleepStageConfig:
    """Fixed names the sleep stage load resolves against the database."""
    user_email: str
    source_type_name: str = "<SUBJECT_CODE>Slp.01.csv"
    documentation_title: str = "Loading of Sleep Stage Information"
    event_name: str = "scored_epoch"
    xls_file_pattern: str = "Sleep.xls"
    csv_file_pattern: str = "Slp.01.csv"

    def __post_init__(self):
        if not self.user_email:
            raise ConfigurationError("Sleep stage loads require the loading user's email")

    @classmethod
    def from_yaml(cls, path: str) -> 'SleepStageConfig':
        """Read the config from a YAML mapping with the same field names."""
        try:
            with open(path, 'r', encoding='utf-8') as file:
                data = yaml.safe_load(file) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read sleep stage config {path}: {e}")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown sleep stage config keys: {sorted(unknown)}")
        return cls(**data)


class SleepStageLoader:
    """
    Sets up and runs the sleep stage load for a single subject.

    Setup problems are logged and leave the loader invalid; load_subject() then
    returns False.
    """

    def __init__(self, subject_code: str, parent_path: str, general_path: str,
                 store: RecordStoreInterface, config: SleepStageConfig):
        self.logger = logging.getLogger(__name__)
        self.subject_code = subject_code
        self.store = store
        self.config = config
        self.subject: Optional[Dict[str, Any]] = None
        self.result: Optional[LoadResult] = None
        self._db_loader: Optional[DatabaseLoader] = None

        try:
            self._set_up(subject_code, parent_path, general_path)
            self.logger.info(f"#### Successfully initialized {subject_code} for loading of sleep stage data.")
            self.valid = True
        except (ETLError, pyodbc.Error, OSError) as e:
            self.logger.error(f"#### Setup Error: {e}", exc_info=True)
            self.valid = False

    def load_subject(self) -> bool:
        """
        Load the subject's scored epochs.

        Returns:
            True if the load committed; False if setup failed, the subject already
            has scored epochs, or the load failed
        """
        if not self.valid:
            return False
        if self.store.count_events(self.subject['id'], self.config.event_name) > 0:
            self.logger.info(f"#### {self.subject_code} already has '{self.config.event_name}' events; skipping")
            return False

        try:
            self.logger.info(f"###################### Starting {self.subject_code} #######################")
            self.result = self._db_loader.load_data()
        except (ETLError, pyodbc.Error) as e:
            self.logger.error(f"#### Load Error: {e}", exc_info=True)
            return False
        finally:
            self._db_loader.close()
        return self.result.success

    def get_year(self, xls_path: str) -> int:
        """
        Recording year for the subject.

        Raises:
            InputError: If no '_YY_' token appears in rows 2-100 of the workbook
        """
        admit_date = self.subject.get('admit_date') if self.subject else None
        if admit_date is not None:
            return admit_date.year

        workbook = XlsRowSource(xls_path)
        try:
            for row_number in range(2, min(YEAR_SCAN_LAST_ROW, workbook.row_count()) + 1):
                row = workbook.row(row_number)
                cell = row[0] if row else None
                match = _YEAR_TOKEN.match(cell) if isinstance(cell, str) else None
                if match:
                    year = int(match.group(1))
                    return year + (2000 if year < 60 else 1900)
        finally:
            workbook.close()

        raise InputError(f"Could not find suitable year from excel file {xls_path}")

    def _set_up(self, subject_code: str, parent_path: str, general_path: str) -> None:
        config = self.config
        xls_file_name = f"{subject_code}{config.xls_file_pattern}"
        csv_file_name = f"{subject_code}{config.csv_file_pattern}"

        with self.store.transaction():
            self.subject = self._find_or_create_subject(subject_code)
            patient_year = self.get_year(os.path.join(parent_path, subject_code, "Sleep", xls_file_name))

            provenance = self.store.register_source(
                config.source_type_name,
                config.user_email,
                config.documentation_title,
                location=os.path.join(general_path, subject_code, "Sleep", csv_file_name),
                notes=f"Year taken from {subject_code}{config.xls_file_pattern} file.",
            )

        column_map = [
            ColumnDescriptor(target=RecordKind.SUBJECT, field='subject_code'),
            ColumnDescriptor(target=RecordKind.DATUM, event_name=config.event_name, field='sleep_wake_period'),
            ColumnDescriptor(target=RecordKind.EVENT, event_name=config.event_name, field='labtime_decimal'),
            ColumnDescriptor(target=RecordKind.DATUM, event_name=config.event_name, field='scored_stage'),
        ]
        object_map = [
            ObjectMapEntry(
                kind=RecordKind.SUBJECT,
                existing_records={'action': 'ignore', 'find_by': ['subject_code']},
            ),
            ObjectMapEntry(
                kind=RecordKind.EVENT,
                event_name=config.event_name,
                existing_records={'action': 'append'},
                static_fields={'labtime_year': patient_year},
                static_data_fields={'epoch_length': EPOCH_LENGTH_SECONDS},
            ),
        ]

        self._db_loader = DatabaseLoader(
            SourceDescriptor(path=os.path.join(parent_path, subject_code, "Sleep", csv_file_name)),
            object_map,
            column_map,
            self.store,
            provenance,
            subject=self.subject,
        )

    def _find_or_create_subject(self, subject_code: str) -> Dict[str, Any]:
        matches = self.store.find(RecordKind.SUBJECT, {'subject_code': subject_code})
        if matches:
            return matches[0]
        self.logger.info(f"Creating subject {subject_code}")
        return self.store.create(RecordKind.SUBJECT, {'subject_code': subject_code}, provenance=None)
