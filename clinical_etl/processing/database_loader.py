"""
Database Loader - runs one declarative load inside a single transaction.

Construction compiles the loader plan and row conditions and opens the row
source, so every configuration problem is reported before any row is read.
load_data() then streams the source rows through the RowProcessor; the whole
load is committed at the end or rolled back on the first fatal error.

Subject modes (fixed for the whole load):
    external subject  - a subject record is supplied; 'destroy' event entries are
                        applied once, before the first row
    row-derived       - the first object map entry must produce the Subject;
                        'destroy' event entries are applied per row
"""

import logging
import time

from typing import Any, Dict, List, Optional, Sequence

from ..config.config_manager import LoaderSettings
from ..exceptions import ConfigurationError
from ..interfaces import RecordStoreInterface, RowSourceInterface
from ..mapping.attribute_builder import AttributeBuilder
from ..mapping.loader_plan import LoaderPlanCompiler
from ..mapping.time_fields import TimeNormalizer
from ..models import ColumnDescriptor, ObjectMapEntry, SourceDescriptor, Provenance, LoadResult, RecordKind
from ..sources.row_sources import open_row_source
from .row_processor import RowProcessor


class DatabaseLoader:
    """Loads one tabular source into the record store under an object/column map."""

    def __init__(self, source_info: SourceDescriptor, object_map: Sequence[ObjectMapEntry],
                 column_map: Sequence[ColumnDescriptor], store: RecordStoreInterface,
                 provenance: Provenance, subject: Optional[Dict[str, Any]] = None,
                 settings: Optional[LoaderSettings] = None,
                 row_source: Optional[RowSourceInterface] = None, log_level: Optional[str] = None):
        """
        Initialize the loader.

        Args:
            source_info: Source file descriptor
            object_map: Record kinds to produce per row
            column_map: Column descriptors
            store: Record store the load writes into
            provenance: Source/documentation stamped on loaded records
            subject: Optional subject record for a single-subject load
            settings: Loader settings (defaults from ProcessingDefaults)
            row_source: Optional already-open row source (otherwise opened from source_info)
            log_level: Optional logging level for this loader

        Raises:
            ConfigurationError: If the maps do not compile or the source cannot be opened
        """
        self.logger = logging.getLogger(__name__)
        if log_level:
            self.logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        self.source_info = source_info
        self.store = store
        self.provenance = provenance
        self.subject = subject
        self.settings = settings or LoaderSettings()

        compiler = LoaderPlanCompiler(store)
        self.loader_plan = compiler.compile(object_map, column_map)
        self.conditions = compiler.compile_conditions(column_map)

        if subject is None and self.loader_plan[0].kind != RecordKind.SUBJECT:
            raise ConfigurationError("Subject not derivable: not provided in row or initialization")

        self.empty_cell_markers = tuple(source_info.empty_cell_markers) + tuple(self.settings.empty_cell_markers)
        self.time_normalizer = TimeNormalizer(self.settings.reference_timezone)
        self.source_file = row_source or open_row_source(source_info)
        self.header = None
        if source_info.header and self.source_file.row_count() >= 1:
            self.header = self.source_file.row(1)
            self.logger.debug(f"Header row: {self.header}")
        self.first_row = source_info.first_row

    def load_data(self) -> LoadResult:
        """
        Load every source row in one transaction.

        Returns:
            LoadResult with success=True and the subject codes touched

        Raises:
            ETLError: Any fatal error; the transaction is rolled back first
        """
        result = LoadResult()
        start_time = time.time()
        processor = RowProcessor(
            plan=self.loader_plan,
            conditions=self.conditions,
            store=self.store,
            builder=AttributeBuilder(self.provenance, self.time_normalizer),
            provenance=self.provenance,
            result=result,
            subject=self.subject,
            empty_cell_markers=self.empty_cell_markers,
            multiple_delimiter=self.settings.multiple_delimiter,
        )

        with self.store.transaction():
            if self.subject is not None:
                # Must run before any row; later rows would match freshly created events
                for entry in self.loader_plan:
                    processor.destroy_existing_events(entry, self.subject)

            last_row = self.source_file.row_count()
            self.logger.info("########## Database Loader: Loading Data ##########")
            self.logger.info(f"##########  Starting at row {self.first_row}   ##########")

            for row_number in range(self.first_row, last_row + 1):
                if (row_number - self.first_row) % self.settings.progress_interval == 0:
                    elapsed = (time.time() - start_time) / 60
                    self.logger.info(f"###### LOADING ROW {row_number}: {elapsed:.2f} minutes elapsed")

                result.rows_read += 1
                processor.process_row(row_number, self.source_file.row(row_number))

            result.processing_time_seconds = time.time() - start_time
            self.logger.info(f"TIME: {result.processing_time_seconds / 60:.2f} minutes")

        result.success = True
        self._log_summary(result)
        return result

    def close(self) -> None:
        self.source_file.close()

    def _log_summary(self, result: LoadResult) -> None:
        self.logger.info("######################################################")
        self.logger.info(f"SUBJECTS LOADED IN TRANSACTION: {result.subject_codes}")
        self.logger.info(f"{len(result.subject_codes)} IN TOTAL")
        self.logger.info(
            f"Rows read: {result.rows_read}, skipped: {result.rows_skipped}, "
            f"created: {result.records_created}, updated: {result.records_updated}, "
            f"ignored: {result.records_ignored}, events inserted: {result.events_inserted}, "
            f"events destroyed: {result.events_destroyed}"
        )
        for warning in result.warnings:
            self.logger.warning(f"Row {warning.row_number} ({warning.kind}): {warning.message}")
        self.logger.info("########## Database Loader: END TRANSACTION ##########")


def loader_from_definition(definition, store: RecordStoreInterface,
                           settings: Optional[LoaderSettings] = None) -> DatabaseLoader:
    """
    Build a DatabaseLoader from a LoadDefinition.

    Registers a new source record when the definition carries registration fields
    instead of provenance ids, and resolves the definition's subject_code.

    Raises:
        ConfigurationError: If the definition's subject does not exist
    """
    provenance = definition.provenance
    if provenance is None:
        registration = definition.source_registration
        provenance = store.register_source(
            registration['source_type_name'],
            registration['user_email'],
            registration['documentation_title'],
            location=definition.source.path,
            notes=registration.get('notes'),
        )

    subject = None
    if definition.subject_code is not None:
        matches: List[Dict[str, Any]] = store.find(RecordKind.SUBJECT, {'subject_code': definition.subject_code})
        if len(matches) != 1:
            raise ConfigurationError(
                f"Subject '{definition.subject_code}' not found" if not matches
                else f"Subject code '{definition.subject_code}' is not unique"
            )
        subject = matches[0]

    return DatabaseLoader(
        source_info=definition.source,
        object_map=definition.object_map,
        column_map=definition.column_map,
        store=store,
        provenance=provenance,
        subject=subject,
        settings=settings,
    )
