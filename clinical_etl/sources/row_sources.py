"""
Row source adapters for tabular input files.

Every adapter exposes the same minimal surface (RowSourceInterface): a list of
pages, a selected page, a row count and 1-indexed access to row cell values.
The file suffix picks the adapter:

    .csv   standard library csv (single page)
    .xls   xlrd (date cells converted to datetime)
    .xlsx  openpyxl, read-only, cached values
    .dbf   dbfread (single page)

Rows of the selected page are materialized on selection; source files are
read once per load and row access is random by index.
"""

import csv
import logging

from pathlib import Path
from typing import List, Any, Optional

import xlrd

from dbfread import DBF
from openpyxl import load_workbook

from ..exceptions import ConfigurationError
from ..interfaces import RowSourceInterface
from ..models import SourceDescriptor


class _MaterializedRowSource(RowSourceInterface):
    """Shared row access over the cached rows of the selected page."""

    def __init__(self, path: str):
        self.logger = logging.getLogger(__name__)
        self.path = Path(path)
        if not self.path.exists():
            raise ConfigurationError(f"Source file not found: {self.path}")
        self._rows: List[List[Any]] = []
        self._page: Optional[str] = None

    @property
    def current_page(self) -> Optional[str]:
        return self._page

    def row_count(self) -> int:
        return len(self._rows)

    def row(self, index: int) -> List[Any]:
        if index < 1 or index > len(self._rows):
            raise IndexError(f"Row {index} out of range 1..{len(self._rows)} in {self.path.name}")
        return list(self._rows[index - 1])

    def _check_page(self, name: Optional[str]) -> str:
        pages = self.sheets()
        if not pages:
            raise ConfigurationError(f"{self.path.name} contains no sheets")
        if name is None:
            return pages[0]
        if name not in pages:
            raise ConfigurationError(f"Sheet '{name}' not found in {self.path.name}. Available: {pages}")
        return name


class CsvRowSource(_MaterializedRowSource):
    """Comma separated values; the file itself is the only page."""

    def __init__(self, path: str, encoding: str = 'utf-8-sig', delimiter: str = ','):
        super().__init__(path)
        self.encoding = encoding
        self.delimiter = delimiter
        self.select_default_page()

    def sheets(self) -> List[str]:
        return [self.path.stem]

    def select_default_page(self, name: Optional[str] = None) -> None:
        self._page = self._check_page(name)
        with open(self.path, 'r', encoding=self.encoding, newline='') as handle:
            self._rows = [list(row) for row in csv.reader(handle, delimiter=self.delimiter)]
        self.logger.debug(f"Read {len(self._rows)} rows from {self.path.name}")


class XlsRowSource(_MaterializedRowSource):
    """Legacy Excel workbooks read through xlrd."""

    def __init__(self, path: str):
        super().__init__(path)
        try:
            self._book = xlrd.open_workbook(str(self.path))
        except xlrd.XLRDError as e:
            raise ConfigurationError(f"Cannot open workbook {self.path.name}: {e}")
        self.select_default_page()

    def sheets(self) -> List[str]:
        return self._book.sheet_names()

    def select_default_page(self, name: Optional[str] = None) -> None:
        self._page = self._check_page(name)
        sheet = self._book.sheet_by_name(self._page)
        self._rows = [
            [self._cell_value(cell) for cell in sheet.row(row_index)]
            for row_index in range(sheet.nrows)
        ]
        self.logger.debug(f"Read {len(self._rows)} rows from {self.path.name}:{self._page}")

    def _cell_value(self, cell) -> Any:
        if cell.ctype == xlrd.XL_CELL_DATE:
            return xlrd.xldate_as_datetime(cell.value, self._book.datemode)
        if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
            return None
        return cell.value

    def close(self) -> None:
        self._book.release_resources()


class XlsxRowSource(_MaterializedRowSource):
    """Office Open XML workbooks read through openpyxl in read-only mode."""

    def __init__(self, path: str):
        super().__init__(path)
        try:
            self._workbook = load_workbook(str(self.path), read_only=True, data_only=True)
        except (OSError, KeyError, ValueError) as e:
            raise ConfigurationError(f"Cannot open workbook {self.path.name}: {e}")
        self.select_default_page()

    def sheets(self) -> List[str]:
        return list(self._workbook.sheetnames)

    def select_default_page(self, name: Optional[str] = None) -> None:
        self._page = self._check_page(name)
        worksheet = self._workbook[self._page]
        self._rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
        self.logger.debug(f"Read {len(self._rows)} rows from {self.path.name}:{self._page}")

    def close(self) -> None:
        self._workbook.close()


class DbfRowSource(_MaterializedRowSource):
    """dBase tables; records are returned in field order."""

    def __init__(self, path: str, encoding: Optional[str] = None):
        super().__init__(path)
        self.encoding = encoding
        self.select_default_page()

    def sheets(self) -> List[str]:
        return [self.path.stem]

    def select_default_page(self, name: Optional[str] = None) -> None:
        self._page = self._check_page(name)
        table = DBF(str(self.path), encoding=self.encoding, load=True)
        self._rows = [list(record.values()) for record in table.records]
        self.logger.debug(f"Read {len(self._rows)} records from {self.path.name}")


ROW_SOURCE_TYPES = {
    '.csv': CsvRowSource,
    '.xls': XlsRowSource,
    '.xlsx': XlsxRowSource,
    '.dbf': DbfRowSource,
}


def open_row_source(descriptor: SourceDescriptor) -> RowSourceInterface:
    """
    Open the adapter matching the descriptor's file suffix and select its page.

    Raises:
        ConfigurationError: For unsupported file types, missing files or sheets
    """
    suffix = Path(descriptor.path).suffix.lower()
    source_class = ROW_SOURCE_TYPES.get(suffix)
    if source_class is None:
        raise ConfigurationError(
            f"Unsupported source file type '{suffix or descriptor.path}'. "
            f"Supported: {', '.join(sorted(ROW_SOURCE_TYPES))}"
        )

    source = source_class(descriptor.path)
    if descriptor.sheet is not None:
        source.select_default_page(descriptor.sheet)
    return source
