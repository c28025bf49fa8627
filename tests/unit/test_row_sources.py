"""
Unit tests for the tabular row source adapters.
"""

from datetime import datetime

import pytest

from openpyxl import Workbook

from clinical_etl.exceptions import ConfigurationError
from clinical_etl.models import SourceDescriptor
from clinical_etl.sources.row_sources import CsvRowSource, XlsxRowSource, open_row_source


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "1234GXSlp.01.csv"
    path.write_text("subject_code,labtime,stage\n1234GX,1.5,W\n1234GX,1.51,2\n", encoding='utf-8')
    return path


@pytest.fixture
def xlsx_file(tmp_path):
    path = tmp_path / "visits.xlsx"
    workbook = Workbook()
    summary = workbook.active
    summary.title = 'Summary'
    summary.append(['note'])
    visits = workbook.create_sheet('Visits')
    visits.append(['subject_code', 'visit_date', 'score'])
    visits.append(['1234GX', datetime(2015, 3, 14, 9, 26), 7])
    visits.append(['2345HY', None, 8.5])
    workbook.save(path)
    return path


class TestCsvRowSource:

    def test_rows_are_one_indexed(self, csv_file):
        source = CsvRowSource(str(csv_file))
        assert source.sheets() == ['1234GXSlp.01']
        assert source.row_count() == 3
        assert source.row(1) == ['subject_code', 'labtime', 'stage']
        assert source.row(3) == ['1234GX', '1.51', '2']

    def test_out_of_range(self, csv_file):
        source = CsvRowSource(str(csv_file))
        with pytest.raises(IndexError):
            source.row(0)
        with pytest.raises(IndexError):
            source.row(4)

    def test_byte_order_mark_is_stripped(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("\ufeffsubject_code\nS1\n".encode('utf-8'))
        assert CsvRowSource(str(path)).row(1) == ['subject_code']

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            CsvRowSource(str(tmp_path / "missing.csv"))


class TestXlsxRowSource:

    def test_default_page_is_first_sheet(self, xlsx_file):
        source = XlsxRowSource(str(xlsx_file))
        assert source.sheets() == ['Summary', 'Visits']
        assert source.current_page == 'Summary'
        assert source.row(1) == ['note']
        source.close()

    def test_select_named_page(self, xlsx_file):
        source = XlsxRowSource(str(xlsx_file))
        source.select_default_page('Visits')

        assert source.row_count() == 3
        assert source.row(2) == ['1234GX', datetime(2015, 3, 14, 9, 26), 7]
        assert source.row(3) == ['2345HY', None, 8.5]
        source.close()

    def test_unknown_sheet(self, xlsx_file):
        source = XlsxRowSource(str(xlsx_file))
        with pytest.raises(ConfigurationError, match="Sheet 'Data' not found"):
            source.select_default_page('Data')
        source.close()


class TestOpenRowSource:

    def test_suffix_selects_adapter(self, csv_file):
        source = open_row_source(SourceDescriptor(path=str(csv_file)))
        assert isinstance(source, CsvRowSource)

    def test_sheet_from_descriptor(self, xlsx_file):
        source = open_row_source(SourceDescriptor(path=str(xlsx_file), sheet='Visits'))
        assert source.current_page == 'Visits'
        source.close()

    def test_suffix_is_case_insensitive(self, tmp_path):
        path = tmp_path / "STAGES.CSV"
        path.write_text("a\n", encoding='utf-8')
        assert isinstance(open_row_source(SourceDescriptor(path=str(path))), CsvRowSource)

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "stages.parquet"
        path.write_bytes(b"")
        with pytest.raises(ConfigurationError, match="Unsupported source file type"):
            open_row_source(SourceDescriptor(path=str(path)))
