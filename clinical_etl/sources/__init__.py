"""Tabular row source adapters."""

from .row_sources import CsvRowSource, XlsRowSource, XlsxRowSource, DbfRowSource, open_row_source

__all__ = ['CsvRowSource', 'XlsRowSource', 'XlsxRowSource', 'DbfRowSource', 'open_row_source']
