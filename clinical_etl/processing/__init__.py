"""
Processing module for the clinical tabular loading system.

This module runs compiled loader plans over source rows inside a single
all-or-nothing transaction.
"""

from .database_loader import DatabaseLoader, loader_from_definition
from .row_processor import RowProcessor

__all__ = [
    'DatabaseLoader',
    'RowProcessor',
    'loader_from_definition'
]
