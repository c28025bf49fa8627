"""Shared fixtures for unit and integration tests."""

import pytest

from helpers import InMemoryRecordStore, ListRowSource
from clinical_etl.models import Provenance


@pytest.fixture
def store():
    """In-memory record store with event dictionary entries x, scored_epoch and visit."""
    return InMemoryRecordStore(event_dictionary_names=('x', 'scored_epoch', 'visit'))


@pytest.fixture
def provenance():
    return Provenance(source_id=101, documentation_id=202, user_id=303)


@pytest.fixture
def row_source_factory():
    """Build a ListRowSource from a list of rows."""
    return ListRowSource
