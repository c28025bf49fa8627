"""
Record kind strategies.

Each record kind the loader can produce has one strategy describing how its
attribute sets are completed, how lookups are normalized, how new records are
persisted and how a record is attached to the row subject. The strategy is chosen
once while compiling the loader plan, so row processing never re-checks kinds.

    SubjectStrategy      becomes the row subject for the rest of the row
    EventStrategy        event fields, data list and time normalization; fast-path insert
    ResearcherStrategy   full_name handling; role-tagged subject association
    MembershipStrategy   IRBs, studies, publications; idempotent subject membership
"""

import logging

from typing import Dict, Any, Optional, TYPE_CHECKING

from ..exceptions import InputError
from ..interfaces import RecordStoreInterface
from ..models import RecordKind, Provenance
from ..utils import StringUtils

if TYPE_CHECKING:
    from .attribute_builder import AttributeBuilder
    from .loader_plan import LoaderPlanEntry


class RecordKindStrategy:
    """Default behaviour shared by all record kinds."""

    kind: RecordKind = None
    fast_path = False

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def complete_attributes(self, attributes: Dict[str, Any], data_values: Dict[str, Any],
                            entry: 'LoaderPlanEntry', row_subject: Optional[Dict[str, Any]],
                            builder: 'AttributeBuilder') -> Dict[str, Any]:
        """Add kind-specific fields to a merged attribute set."""
        return attributes

    def lookup_conditions(self, conditions: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize an existing-record lookup before it reaches the store."""
        return conditions

    def prepare_attributes(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Map attribute names onto stored fields before create/update."""
        return attributes

    def persist(self, store: RecordStoreInterface, attributes: Dict[str, Any],
                provenance: Provenance) -> Optional[Dict[str, Any]]:
        """
        Create a new record.

        Raises:
            RecordValidationError: If the store rejects the record
        """
        return store.create(self.kind, self.prepare_attributes(dict(attributes)), provenance)

    def associate(self, store: RecordStoreInterface, record: Optional[Dict[str, Any]],
                  entry: 'LoaderPlanEntry', row_subject: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """
        Attach a resolved record to the row subject.

        Returns:
            The row subject for the remaining entries of the row
        """
        return row_subject

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value})"


class SubjectStrategy(RecordKindStrategy):
    kind = RecordKind.SUBJECT

    def associate(self, store, record, entry, row_subject):
        # A resolved subject replaces the row subject; a failed create leaves none
        return record


class EventStrategy(RecordKindStrategy):
    kind = RecordKind.EVENT
    fast_path = True

    def complete_attributes(self, attributes, data_values, entry, row_subject, builder):
        if row_subject is None or row_subject.get('id') is None:
            raise InputError(
                f"No subject available for event '{entry.event_name}'",
                attributes=dict(attributes),
            )

        attributes['event_dictionary_id'] = entry.event_dictionary['id']
        attributes['name'] = entry.event_name
        attributes['source_id'] = builder.provenance.source_id
        attributes['documentation_id'] = builder.provenance.documentation_id
        attributes['data_list'] = builder.build_data_list(data_values, entry.static_data_fields)
        attributes['subject_id'] = row_subject['id']

        return builder.time_normalizer.normalize(
            attributes, labtime_fn=entry.labtime_fn, realtime_format=entry.realtime_format
        )

    def persist(self, store, attributes, provenance):
        # Events dominate load volume: insert directly, without validation or change logging
        store.direct_insert_event(attributes)
        return None


class ResearcherStrategy(RecordKindStrategy):
    kind = RecordKind.RESEARCHER

    def lookup_conditions(self, conditions):
        return self._split_full_name(conditions)

    def prepare_attributes(self, attributes):
        return self._split_full_name(attributes)

    def associate(self, store, record, entry, row_subject):
        if record is not None and row_subject is not None:
            store.set_role_association(
                record,
                subject_id=row_subject['id'],
                researcher_type=entry.researcher_type,
                role=entry.role,
            )
        return row_subject

    @staticmethod
    def _split_full_name(values: Dict[str, Any]) -> Dict[str, Any]:
        if 'full_name' not in values:
            return values
        values = dict(values)
        split_name = StringUtils.split_full_name(values.pop('full_name'))
        values['first_name'] = split_name['first_name']
        values['last_name'] = split_name['last_name']
        return values


class MembershipStrategy(RecordKindStrategy):
    """IRBs, studies and publications hold a many-to-many list of subjects."""

    def __init__(self, kind: RecordKind):
        super().__init__()
        self.kind = kind

    def associate(self, store, record, entry, row_subject):
        if record is not None and row_subject is not None:
            if store.add_membership(self.kind, record, row_subject):
                self.logger.debug(f"Added subject {row_subject.get('id')} to {self.kind.value} {record.get('id')}")
        return row_subject


def strategy_for(kind: RecordKind) -> RecordKindStrategy:
    """Return the strategy for an object map kind."""
    if kind == RecordKind.SUBJECT:
        return SubjectStrategy()
    if kind == RecordKind.EVENT:
        return EventStrategy()
    if kind == RecordKind.RESEARCHER:
        return ResearcherStrategy()
    if kind in (RecordKind.IRB, RecordKind.STUDY, RecordKind.PUBLICATION):
        return MembershipStrategy(kind)
    raise ValueError(f"No record strategy for kind {kind!r}")
