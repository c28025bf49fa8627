"""
Attribute Builder - assembles create/update attribute sets for one candidate record.

Column-extracted values are merged with the plan entry's static fields (static
values win), then the entry's record kind strategy completes the set. For events
that adds the event name, dictionary reference, provenance, subject id, the data
list built from auxiliary values, and a normalized labtime or realtime.
"""

import logging

from typing import Dict, Any, List, Optional

from ..models import Provenance, DataListEntry
from .time_fields import TimeNormalizer


class AttributeBuilder:
    """Builds attribute sets and data lists for loader plan entries."""

    def __init__(self, provenance: Provenance, time_normalizer: Optional[TimeNormalizer] = None):
        """
        Initialize the builder.

        Args:
            provenance: Source and documentation stamped on events
            time_normalizer: Event time normalizer (defaults to the America/New_York reference zone)
        """
        self.logger = logging.getLogger(__name__)
        self.provenance = provenance
        self.time_normalizer = time_normalizer or TimeNormalizer()

    def build(self, entry, column_values: Dict[str, Any], data_values: Dict[str, Any],
              row_subject: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Build the attribute set for one instance of a plan entry.

        Args:
            entry: LoaderPlanEntry being processed
            column_values: Field values extracted from the row for this instance
            data_values: Auxiliary (datum) values for this instance (events only)
            row_subject: Current row subject record, if any

        Returns:
            Attribute dictionary ready for lookup and persistence

        Raises:
            InputError: If event time fields are invalid or no subject is available for an event
        """
        attributes = dict(column_values)
        attributes.update(entry.static_fields)
        return entry.strategy.complete_attributes(attributes, data_values, entry, row_subject, self)

    def build_data_list(self, data_values: Dict[str, Any], static_data_fields: Dict[str, Any]) -> List[DataListEntry]:
        """
        Build an event data list from auxiliary values and static defaults.

        Static defaults override auxiliary values with the same title; titles keep
        their first-seen order.
        """
        merged = dict(data_values)
        merged.update(static_data_fields)
        return [DataListEntry(title=str(title), value=value) for title, value in merged.items()]
