"""
Existing Record Resolver - finds the unique persisted record a candidate refers to.

Used for 'update' and 'ignore' policies: the plan entry's find_by fields are read
from the candidate attribute set and matched by equality. Kind-specific lookup
normalization (e.g. researcher full names) is delegated to the record strategy.
"""

import logging

from typing import Dict, Any, Optional

from ..exceptions import ConsistencyError
from ..interfaces import RecordStoreInterface


class ExistingRecordResolver:
    """Resolves candidate attribute sets to zero or one persisted record."""

    def __init__(self, store: RecordStoreInterface):
        self.logger = logging.getLogger(__name__)
        self.store = store

    def build_conditions(self, entry, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Equality conditions over the entry's find_by fields."""
        conditions = {field: attributes.get(field) for field in entry.existing_records.find_by}
        return entry.strategy.lookup_conditions(conditions)

    def find_existing(self, entry, attributes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Look up the persisted record matching a candidate.

        Args:
            entry: LoaderPlanEntry whose policy names the lookup fields
            attributes: Candidate attribute set

        Returns:
            The matching record, or None when nothing matches

        Raises:
            ConsistencyError: If more than one record matches
        """
        conditions = self.build_conditions(entry, attributes)
        matches = self.store.find(entry.kind, conditions)

        if len(matches) > 1:
            raise ConsistencyError(
                f"Object to update not unique: {len(matches)} {entry.kind.value} records match {conditions}",
                kind=entry.kind.value,
                conditions=conditions,
                match_count=len(matches),
                entry=entry.describe(),
            )

        if matches:
            self.logger.debug(f"Found existing {entry.kind.value} {matches[0].get('id')} for {conditions}")
            return matches[0]
        return None
