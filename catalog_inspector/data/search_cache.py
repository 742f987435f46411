"""
Cross-Collection Search Cache

Keeps the last-fetched record set per entity kind so a quick search can look
across every other collection without refetching. Snapshots are replaced
wholesale whenever a collection is fetched again.

The cache belongs to one console session and is passed by reference to
whatever needs it; there is no module-level instance.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from catalog_inspector.core.schema_registry import SchemaRegistry
from catalog_inspector.core.value_extraction import has_data

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("name", "name_common", "email", "title", "category")
DEFAULT_LIMIT = 4


@dataclass
class SearchMatch:
    entity_kind: str
    record: Dict[str, Any]
    display_name: str


class SearchCache:
    """Per-kind record snapshots plus a combined substring search."""

    def __init__(self, registry: Optional[SchemaRegistry] = None, limit: int = DEFAULT_LIMIT):
        self.registry = registry
        self.limit = limit
        self._snapshots: Dict[str, List[Dict[str, Any]]] = {}

    def record_snapshot(self, entity_kind: str, records: List[Dict[str, Any]]):
        """Store the latest fetch for a kind, overwriting any earlier one."""
        self._snapshots[entity_kind] = list(records)
        logger.debug(f"Search cache holds {len(records)} {entity_kind} record(s)")

    def snapshot(self, entity_kind: str) -> List[Dict[str, Any]]:
        return list(self._snapshots.get(entity_kind, []))

    def kinds(self) -> List[str]:
        return list(self._snapshots.keys())

    def clear(self):
        self._snapshots.clear()

    def _display_name(self, entity_kind: str, record: Dict[str, Any]) -> str:
        if self.registry is not None:
            return self.registry.get_display_name(entity_kind, record)
        for key in SEARCH_FIELDS:
            if has_data(record.get(key)):
                return str(record[key])
        return "Unnamed"

    @staticmethod
    def _matches(record: Dict[str, Any], needle: str) -> bool:
        for key in SEARCH_FIELDS:
            value = record.get(key)
            if isinstance(value, str) and needle in value.lower():
                return True
        return False

    def search(self, query: str, excluding_kind: Optional[str] = None) -> List[SearchMatch]:
        """
        Case-insensitive substring search across every cached kind except
        the excluded one, stopping once the combined limit is reached.
        """
        needle = (query or "").strip().lower()
        if not needle:
            return []

        matches: List[SearchMatch] = []
        for kind, records in self._snapshots.items():
            if kind == excluding_kind:
                continue
            for record in records:
                if self._matches(record, needle):
                    matches.append(SearchMatch(kind, record, self._display_name(kind, record)))
                    if len(matches) >= self.limit:
                        return matches
        return matches
