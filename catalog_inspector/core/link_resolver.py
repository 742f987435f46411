"""
Linked-Entity Resolver

Resolves the foreign ids held by a record's linked-entity-set fields into
small display objects (id, name, category, type, image). One batched lookup
is issued per field, and all fields of one detail view are looked up
concurrently so the view can render each field as it arrives.

A DetailSession scopes the resolved-reference cache to one open detail view.
Closing the session does not cancel in-flight lookups; their results are
simply dropped when they land.

Usage:
    resolver = LinkResolver(registry, storage_client.fetch_by_ids)
    session = DetailSession()
    links = asyncio.run(resolver.resolve_links(record, fields, session))
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from catalog_inspector.core.error_taxonomy import LinkResolutionError, classify_error
from catalog_inspector.core.schema_registry import FieldSpec, SchemaRegistry, ValueKind
from catalog_inspector.core.value_extraction import has_data

logger = logging.getLogger(__name__)

# fetch_by_ids(entity_kind, ids, columns) -> rows; sync or async
FetchByIds = Callable[[str, List[str], List[str]], Union[List[Dict[str, Any]], Awaitable[List[Dict[str, Any]]]]]
OnResolved = Callable[[str, List["ResolvedReference"]], None]

# Columns a reference needs, when the target kind declares them
_OPTIONAL_COLUMNS = ("category", "type", "type_label", "image_url")


@dataclass
class ResolvedReference:
    """Display object for one resolved linked-entity id."""
    id: str
    display_name: str
    category: Optional[str] = None
    type: Optional[str] = None
    image_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "category": self.category,
            "type": self.type,
            "image_ref": self.image_ref,
        }


class DetailSession:
    """Lifetime of one open detail view: owns the reference cache."""

    def __init__(self, entity_kind: Optional[str] = None, record_id: Optional[str] = None):
        self.entity_kind = entity_kind
        self.record_id = record_id
        self.open = True
        self._cache: Dict[Tuple[str, str], ResolvedReference] = {}

    def get(self, source_field: str, ref_id: str) -> Optional[ResolvedReference]:
        return self._cache.get((source_field, ref_id))

    def put(self, source_field: str, ref: ResolvedReference):
        self._cache[(source_field, ref.id)] = ref

    def close(self):
        """Mark the view closed and drop everything it resolved."""
        self.open = False
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


def coerce_ids(value: Any) -> List[str]:
    """Ordered, de-duplicated id strings from a list, a single id, or embedded dicts."""
    if not has_data(value):
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    ids: List[str] = []
    for item in items:
        if isinstance(item, dict):
            item = item.get("id")
        if has_data(item) and not isinstance(item, (dict, list)):
            item = str(item).strip()
            if item not in ids:
                ids.append(item)
    return ids


class LinkResolver:
    """Batched, per-field concurrent resolution of linked-entity ids."""

    def __init__(self, registry: SchemaRegistry, fetch_by_ids: FetchByIds):
        self.registry = registry
        self.fetch_by_ids = fetch_by_ids

    def columns_for(self, entity_kind: str) -> List[str]:
        """Only the columns a ResolvedReference needs from the target kind."""
        schema = self.registry.get_schema(entity_kind)
        columns = ["id"]
        if schema is None:
            return columns
        if schema.name_field not in columns:
            columns.append(schema.name_field)
        declared = {spec.key for spec in schema.field_specs}
        columns.extend(c for c in _OPTIONAL_COLUMNS if c in declared and c not in columns)
        return columns

    def to_reference(self, entity_kind: str, row: Dict[str, Any]) -> ResolvedReference:
        ref_type = row.get("type") if has_data(row.get("type")) else row.get("type_label")
        return ResolvedReference(
            id=str(row.get("id")),
            display_name=self.registry.get_display_name(entity_kind, row),
            category=str(row["category"]) if has_data(row.get("category")) else None,
            type=str(ref_type) if has_data(ref_type) else None,
            image_ref=self.registry.get_image_ref(entity_kind, row),
        )

    async def resolve_links(
        self,
        record: Dict[str, Any],
        fields: Iterable[FieldSpec],
        session: Optional[DetailSession] = None,
        on_resolved: Optional[OnResolved] = None,
    ) -> Dict[str, List[ResolvedReference]]:
        """
        Resolve every linked-entity-set field of a record that holds ids.

        Args:
            record: The record being inspected.
            fields: Field specs to consider; non-linked fields are skipped.
            session: Detail-view session owning the cache. A fresh one is
                     used when omitted.
            on_resolved: Called with (field_key, refs) as each field lands.

        Returns:
            Mapping from field key to resolved references, in the record's
            id order. A field whose lookup failed maps to an empty list.
        """
        if session is None:
            session = DetailSession()
        linked = [
            spec for spec in fields
            if spec.value_kind == ValueKind.LINKED_ENTITY_SET and coerce_ids(record.get(spec.key))
        ]
        if not linked:
            return {}

        tasks = [
            asyncio.create_task(self._resolve_field(spec, coerce_ids(record.get(spec.key)), session, on_resolved))
            for spec in linked
        ]
        results = await asyncio.gather(*tasks)
        return {key: refs for key, refs in results}

    async def _resolve_field(
        self,
        spec: FieldSpec,
        ids: List[str],
        session: DetailSession,
        on_resolved: Optional[OnResolved],
    ) -> Tuple[str, List[ResolvedReference]]:
        target = spec.linked_entity_kind
        missing = [ref_id for ref_id in ids if session.get(spec.key, ref_id) is None]

        if missing:
            logger.debug(f"Resolving {len(missing)} {target} id(s) for '{spec.key}'")
            try:
                rows = await self._fetch(target, missing, self.columns_for(target))
            except Exception as e:
                classified = classify_error(
                    LinkResolutionError(f"Link lookup failed for '{spec.key}' -> {target}: {e}",
                                        context={"field": spec.key, "linked_kind": target}),
                    operation="resolve_links",
                )
                logger.warning(f"{classified.message} ({classified.category.name})")
                return spec.key, []

            if not session.open:
                logger.debug(f"Detail view closed; discarding late links for '{spec.key}'")
                return spec.key, []

            for row in rows or []:
                if has_data(row.get("id")):
                    session.put(spec.key, self.to_reference(target, row))
        else:
            logger.debug(f"All {len(ids)} id(s) for '{spec.key}' already cached")

        refs = [session.get(spec.key, ref_id) for ref_id in ids]
        refs = [ref for ref in refs if ref is not None]
        if on_resolved is not None and session.open:
            try:
                on_resolved(spec.key, refs)
            except Exception as e:
                logger.warning(f"on_resolved callback failed for '{spec.key}': {e}")
        return spec.key, refs

    async def _fetch(self, entity_kind: str, ids: List[str], columns: List[str]) -> List[Dict[str, Any]]:
        if inspect.iscoroutinefunction(self.fetch_by_ids):
            return await self.fetch_by_ids(entity_kind, ids, columns)
        # The HTTP client is synchronous; keep the event loop free
        return await asyncio.to_thread(self.fetch_by_ids, entity_kind, ids, columns)
