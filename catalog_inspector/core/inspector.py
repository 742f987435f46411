"""
Inspector Console

Facade wiring the registry, storage collaborator, renderer, link resolver,
aggregator, search cache and editor into one session object.

Control flow:
- load_collection() fetches a kind, keeps it as the owning RecordCollection
  and passively refreshes the search cache snapshot.
- summarize() runs the aggregator over whatever was fetched.
- inspect() renders a detail view straight away with linked fields marked
  as loading, then re-renders as each field's lookup lands.
- begin_edit() / save() / delete() go through the editor, merging into the
  owning collection only on success.

Usage:
    console = InspectorConsole()
    console.load_collection("recipes")
    view = console.inspect("recipes", record_id)
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from catalog_inspector.config.settings import AppConfig, get_config
from catalog_inspector.core.error_taxonomy import ErrorCategory, InspectorError, StorageError
from catalog_inspector.core.field_renderer import (
    DetailView,
    ListRow,
    RenderContext,
    render_list_row,
    render_record,
)
from catalog_inspector.core.link_resolver import DetailSession, LinkResolver, coerce_ids
from catalog_inspector.core.record_editor import EditDraft, RecordCollection, RecordEditor, WriteResult
from catalog_inspector.core.schema_registry import SchemaRegistry, get_schema_registry
from catalog_inspector.data.record_aggregator import DateRange, RecordAggregator, TrendPeriod
from catalog_inspector.data.search_cache import SearchCache, SearchMatch
from catalog_inspector.tools.excel_output import ExcelExporter, ExcelOutput
from catalog_inspector.tools.funnel_events import FunnelEventSource
from catalog_inspector.tools.storage_client import get_storage_client

logger = logging.getLogger(__name__)


class InspectorConsole:
    """One operator session over the record catalog."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        registry: Optional[SchemaRegistry] = None,
        storage: Any = None,
        funnel_source: Any = None,
    ):
        self.config = config or get_config()
        self.registry = registry or get_schema_registry()
        self.storage = storage or get_storage_client(self.config.storage, self.registry)
        self.funnel_source = funnel_source or FunnelEventSource(self.config.storage)

        settings = self.config.inspector
        self.search_cache = SearchCache(self.registry, limit=settings.search_result_limit)
        self.aggregator = RecordAggregator(
            self.registry,
            trend_window=settings.trend_window,
            min_bar_percent=settings.min_bar_percent,
        )
        self.resolver = LinkResolver(self.registry, self.storage.fetch_by_ids)
        self.editor = RecordEditor(self.registry, self.storage)

        self.collections: Dict[str, RecordCollection] = {}
        self._detail_session: Optional[DetailSession] = None

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def load_collection(self, entity_kind: str) -> RecordCollection:
        """Fetch a kind and make it the owning collection; raises StorageError on failure."""
        if self.registry.get_schema(entity_kind) is None:
            raise InspectorError(
                f"Unknown entity kind '{entity_kind}'",
                category=ErrorCategory.UNKNOWN_ENTITY_KIND,
                context={"known_kinds": self.registry.entity_kinds()},
            )
        records = self.storage.fetch_collection(entity_kind)
        collection = RecordCollection(entity_kind, records, id_field=self.registry.id_field_for(entity_kind))
        self.collections[entity_kind] = collection
        self.search_cache.record_snapshot(entity_kind, collection.records)
        return collection

    def load_all(self) -> Dict[str, int]:
        """Fetch every kind; a kind that fails is logged and skipped."""
        loaded = {}
        for kind in self.registry.entity_kinds():
            try:
                loaded[kind] = len(self.load_collection(kind))
            except StorageError as e:
                logger.warning(f"Skipping {kind}: {e}")
        return loaded

    def records(self, entity_kind: str) -> List[Dict[str, Any]]:
        collection = self.collections.get(entity_kind)
        return list(collection.records) if collection else []

    def find_record(self, entity_kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        collection = self.collections.get(entity_kind)
        return collection.get(record_id) if collection else None

    def list_rows(self, entity_kind: str) -> List[ListRow]:
        return [render_list_row(self.registry, entity_kind, r) for r in self.records(entity_kind)]

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def summarize(
        self,
        entity_kind: str,
        date_range: Optional[DateRange] = None,
        period: Optional[TrendPeriod] = None,
    ):
        """CompletenessReport, ScanSummary or WaitlistSummary depending on the kind."""
        settings = self.config.inspector
        date_range = date_range or DateRange(settings.default_date_range)
        period = period or TrendPeriod(settings.default_trend_period)
        records = self.records(entity_kind)

        if entity_kind == "waitlist":
            return self.aggregator.summarize_waitlist(records, self.funnel_source.fetch_snapshot())
        if entity_kind == "scans":
            return self.aggregator.summarize_scans(records, date_range, period)
        return self.aggregator.summarize_catalog(records, entity_kind, date_range)

    # ------------------------------------------------------------------
    # Detail view
    # ------------------------------------------------------------------

    def _render_context(self) -> RenderContext:
        settings = self.config.inspector
        return RenderContext(
            min_bar_percent=settings.min_bar_percent,
            key_value_grid_cap=settings.key_value_grid_cap,
        )

    def open_detail(self, entity_kind: str, record: Dict[str, Any]) -> DetailSession:
        """Start a detail session, closing whichever one was open."""
        self.close_detail()
        self._detail_session = DetailSession(entity_kind, self.registry.get_record_id(entity_kind, record))
        return self._detail_session

    def close_detail(self):
        if self._detail_session is not None:
            self._detail_session.close()
            self._detail_session = None

    async def inspect_async(
        self,
        entity_kind: str,
        record: Dict[str, Any],
        on_update: Optional[Callable[[DetailView], None]] = None,
    ) -> DetailView:
        """
        Render a record, then resolve its linked fields concurrently.

        on_update receives the first render (links loading) and a fresh
        render after each linked field lands.
        """
        session = self.open_detail(entity_kind, record)
        linked = self.registry.get_linked_fields(entity_kind)
        context = self._render_context()
        context.pending_links = {spec.key for spec in linked if coerce_ids(record.get(spec.key))}

        if on_update is not None:
            on_update(render_record(self.registry, entity_kind, record, context))

        def landed(field_key, refs):
            context.resolved_links[field_key] = refs
            context.pending_links.discard(field_key)
            if on_update is not None:
                on_update(render_record(self.registry, entity_kind, record, context))

        links = await self.resolver.resolve_links(record, linked, session, landed)
        for key in list(context.pending_links):
            context.resolved_links.setdefault(key, links.get(key, []))
        context.pending_links.clear()
        return render_record(self.registry, entity_kind, record, context)

    def inspect(self, entity_kind: str, record_or_id: Any) -> Optional[DetailView]:
        """Synchronous detail render; accepts a record dict or an id in a loaded collection."""
        record = record_or_id if isinstance(record_or_id, dict) else self.find_record(entity_kind, record_or_id)
        if record is None:
            logger.warning(f"No {entity_kind} record '{record_or_id}' in the loaded collection")
            return None
        return asyncio.run(self.inspect_async(entity_kind, record))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, excluding_kind: Optional[str] = None) -> List[SearchMatch]:
        return self.search_cache.search(query, excluding_kind)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def begin_edit(self, entity_kind: str, record: Dict[str, Any]) -> EditDraft:
        return self.editor.begin_edit(entity_kind, record)

    def save(self, draft: EditDraft) -> WriteResult:
        result = self.editor.save(draft, self.collections.get(draft.entity_kind))
        if result.success and draft.entity_kind in self.collections:
            self.search_cache.record_snapshot(draft.entity_kind, self.collections[draft.entity_kind].records)
        return result

    def delete(self, entity_kind: str, record_id: str) -> WriteResult:
        result = self.editor.delete(entity_kind, record_id, self.collections.get(entity_kind))
        if result.success and entity_kind in self.collections:
            self.search_cache.record_snapshot(entity_kind, self.collections[entity_kind].records)
        return result

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, entity_kind: str, output_dir: str = ".outputs", include_summary: bool = True) -> ExcelOutput:
        records = self.records(entity_kind)
        summary = None
        if include_summary and entity_kind not in ("waitlist", "scans"):
            summary = self.aggregator.summarize_catalog(records, entity_kind)
        exporter = ExcelExporter(output_dir, registry=self.registry)
        return exporter.export_records(entity_kind, records, summary)
