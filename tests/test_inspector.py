"""
Integration tests for the InspectorConsole facade.

Storage and the funnel source are in-memory fakes; everything else is the
real registry, renderer, resolver, aggregator, cache and editor.
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from catalog_inspector.config.settings import AppConfig, StorageConfig
from catalog_inspector.core.error_taxonomy import ConfigurationError, ErrorCategory, InspectorError, StorageError
from catalog_inspector.core.field_renderer import LinkedEntityChips
from catalog_inspector.core.inspector import InspectorConsole
from catalog_inspector.core.record_editor import WriteResult
from catalog_inspector.core.schema_registry import SchemaRegistry
from catalog_inspector.data.record_aggregator import CompletenessReport, WaitlistSummary
from catalog_inspector.tools.funnel_events import FunnelEventSource


COLLECTIONS = {
    "recipes": [
        {"id": "r1", "name_common": "Stir Fry", "category": "meal", "equipment_ids": ["e1"],
         "difficulty": "easy", "created_at": "2025-03-01T10:00:00Z"},
        {"id": "r2", "name_common": "Porridge", "category": "meal"},
    ],
    "equipment": [{"id": "e1", "name": "Wok", "category": "cookware"}],
    "waitlist": [
        {"email": "a@x.io", "name": "Ann", "confirmed": True, "referrals": 2,
         "created_at": "2025-03-01T10:00:00Z"},
    ],
}


class FakeStorage:
    def __init__(self, broken_kinds=()):
        self.broken_kinds = set(broken_kinds)
        self.updates = []
        self.id_lookups = []

    def fetch_collection(self, entity_kind):
        if entity_kind in self.broken_kinds:
            raise StorageError("HTTP 500", status_code=500)
        return [dict(r) for r in COLLECTIONS.get(entity_kind, [])]

    def fetch_by_ids(self, entity_kind, ids, columns):
        self.id_lookups.append((entity_kind, list(ids)))
        return [r for r in COLLECTIONS.get(entity_kind, []) if r.get("id") in ids]

    def update_record(self, entity_kind, record_id, partial):
        self.updates.append((entity_kind, record_id, dict(partial)))
        return WriteResult(True, entity_kind, record_id, list(partial))

    def delete_record(self, entity_kind, record_id):
        return WriteResult(True, entity_kind, record_id, action="delete")


class FakeFunnelSource:
    def fetch_snapshot(self):
        return None


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def console(storage):
    return InspectorConsole(
        config=AppConfig(),
        registry=SchemaRegistry.from_yaml(),
        storage=storage,
        funnel_source=FakeFunnelSource(),
    )


class TestCollections:
    """Tests for loading collections."""

    def test_unknown_kind(self, console):
        with pytest.raises(InspectorError) as exc:
            console.load_collection("spaceships")
        assert exc.value.category == ErrorCategory.UNKNOWN_ENTITY_KIND

    def test_load_refreshes_search_cache(self, console):
        console.load_collection("recipes")
        assert len(console.records("recipes")) == 2
        assert [m.display_name for m in console.search("porr")] == ["Porridge"]

    def test_load_all_skips_failures(self):
        console = InspectorConsole(
            config=AppConfig(),
            registry=SchemaRegistry.from_yaml(),
            storage=FakeStorage(broken_kinds={"scans"}),
            funnel_source=FakeFunnelSource(),
        )
        loaded = console.load_all()
        assert "scans" not in loaded
        assert loaded["recipes"] == 2

    def test_list_rows(self, console):
        console.load_collection("recipes")
        rows = console.list_rows("recipes")
        assert [r.title for r in rows] == ["Stir Fry", "Porridge"]


class TestInspect:
    """Tests for the detail view."""

    def test_inspect_resolves_links(self, console, storage):
        console.load_collection("recipes")
        view = console.inspect("recipes", "r1")

        chips = view.get_field("equipment_ids").description
        assert isinstance(chips, LinkedEntityChips)
        assert chips.loading is False
        assert [r.display_name for r in chips.references] == ["Wok"]
        assert storage.id_lookups == [("equipment", ["e1"])]

    def test_first_render_shows_loading(self, console):
        console.load_collection("recipes")
        views = []
        asyncio.run(console.inspect_async("recipes", console.find_record("recipes", "r1"), views.append))

        first = views[0].get_field("equipment_ids").description
        last = views[-1].get_field("equipment_ids").description
        assert first.loading is True
        assert last.loading is False
        assert len(views) == 2

    def test_inspect_missing_record(self, console):
        console.load_collection("recipes")
        assert console.inspect("recipes", "nope") is None

    def test_reopening_closes_previous_session(self, console):
        first = console.open_detail("recipes", {"id": "r1"})
        console.open_detail("recipes", {"id": "r2"})
        assert first.open is False


class TestEditing:
    """Tests for save/delete through the console."""

    def test_save_updates_collection_and_search(self, console, storage):
        console.load_collection("recipes")
        draft = console.begin_edit("recipes", console.find_record("recipes", "r2"))
        draft.set("name_common", "Overnight Oats")

        result = console.save(draft)

        assert result.success
        assert storage.updates == [("recipes", "r2", {"name_common": "Overnight Oats"})]
        assert console.find_record("recipes", "r2")["name_common"] == "Overnight Oats"
        assert [m.display_name for m in console.search("overnight")] == ["Overnight Oats"]

    def test_delete(self, console):
        console.load_collection("recipes")
        assert console.delete("recipes", "r1").success
        assert console.find_record("recipes", "r1") is None
        assert console.search("stir") == []


class TestSummaries:
    """Tests for summarize and export."""

    def test_catalog_summary(self, console):
        console.load_collection("recipes")
        report = console.summarize("recipes")
        assert isinstance(report, CompletenessReport)
        assert report.total == 2

    def test_waitlist_summary_estimates(self, console):
        console.load_collection("waitlist")
        summary = console.summarize("waitlist")
        assert isinstance(summary, WaitlistSummary)
        assert summary.funnel.is_estimate

    def test_export(self, console, tmp_path):
        console.load_collection("recipes")
        output = console.export("recipes", output_dir=str(tmp_path))
        assert output.row_count == 2
        assert output.sheet_count == 2

    def test_waitlist_summary_with_null_measured_count(self):
        """A null count from the funnel endpoint is estimated, not a crash."""
        response = MagicMock()
        response.json.return_value = {"success": True, "counts": {"lp_view": None, "signup_submit": 7}}
        session = MagicMock()
        session.get.return_value = response
        console = InspectorConsole(
            config=AppConfig(),
            registry=SchemaRegistry.from_yaml(),
            storage=FakeStorage(),
            funnel_source=FunnelEventSource(StorageConfig(base_url="https://example.test"), session=session),
        )
        console.load_collection("waitlist")

        steps = {s.event: s for s in console.summarize("waitlist").funnel.steps}

        assert steps["signup_submit"].count == 7
        assert steps["signup_submit"].estimated is False
        assert steps["lp_view"].count == 3
        assert steps["lp_view"].estimated is True


class TestConfiguration:
    """Tests for building the console without a storage collaborator."""

    def test_unconfigured_storage_raises(self):
        config = AppConfig(storage=StorageConfig(base_url="", api_key="", access_token=""))
        with pytest.raises(ConfigurationError):
            InspectorConsole(config=config, registry=SchemaRegistry.from_yaml(), funnel_source=FakeFunnelSource())
