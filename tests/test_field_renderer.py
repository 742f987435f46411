"""
Unit tests for the Generic Field Renderer.

Tests cover:
- Variant selection order
- Nutrition rendering (macros, grouped bars, flat bars, key/value grid)
- Zero filtering and bar widths
- Record-level detail views and list rows
"""
import pytest

from catalog_inspector.core.field_renderer import (
    Badge,
    BooleanTag,
    BulletList,
    Empty,
    GroupedProgressBarList,
    KeyValueGrid,
    LinkedEntityChips,
    MacroSummaryCards,
    ProgressBarEntry,
    ProgressBarList,
    RenderContext,
    Text,
    Timestamp,
    describe_text,
    format_bar_label,
    render_field,
    render_list_row,
    render_record,
)
from catalog_inspector.core.link_resolver import ResolvedReference
from catalog_inspector.core.schema_registry import FieldSpec, SchemaRegistry


@pytest.fixture
def registry():
    return SchemaRegistry.from_yaml()


def spec(key, kind="text", **kwargs):
    return FieldSpec(key=key, kind=kind, **kwargs)


class TestSelection:
    """Tests for the variant selection order."""

    @pytest.mark.parametrize("value", [None, "", "null", [], {}])
    def test_empty_values(self, value):
        """Null, empty and the literal "null" always render Empty."""
        for kind in ("text", "boolean", "structured-object", "linked-entity-set"):
            extra = {"linked_kind": "equipment"} if kind == "linked-entity-set" else {}
            assert isinstance(render_field(spec("f", kind, **extra), value), Empty)

    def test_linked_chips_from_context(self):
        refs = [ResolvedReference(id="1", display_name="Skillet")]
        context = RenderContext(resolved_links={"equipment_ids": refs})
        result = render_field(spec("equipment_ids", "linked-entity-set", linked_kind="equipment"), ["1"], context)
        assert isinstance(result, LinkedEntityChips)
        assert result.references == refs
        assert result.loading is False

    def test_linked_chips_loading(self):
        """A link still in flight renders a loading chip list."""
        context = RenderContext(pending_links={"equipment_ids"})
        result = render_field(spec("equipment_ids", "linked-entity-set", linked_kind="equipment"), ["1"], context)
        assert result.loading is True
        assert result.references == []

    def test_boolean(self):
        assert render_field(spec("confirmed", "boolean"), False) == BooleanTag(value=False)
        assert render_field(spec("confirmed", "boolean"), "true").value is True

    def test_timestamp_kind_and_known_key(self):
        """Timestamp kind and well-known date keys both format through the context."""
        context = RenderContext(date_formatter=lambda v: f"<{v}>")
        assert render_field(spec("joined", "timestamp"), "2025-01-02", context).formatted == "<2025-01-02>"
        result = render_field(spec("signupDate", "text"), "2025-01-02T10:00:00Z", context)
        assert isinstance(result, Timestamp)

    def test_default_date_formatter(self):
        result = render_field(spec("created_at", "timestamp"), "2025-03-04T14:05:00Z")
        assert result.formatted == "Mar 04, 2025 14:05"

    def test_unparseable_date_echoed(self):
        assert render_field(spec("created_at", "timestamp"), "someday").formatted == "someday"

    def test_tag_and_badge(self):
        assert render_field(spec("category", "tag"), "vegetable") == Badge(values=["vegetable"])
        assert render_field(spec("meal_slot", "tag"), ["lunch", "dinner"]).values == ["lunch", "dinner"]
        assert isinstance(render_field(spec("nutri_score", "enum", badge=True), "a"), Badge)
        assert isinstance(render_field(spec("difficulty", "enum"), "easy"), Text)

    def test_structured_list(self):
        value = [{"name": "Flour"}, "salt", {"qty": 2}]
        result = render_field(spec("ingredients", "structured-list"), value)
        assert result == BulletList(items=["Flour", "salt", '{"qty": 2}'])

    def test_structured_list_scalar_value(self):
        assert render_field(spec("steps", "structured-list"), "Mix").items == ["Mix"]

    def test_non_nutrition_object_is_text(self):
        """Structured objects outside the nutrition keys fall back to JSON text."""
        result = render_field(spec("taste_profile", "structured-object"), {"sweet": 3})
        assert result == Text(text='{"sweet": 3}')

    def test_unknown_shape_is_text(self):
        assert render_field(spec("health_score", "number"), 7.5) == Text(text="7.5")
        assert render_field(spec("health_score", "number"), 0) == Text(text="0")


class TestNutrition:
    """Tests for nutrition-like structured objects."""

    def test_macro_scenario(self):
        """Calories and protein become cards; zero carbs dropped; vitamin C is a bar."""
        value = {
            "calories": 250,
            "protein": 12,
            "carbs": 0,
            "vitamin_c": {"amount": 40, "unit": "mg", "rdi_percent": 44},
        }
        result = render_field(spec("macro_nutrition", "structured-object"), value)

        assert isinstance(result, MacroSummaryCards)
        assert [c.bucket for c in result.cards] == ["energy", "protein"]
        assert result.cards[0].unit == "kcal"
        assert result.cards[1].unit == "g"
        assert isinstance(result.remainder, ProgressBarList)
        assert len(result.remainder.entries) == 1
        assert result.remainder.entries[0].bar_label == "40 mg (44% RDI)"

    def test_macro_key_variants(self):
        """Macro keys match case-insensitively with separators stripped."""
        value = {"Total-Fat": 3, "Carbohydrates_g": 20, "Energy kcal": 100}
        result = render_field(spec("macro_nutrition", "structured-object"), value)
        assert [c.bucket for c in result.cards] == ["energy", "carbohydrate", "fat"]
        assert result.remainder is None

    def test_all_zero_children_yield_no_entries(self):
        value = {"iron": 0, "zinc": {"amount": 0, "unit": "mg"}}
        result = render_field(spec("nutrients_detected", "structured-object"), value)
        assert isinstance(result, ProgressBarList)
        assert result.entries == []

    def test_grouped_bars(self):
        value = {
            "minerals": {"iron": {"amount": 2, "unit": "mg"}, "zinc": {"amount": 1, "unit": "mg"}},
            "vitamins": {"c": {"amount": 0}},
            "fiber": 3,
        }
        result = render_field(spec("elements_beneficial", "structured-object"), value)
        assert isinstance(result, GroupedProgressBarList)
        labels = [g.label for g in result.groups]
        assert labels == ["Minerals", "Other"]
        assert all(g.expanded for g in result.groups)
        assert [e.key for e in result.groups[0].entries] == ["iron", "zinc"]

    def test_bar_widths(self):
        """Widths follow RDI when known, else value relative to the max, floor 2%."""
        value = {
            "a": 100,
            "b": 50,
            "c": 1,
            "d": {"amount": 5, "rdi_percent": 250},
        }
        result = render_field(spec("nutrition_per_100g", "structured-object"), value)
        widths = {e.key: e.width_percent for e in result.entries}
        assert widths["a"] == 100.0
        assert widths["b"] == 50.0
        assert widths["c"] == 2.0
        assert widths["d"] == 100.0

    def test_key_value_grid_capped(self):
        value = {f"note_{i}": f"v{i}" for i in range(12)}
        result = render_field(spec("pollutants_detected", "structured-object"), value)
        assert isinstance(result, KeyValueGrid)
        assert len(result.items) == 9
        assert result.remainder == 3

    def test_format_bar_label(self):
        assert format_bar_label(ProgressBarEntry("x", "X", 12.5, "g")) == "12.5 g"
        assert format_bar_label(ProgressBarEntry("x", "X", 3, "", 7.25)) == "3 (7.25% RDI)"

    def test_group_of_numeric_strings(self):
        """A child holding numeric strings reads as a group; flags and text do not."""
        value = {
            "minerals": {"calcium": "120 mg", "iron": {"amount": None, "value": 2, "unit": "mg"}},
            "flags": {"organic": True, "origin": "ES"},
        }
        result = render_field(spec("nutrients_detected", "structured-object"), value)
        assert isinstance(result, GroupedProgressBarList)
        assert [g.label for g in result.groups] == ["Minerals"]
        assert [e.bar_label for e in result.groups[0].entries] == ["120 mg", "2 mg"]

    def test_numeric_leaf_nutrition_value_is_text(self):
        result = render_field(spec("nutrition_per_100g", "structured-object"), {"amount": 5, "unit": "g"})
        assert isinstance(result, Text)


class TestRecordViews:
    """Tests for detail views and list rows."""

    @pytest.fixture
    def recipe(self):
        return {
            "id": "r1",
            "name_common": "Shakshuka",
            "category": "meal",
            "image_url": "shakshuka.png",
            "prep_time": "10m",
            "cook_time": "20m",
            "servings": 2,
            "difficulty": "easy",
            "ingredients": ["eggs", "tomato"],
            "instructions": ["Simmer", "Crack eggs"],
            "equipment_ids": ["e1"],
            "description": "Eggs poached in tomato sauce",
            "elements_hazardous": None,
        }

    def test_detail_header(self, registry, recipe):
        view = render_record(registry, "recipes", recipe)
        assert view.title == "Shakshuka"
        assert view.image_ref == "shakshuka.png"
        assert ("Category", "meal") in view.badges

    def test_sections_skip_empty_groups(self, registry, recipe):
        names = [s.name for s in render_record(registry, "recipes", recipe).sections]
        assert "Basic Info" in names
        assert "Hazards & Risks" not in names
        assert names.index("Media") < names.index("Cooking Details")

    def test_section_preview(self, registry, recipe):
        view = render_record(registry, "recipes", recipe)
        cooking = next(s for s in view.sections if s.name == "Cooking Details")
        assert cooking.item_count == 4
        assert cooking.preview == 4
        assert cooking.hidden_count == 0

    def test_wide_kinds_span_two(self, registry, recipe):
        view = render_record(registry, "recipes", recipe)
        assert view.get_field("description").layout_span == 2
        assert view.get_field("servings").layout_span == 1

    def test_ungrouped_fields_in_details(self, registry):
        scan = {"id": "s1", "name": "Apple", "scan_type": "food", "status": "completed",
                "description": "Fresh", "user_id": "u1"}
        view = render_record(registry, "scans", scan)
        details = view.sections[-1]
        assert details.name == "Details"
        assert details.preview == 6
        assert [f.key for f in details.fields] == ["name", "scan_type", "status", "description", "user_id"]

    def test_unknown_kind_renders_nothing(self, registry):
        view = render_record(registry, "spaceships", {"name": "Enterprise"})
        assert view.title == "Enterprise"
        assert view.sections == []

    def test_list_row(self, registry):
        row = render_list_row(registry, "products", {
            "id": "p1", "name_common": "Oat Milk", "brand": "Acme", "category": "dairy-free",
        })
        assert row.title == "Oat Milk"
        assert row.subtitle == "Acme"
        assert ("Brand", "Acme") in row.cells
        assert ("Category", "dairy-free") in row.cells
        assert all(label != "Name" for label, _ in row.cells)

    def test_describe_text(self):
        assert describe_text(Empty()) == "—"
        assert describe_text(BooleanTag(True)) == "Yes"
        assert describe_text(KeyValueGrid([("A", "1")], remainder=2)) == "A: 1 (+2 more)"
