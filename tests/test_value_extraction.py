"""
Unit tests for value extraction and classification.

Tests cover:
- The has_data predicate
- extract_numeric across numbers, objects and strings
- The nested-group heuristic
- Normalization into the FieldValue union
"""
import pytest

from catalog_inspector.core.value_extraction import (
    EmptyValue,
    ExtractedNumeric,
    GroupValue,
    ListValue,
    NumericValue,
    ReferenceValue,
    ScalarValue,
    canonical_key,
    extract_numeric,
    has_data,
    is_nested_group,
    is_numeric_extractable,
    normalize_label,
    normalize_children,
    normalize_value,
)


class TestHasData:
    """Tests for the shared has-data predicate."""

    @pytest.mark.parametrize("value", [None, "", "   ", "null", "NULL", [], {}])
    def test_empty_values(self, value):
        assert has_data(value) is False

    @pytest.mark.parametrize("value", [0, False, "0", "x", [0], {"a": None}])
    def test_populated_values(self, value):
        """False and zero are data."""
        assert has_data(value) is True


class TestExtractNumeric:
    """Tests for numeric coercion."""

    def test_amount_string_with_unit(self):
        """{amount: "12.5", unit: "mg"} -> 12.5 mg, no RDI."""
        result = extract_numeric({"amount": "12.5", "unit": "mg"})
        assert result == ExtractedNumeric(value=12.5, unit="mg", reference_daily_value_percent=None)

    def test_unparseable_string(self):
        """Garbage never raises; it becomes zero."""
        result = extract_numeric("not a number")
        assert result == ExtractedNumeric(value=0.0, unit="", reference_daily_value_percent=None)

    def test_bare_number(self):
        assert extract_numeric(42).value == 42.0
        assert extract_numeric(0.5).unit == ""

    def test_value_key_and_rdi(self):
        result = extract_numeric({"value": 40, "unit": "mg", "rdi_percent": 44})
        assert result.value == 40.0
        assert result.reference_daily_value_percent == 44.0

    @pytest.mark.parametrize("rdi_key", ["rdi_percent", "rdi", "dv_percent"])
    def test_rdi_aliases(self, rdi_key):
        result = extract_numeric({"amount": 1, rdi_key: "15"})
        assert result.reference_daily_value_percent == 15.0

    def test_amount_wins_over_value(self):
        """amount is read before value."""
        assert extract_numeric({"amount": 3, "value": 9}).value == 3.0

    def test_empty_amount_falls_through_to_value(self):
        result = extract_numeric({"amount": None, "value": 5, "unit": "mg"})
        assert result.value == 5.0
        assert result.unit == "mg"
        assert is_numeric_extractable({"amount": "", "value": "2.5"})

    def test_amount_with_trailing_unit(self):
        """Unit is taken from the amount string when no unit key exists."""
        result = extract_numeric({"amount": "12 mg"})
        assert result.value == 12.0
        assert result.unit == "mg"

    def test_unit_key_beats_trailing_unit(self):
        assert extract_numeric({"amount": "12 mg", "unit": "g"}).unit == "g"

    def test_numeric_string(self):
        result = extract_numeric("250 kcal")
        assert result.value == 250.0
        assert result.unit == "kcal"

    def test_unparseable_amount_defaults_to_zero(self):
        """A matching object shape with a bad amount keeps its unit but value is zero."""
        result = extract_numeric({"amount": "lots", "unit": "mg"})
        assert result.value == 0.0
        assert result.unit == "mg"

    @pytest.mark.parametrize("value", [None, True, [], {}, {"name": "x"}, "2024-01-01", float("nan")])
    def test_other_shapes_are_zero(self, value):
        assert extract_numeric(value).value == 0.0

    def test_is_numeric_extractable(self):
        assert is_numeric_extractable(5)
        assert is_numeric_extractable({"amount": "2"})
        assert is_numeric_extractable("3.5 g")
        assert not is_numeric_extractable({"amount": "n/a"})
        assert not is_numeric_extractable("abc")
        assert not is_numeric_extractable(False)


class TestNestedGroup:
    """Tests for the folder-of-folders heuristic."""

    def test_majority_objects(self):
        """Two of three children are objects."""
        assert is_nested_group({"a": {"x": 1}, "b": {"y": 2}, "c": 5}) is True

    def test_flat_numbers(self):
        assert is_nested_group({"a": 1, "b": 2}) is False

    def test_exactly_half_is_not_nested(self):
        assert is_nested_group({"a": {"x": 1}, "b": 2}) is False

    @pytest.mark.parametrize("value", [{}, [], [{"a": 1}], None, "x"])
    def test_non_mappings(self, value):
        assert is_nested_group(value) is False


class TestLabels:
    """Tests for key formatting helpers."""

    def test_normalize_label(self):
        assert normalize_label("vitamin_c") == "Vitamin C"
        assert normalize_label("signupDate") == "Signup Date"

    def test_canonical_key(self):
        assert canonical_key("Total-Carbohydrate") == "totalcarbohydrate"
        assert canonical_key("protein_g") == "proteing"
        assert canonical_key("Energy kcal") == "energykcal"


class TestNormalizeValue:
    """Tests for the tagged FieldValue union."""

    def test_empty(self):
        assert isinstance(normalize_value("null"), EmptyValue)

    def test_scalar_text_and_bool(self):
        assert normalize_value("hello") == ScalarValue("hello")
        assert normalize_value(False) == ScalarValue(False)

    def test_numeric(self):
        result = normalize_value({"amount": 40, "unit": "mg"})
        assert isinstance(result, NumericValue)
        assert result.numeric.unit == "mg"

    def test_group_of_groups(self):
        result = normalize_value({"minerals": {"iron": 2}, "vitamins": {"c": 40}})
        assert isinstance(result, GroupValue)
        assert result.is_nested
        assert isinstance(result.children["minerals"].children["iron"], NumericValue)

    def test_list(self):
        result = normalize_value(["a", 2])
        assert isinstance(result, ListValue)
        assert isinstance(result.items[1], NumericValue)

    def test_reference_list(self):
        """Lists of dicts carrying ids are references."""
        result = normalize_value([{"id": 1, "name": "Pan"}, {"id": "2"}])
        assert isinstance(result, ReferenceValue)
        assert result.ids == ["1", "2"]

    def test_group_of_bare_numbers(self):
        result = normalize_value({"calcium": 120, "iron": "2 mg", "note": "trace"})
        assert isinstance(result, GroupValue)
        assert not result.is_nested
        assert result.has_numeric

    def test_normalize_children(self):
        children = normalize_children({"iron": {"amount": None, "value": 2}, 3: "x"})
        assert isinstance(children["iron"], NumericValue)
        assert children["iron"].numeric.value == 2.0
        assert children["3"] == ScalarValue("x")
