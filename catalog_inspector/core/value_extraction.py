"""
Value Extraction & Classification

Pure functions that turn an arbitrary, untyped field value into a shape the
renderer can work with. Upstream records are partially populated and often
inconsistently shaped, so nothing in here raises on bad input: unparseable
numbers become zero and unknown shapes become scalars.

Key concepts:
- ExtractedNumeric: value + unit + reference-daily-value percentage
- is_nested_group: "folder of folders" heuristic for nutrition-style objects
- normalize_value: one pass producing the tagged FieldValue union the
  renderer dispatches on
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

# Keys carrying the reference-daily-value percentage, in priority order
RDI_KEYS = ("rdi_percent", "rdi", "dv_percent")

# Number with an optional trailing unit: "12", "12.5 mg", "-3", ".5g", "40 mg/day"
_NUMERIC_STRING = re.compile(
    r"^\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)\s*([A-Za-z%µμ][\w%µμ/]*)?\s*$"
)


def has_data(value: Any) -> bool:
    """
    True when a value carries something worth showing.

    None, blank strings, the literal "null" and empty collections have no
    data. False and 0 do.
    """
    if value is None:
        return False
    if isinstance(value, str):
        stripped = value.strip()
        return bool(stripped) and stripped.lower() != "null"
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True


def normalize_label(key: str) -> str:
    """snake_case / camelCase key -> "Title Case" display label."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", str(key))
    words = re.split(r"[_\-\s]+", spaced)
    return " ".join(w[:1].upper() + w[1:] for w in words if w)


def canonical_key(key: str) -> str:
    """Lowercase with underscores, spaces and hyphens stripped."""
    return re.sub(r"[_\s\-]+", "", str(key)).lower()


@dataclass
class ExtractedNumeric:
    """Canonical numeric shape; value is 0 when nothing could be parsed."""
    value: float = 0.0
    unit: str = ""
    reference_daily_value_percent: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "unit": self.unit,
            "reference_daily_value_percent": self.reference_daily_value_percent,
        }


def _parse_number(raw: Any) -> Optional[Tuple[float, str]]:
    """(number, trailing unit) from a number or numeric string, else None."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return None
        return float(raw), ""
    if isinstance(raw, str):
        match = _NUMERIC_STRING.match(raw)
        if match:
            return float(match.group(1)), match.group(2) or ""
    return None


def _is_numeric_leaf(value: Any) -> bool:
    return isinstance(value, dict) and ("amount" in value or "value" in value)


def _leaf_amount(value: Dict[str, Any]) -> Any:
    """The amount of a numeric leaf; "amount" wins only when it holds data."""
    amount = value.get("amount")
    return amount if has_data(amount) else value.get("value")


def extract_numeric(value: Any) -> ExtractedNumeric:
    """
    Coerce a number, a {amount|value, unit, rdi_percent} object, or a numeric
    string into an ExtractedNumeric. First matching shape wins; never raises.
    """
    # 1. already a number
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = _parse_number(value)
        return ExtractedNumeric(value=parsed[0] if parsed else 0.0)

    # 2. object carrying amount / value
    if _is_numeric_leaf(value):
        raw = _leaf_amount(value)
        parsed = _parse_number(raw)
        unit = value.get("unit")
        unit = str(unit).strip() if has_data(unit) else (parsed[1] if parsed else "")

        rdi = None
        for key in RDI_KEYS:
            rdi_parsed = _parse_number(value.get(key))
            if rdi_parsed is not None:
                rdi = rdi_parsed[0]
                break

        return ExtractedNumeric(
            value=parsed[0] if parsed else 0.0,
            unit=unit,
            reference_daily_value_percent=rdi,
        )

    # 3. numeric string
    parsed = _parse_number(value) if isinstance(value, str) else None
    if parsed is not None:
        return ExtractedNumeric(value=parsed[0], unit=parsed[1])

    return ExtractedNumeric()


def is_numeric_extractable(value: Any) -> bool:
    """True when extract_numeric would find a real number (not the zero default)."""
    if _is_numeric_leaf(value):
        raw = _leaf_amount(value)
        return _parse_number(raw) is not None
    return _parse_number(value) is not None


def is_nested_group(value: Any) -> bool:
    """
    Heuristic: a non-empty mapping where more than half of the immediate
    children are themselves mappings.

    The same field key can hold a flat bag of numbers for one entity kind and
    a bag of bags for another, so this is sniffed at runtime.
    """
    if not isinstance(value, dict) or not value:
        return False
    nested = sum(1 for child in value.values() if isinstance(child, dict))
    return nested > len(value) / 2


# ----------------------------------------------------------------------
# Tagged FieldValue union
# ----------------------------------------------------------------------

@dataclass
class EmptyValue:
    """No data."""


@dataclass
class ScalarValue:
    value: Any


@dataclass
class NumericValue:
    numeric: ExtractedNumeric
    raw: Any = None


@dataclass
class GroupValue:
    children: Dict[str, "FieldValue"] = field(default_factory=dict)

    @property
    def is_nested(self) -> bool:
        return sum(1 for c in self.children.values() if isinstance(c, GroupValue)) > len(self.children) / 2

    @property
    def has_numeric(self) -> bool:
        return any(isinstance(c, NumericValue) for c in self.children.values())


@dataclass
class ListValue:
    items: List["FieldValue"] = field(default_factory=list)


@dataclass
class ReferenceValue:
    """A list of embedded entity references (dicts carrying an id)."""
    ids: List[str] = field(default_factory=list)
    records: List[Dict[str, Any]] = field(default_factory=list)


FieldValue = Union[EmptyValue, ScalarValue, NumericValue, GroupValue, ListValue, ReferenceValue]


def normalize_children(value: Dict[Any, Any]) -> Dict[str, FieldValue]:
    """Normalize each child of a mapping, keyed by its string key."""
    return {str(k): normalize_value(v) for k, v in value.items()}


def normalize_value(value: Any) -> FieldValue:
    """Single normalization pass from an untyped value to a FieldValue."""
    if not has_data(value):
        return EmptyValue()

    if isinstance(value, bool):
        return ScalarValue(value)

    if isinstance(value, (int, float)):
        return NumericValue(extract_numeric(value), raw=value)

    if isinstance(value, str):
        if _parse_number(value) is not None:
            return NumericValue(extract_numeric(value), raw=value)
        return ScalarValue(value)

    if isinstance(value, dict):
        if is_numeric_extractable(value):
            return NumericValue(extract_numeric(value), raw=value)
        return GroupValue(normalize_children(value))

    if isinstance(value, (list, tuple)):
        if all(isinstance(item, dict) and has_data(item.get("id")) for item in value):
            return ReferenceValue(ids=[str(item["id"]) for item in value], records=list(value))
        return ListValue([normalize_value(item) for item in value])

    return ScalarValue(value)
