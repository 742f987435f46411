"""
Generic Field Renderer

Turns (FieldSpec, value) into a view-agnostic VisualDescription: a tagged
description of what to show, not a widget. No per-entity-kind code lives
here; everything is driven by the schema registry and value extraction.

Selection order for a single field:
    1. no data (None, blank, "null", empty)        -> Empty
    2. linked-entity-set                           -> LinkedEntityChips
    3. boolean                                     -> BooleanTag
    4. timestamp kind or well-known date key       -> Timestamp
    5. tag, or enum / scalar flagged badge         -> Badge
    6. structured-object on a nutrition-like key:
         a. macro nutrition                        -> MacroSummaryCards
         b. any child is a group                   -> GroupedProgressBarList
         c. any child is numeric                   -> ProgressBarList
         d. otherwise                              -> KeyValueGrid (capped)
    7. structured-list                             -> BulletList
    8. anything else                               -> Text

Zero-valued numeric entries are always dropped from bar lists.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from catalog_inspector.core.link_resolver import ResolvedReference, coerce_ids
from catalog_inspector.core.schema_registry import FieldSpec, SchemaRegistry, ValueKind, View
from catalog_inspector.core.value_extraction import (
    EmptyValue,
    ExtractedNumeric,
    FieldValue,
    GroupValue,
    NumericValue,
    canonical_key,
    has_data,
    is_nested_group,
    normalize_children,
    normalize_label,
    normalize_value,
)

logger = logging.getLogger(__name__)

MIN_BAR_PERCENT = 2.0
KEY_VALUE_GRID_CAP = 9
SECTION_PREVIEW = 4
DETAILS_PREVIEW = 6
DETAILS_SECTION = "Details"

DATE_FIELD_KEYS = {
    "created_at", "updated_at", "scanned_at", "ai_enriched_at",
    "signupDate", "lastActiveDate", "lastReferralDate", "lastEmailSent",
}

NUTRITION_FIELD_KEYS = {
    "elements_beneficial", "elements_hazardous",
    "nutrition_per_100g", "nutrition_per_serving",
    "nutrients_detected", "macro_nutrition",
    "pollutants_detected", "mineral_impact",
}
MACRO_FIELD_KEY = "macro_nutrition"

# bucket -> (label, canonical aliases, default unit)
MACRO_BUCKETS: List[Tuple[str, str, Set[str], str]] = [
    ("energy", "Calories", {"calories", "calorie", "energy", "kcal", "energykcal"}, "kcal"),
    ("protein", "Protein", {"protein", "proteins", "proteing"}, "g"),
    ("carbohydrate", "Carbs", {"carbs", "carb", "carbohydrate", "carbohydrates",
                               "carbohydratesg", "carbsg", "totalcarbohydrate"}, "g"),
    ("fat", "Fat", {"fat", "fats", "fatg", "totalfat"}, "g"),
]

HEADER_BADGE_KEYS = ("category", "type", "brand", "scan_type", "status")

_WIDE_KINDS = {ValueKind.LONG_TEXT, ValueKind.STRUCTURED_OBJECT, ValueKind.STRUCTURED_LIST}


# ----------------------------------------------------------------------
# Visual descriptions
# ----------------------------------------------------------------------

@dataclass
class VisualDescription:
    """Base of every rendered variant."""

    @property
    def variant(self) -> str:
        return type(self).__name__


@dataclass
class Empty(VisualDescription):
    placeholder: str = "—"


@dataclass
class Text(VisualDescription):
    text: str = ""


@dataclass
class Badge(VisualDescription):
    values: List[str] = field(default_factory=list)


@dataclass
class BooleanTag(VisualDescription):
    value: bool = False

    @property
    def label(self) -> str:
        return "Yes" if self.value else "No"


@dataclass
class Timestamp(VisualDescription):
    raw: Any = None
    formatted: str = ""


@dataclass
class ProgressBarEntry:
    key: str
    label: str
    value: float
    unit: str = ""
    rdi_percent: Optional[float] = None
    width_percent: float = MIN_BAR_PERCENT

    @property
    def bar_label(self) -> str:
        return format_bar_label(self)


@dataclass
class ProgressBarList(VisualDescription):
    entries: List[ProgressBarEntry] = field(default_factory=list)


@dataclass
class ProgressGroup:
    key: str
    label: str
    entries: List[ProgressBarEntry] = field(default_factory=list)
    expanded: bool = True


@dataclass
class GroupedProgressBarList(VisualDescription):
    groups: List[ProgressGroup] = field(default_factory=list)


@dataclass
class MacroCard:
    bucket: str
    label: str
    value: float
    unit: str


@dataclass
class MacroSummaryCards(VisualDescription):
    cards: List[MacroCard] = field(default_factory=list)
    remainder: Optional[ProgressBarList] = None


@dataclass
class LinkedEntityChips(VisualDescription):
    linked_kind: Optional[str] = None
    references: List[ResolvedReference] = field(default_factory=list)
    loading: bool = False


@dataclass
class KeyValueGrid(VisualDescription):
    items: List[Tuple[str, str]] = field(default_factory=list)
    remainder: int = 0


@dataclass
class BulletList(VisualDescription):
    items: List[str] = field(default_factory=list)


# ----------------------------------------------------------------------
# Context
# ----------------------------------------------------------------------

def default_date_formatter(value: Any) -> str:
    """ISO timestamp -> "Mar 04, 2025 14:05"; anything unparseable is echoed."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return str(value)
    return parsed.strftime("%b %d, %Y %H:%M")


@dataclass
class RenderContext:
    """
    Inputs the renderer needs beyond the value itself.

    pending_links holds linked field keys whose lookup is still in flight.
    """
    resolved_links: Dict[str, List[ResolvedReference]] = field(default_factory=dict)
    date_formatter: Callable[[Any], str] = default_date_formatter
    pending_links: Set[str] = field(default_factory=set)
    min_bar_percent: float = MIN_BAR_PERCENT
    key_value_grid_cap: int = KEY_VALUE_GRID_CAP


# ----------------------------------------------------------------------
# Formatting helpers
# ----------------------------------------------------------------------

def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def format_bar_label(entry: ProgressBarEntry) -> str:
    """"40 mg (44% RDI)" style label for one bar."""
    text = format_number(entry.value)
    if entry.unit:
        text = f"{text} {entry.unit}"
    if entry.rdi_percent is not None:
        text = f"{text} ({format_number(entry.rdi_percent)}% RDI)"
    return text


def _coerce_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "y")
    return bool(value)


def _list_item_text(item: Any) -> str:
    if isinstance(item, dict):
        for key in ("name", "name_common", "title", "text", "label", "step"):
            if has_data(item.get(key)):
                return str(item[key])
    return _coerce_text(item)


def build_bar_entries(children: Dict[str, Any], min_bar_percent: float = MIN_BAR_PERCENT) -> List[ProgressBarEntry]:
    """
    Numeric children -> bar entries, zero values dropped.

    Width is the RDI percentage when one is known, otherwise the value
    relative to the largest value in the same list.
    """
    extracted: List[Tuple[str, ExtractedNumeric]] = []
    for key, child in normalize_children(children).items():
        if isinstance(child, NumericValue) and child.numeric.value != 0:
            extracted.append((key, child.numeric))

    if not extracted:
        return []

    max_value = max(abs(n.value) for _, n in extracted) or 1.0
    entries = []
    for key, numeric in extracted:
        rdi = numeric.reference_daily_value_percent
        if rdi is not None:
            width = min(100.0, max(min_bar_percent, rdi))
        else:
            width = min(100.0, max(min_bar_percent, abs(numeric.value) / max_value * 100))
        entries.append(ProgressBarEntry(
            key=key,
            label=normalize_label(key),
            value=numeric.value,
            unit=numeric.unit,
            rdi_percent=rdi,
            width_percent=round(width, 1),
        ))
    return entries


def _is_group_child(raw: Any, child: FieldValue) -> bool:
    if not isinstance(child, GroupValue):
        return False
    # a bag of bare numbers (e.g. {"calcium": 120, "iron": 2}) also reads as a group
    return is_nested_group(raw) or child.has_numeric


def _render_macros(value: Dict[str, Any], children: Dict[str, FieldValue], context: RenderContext) -> MacroSummaryCards:
    cards: List[MacroCard] = []
    filled: Set[str] = set()
    leftovers: Dict[str, Any] = {}

    for key, child in value.items():
        normalized = children[str(key)]
        ckey = canonical_key(key)
        bucket = next((b for b in MACRO_BUCKETS if ckey in b[2]), None)
        if bucket is None:
            leftovers[key] = child
            continue
        name, label, _, default_unit = bucket
        if name in filled or not isinstance(normalized, NumericValue) or normalized.numeric.value == 0:
            continue
        numeric = normalized.numeric
        filled.add(name)
        cards.append(MacroCard(bucket=name, label=label, value=numeric.value, unit=numeric.unit or default_unit))

    order = [b[0] for b in MACRO_BUCKETS]
    cards.sort(key=lambda c: order.index(c.bucket))
    entries = build_bar_entries(leftovers, context.min_bar_percent)
    return MacroSummaryCards(cards=cards, remainder=ProgressBarList(entries) if entries else None)


def _render_grouped(value: Dict[str, Any], children: Dict[str, FieldValue], context: RenderContext) -> GroupedProgressBarList:
    groups: List[ProgressGroup] = []
    loose: Dict[str, Any] = {}
    for key, child in value.items():
        if _is_group_child(child, children[str(key)]):
            entries = build_bar_entries(child, context.min_bar_percent)
            if entries:
                groups.append(ProgressGroup(key=str(key), label=normalize_label(key), entries=entries))
        else:
            loose[key] = child

    other = build_bar_entries(loose, context.min_bar_percent)
    if other:
        groups.append(ProgressGroup(key="other", label="Other", entries=other))
    return GroupedProgressBarList(groups=groups)


def _render_key_values(value: Dict[str, Any], context: RenderContext) -> KeyValueGrid:
    populated = [(normalize_label(k), _coerce_text(v)) for k, v in value.items() if has_data(v)]
    cap = context.key_value_grid_cap
    return KeyValueGrid(items=populated[:cap], remainder=max(0, len(populated) - cap))


def _render_nutrition(spec: FieldSpec, value: Dict[str, Any], context: RenderContext) -> VisualDescription:
    children = normalize_children(value)
    if spec.key == MACRO_FIELD_KEY:
        return _render_macros(value, children, context)
    if any(_is_group_child(raw, children[str(key)]) for key, raw in value.items()):
        return _render_grouped(value, children, context)
    if any(isinstance(child, NumericValue) for child in children.values()):
        return ProgressBarList(build_bar_entries(value, context.min_bar_percent))
    return _render_key_values(value, context)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def render_field(spec: FieldSpec, value: Any, context: Optional[RenderContext] = None) -> VisualDescription:
    """Pick and build the visual description for one field value."""
    context = context or RenderContext()

    normalized = normalize_value(value)
    if isinstance(normalized, EmptyValue):
        return Empty()

    kind = spec.value_kind

    if kind == ValueKind.LINKED_ENTITY_SET:
        return LinkedEntityChips(
            linked_kind=spec.linked_entity_kind,
            references=list(context.resolved_links.get(spec.key, [])),
            loading=spec.key in context.pending_links,
        )

    if kind == ValueKind.BOOLEAN:
        return BooleanTag(value=_coerce_bool(value))

    if kind == ValueKind.TIMESTAMP or spec.key in DATE_FIELD_KEYS:
        return Timestamp(raw=value, formatted=context.date_formatter(value))

    if kind == ValueKind.TAG or (spec.badge and not isinstance(value, dict)):
        values = value if isinstance(value, list) else [value]
        return Badge(values=[_coerce_text(v) for v in values if has_data(v)])

    if kind == ValueKind.STRUCTURED_OBJECT and spec.key in NUTRITION_FIELD_KEYS and isinstance(normalized, GroupValue):
        return _render_nutrition(spec, value, context)

    if kind == ValueKind.STRUCTURED_LIST:
        items = value if isinstance(value, (list, tuple)) else [value]
        return BulletList(items=[_list_item_text(i) for i in items if has_data(i)])

    return Text(text=_coerce_text(value))


def describe_text(description: VisualDescription) -> str:
    """Flatten a description into one line of plain text (list cells, CLI)."""
    if isinstance(description, Empty):
        return description.placeholder
    if isinstance(description, Text):
        return description.text
    if isinstance(description, Badge):
        return ", ".join(description.values)
    if isinstance(description, BooleanTag):
        return description.label
    if isinstance(description, Timestamp):
        return description.formatted
    if isinstance(description, LinkedEntityChips):
        if description.loading:
            return "Loading…"
        return ", ".join(ref.display_name for ref in description.references)
    if isinstance(description, BulletList):
        return "; ".join(description.items)
    if isinstance(description, KeyValueGrid):
        text = ", ".join(f"{k}: {v}" for k, v in description.items)
        return f"{text} (+{description.remainder} more)" if description.remainder else text
    if isinstance(description, ProgressBarList):
        return ", ".join(f"{e.label} {e.bar_label}" for e in description.entries)
    if isinstance(description, GroupedProgressBarList):
        return "; ".join(
            f"{g.label}: " + ", ".join(f"{e.label} {e.bar_label}" for e in g.entries)
            for g in description.groups
        )
    if isinstance(description, MacroSummaryCards):
        parts = [f"{c.label} {format_number(c.value)} {c.unit}".strip() for c in description.cards]
        if description.remainder:
            parts.append(describe_text(description.remainder))
        return ", ".join(parts)
    return ""


# ----------------------------------------------------------------------
# Record-level views
# ----------------------------------------------------------------------

@dataclass
class RenderedField:
    key: str
    label: str
    description: VisualDescription
    layout_span: int = 1


@dataclass
class DetailSection:
    name: str
    fields: List[RenderedField] = field(default_factory=list)
    preview: int = SECTION_PREVIEW
    expanded: bool = False

    @property
    def item_count(self) -> int:
        return len(self.fields)

    @property
    def visible_fields(self) -> List[RenderedField]:
        return self.fields if self.expanded else self.fields[:self.preview]

    @property
    def hidden_count(self) -> int:
        return 0 if self.expanded else max(0, len(self.fields) - self.preview)


@dataclass
class DetailView:
    entity_kind: str
    title: str
    subtitle: Optional[str] = None
    image_ref: Optional[str] = None
    badges: List[Tuple[str, str]] = field(default_factory=list)
    sections: List[DetailSection] = field(default_factory=list)

    def get_field(self, key: str) -> Optional[RenderedField]:
        for section in self.sections:
            for rendered in section.fields:
                if rendered.key == key:
                    return rendered
        return None


@dataclass
class ListRow:
    entity_kind: str
    record_id: Optional[str]
    title: str
    subtitle: Optional[str] = None
    image_ref: Optional[str] = None
    cells: List[Tuple[str, str]] = field(default_factory=list)


def _field_has_data(spec: FieldSpec, value: Any) -> bool:
    if spec.value_kind == ValueKind.LINKED_ENTITY_SET:
        return bool(coerce_ids(value))
    return has_data(value)


def _render_one(spec: FieldSpec, record: Dict[str, Any], context: RenderContext) -> RenderedField:
    span = 2 if spec.value_kind in _WIDE_KINDS else spec.layout_span
    return RenderedField(
        key=spec.key,
        label=spec.label,
        description=render_field(spec, record.get(spec.key), context),
        layout_span=span,
    )


def render_record(
    registry: SchemaRegistry,
    entity_kind: str,
    record: Dict[str, Any],
    context: Optional[RenderContext] = None,
) -> DetailView:
    """
    Build the detail view for one record.

    Grouped fields become one section per group in declaration order;
    ungrouped fields land in a trailing "Details" section. Sections with
    nothing populated are dropped.
    """
    context = context or RenderContext()
    view = DetailView(
        entity_kind=entity_kind,
        title=registry.get_display_name(entity_kind, record),
        subtitle=registry.get_secondary_label(entity_kind, record),
        image_ref=registry.get_image_ref(entity_kind, record),
    )
    for key in HEADER_BADGE_KEYS:
        value = record.get(key)
        if has_data(value) and not isinstance(value, (dict, list)):
            view.badges.append((normalize_label(key), str(value)))

    fields = [
        spec for spec in registry.get_fields_for_view(entity_kind, View.DETAIL)
        if _field_has_data(spec, record.get(spec.key))
    ]
    if not fields:
        logger.debug(f"Nothing to render for {entity_kind} record '{view.title}'")
        return view

    for group in registry.get_sections(entity_kind):
        rendered = [_render_one(spec, record, context) for spec in fields if spec.group_name == group]
        if rendered:
            view.sections.append(DetailSection(name=group, fields=rendered))

    ungrouped = [_render_one(spec, record, context) for spec in fields if not spec.group_name]
    if ungrouped:
        view.sections.append(DetailSection(name=DETAILS_SECTION, fields=ungrouped, preview=DETAILS_PREVIEW))
    return view


def render_list_row(registry: SchemaRegistry, entity_kind: str, record: Dict[str, Any]) -> ListRow:
    """List-view cells: every list field except the name and image columns."""
    schema = registry.get_schema(entity_kind)
    name_field = schema.name_field if schema else None
    context = RenderContext()
    cells = []
    for spec in registry.get_fields_for_view(entity_kind, View.LIST):
        if spec.key == name_field or spec.value_kind == ValueKind.IMAGE_REFERENCE:
            continue
        cells.append((spec.label, describe_text(render_field(spec, record.get(spec.key), context))))
    return ListRow(
        entity_kind=entity_kind,
        record_id=registry.get_record_id(entity_kind, record),
        title=registry.get_display_name(entity_kind, record),
        subtitle=registry.get_secondary_label(entity_kind, record),
        image_ref=registry.get_image_ref(entity_kind, record),
        cells=cells,
    )
