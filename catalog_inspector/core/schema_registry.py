"""
Entity Schema Registry

Declarative description of which fields exist per entity kind, how their
values are typed, and in which view (list / detail / edit) each one appears.
The tables live in config/entity_schemas.yaml and are loaded once at startup;
nothing here is mutated at runtime.

Startup invariants (checked on load, raising SchemaValidationError):
- field keys are unique within an entity kind
- every linked-entity-set field names a target kind
- every target kind is itself a registered entity kind

Usage:
    from catalog_inspector.core.schema_registry import get_schema_registry, View

    registry = get_schema_registry()
    for spec in registry.get_fields_for_view("recipes", View.DETAIL):
        print(spec.key, spec.value_kind.value)
"""
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from catalog_inspector.config.settings import BUNDLED_SCHEMA_PATH, get_config
from catalog_inspector.core.error_taxonomy import SchemaValidationError
from catalog_inspector.core.value_extraction import has_data, normalize_label

logger = logging.getLogger(__name__)

# Fallback order when a record has no value in its kind's declared name field
DISPLAY_NAME_FALLBACKS = ("name_common", "name", "email", "title")
UNNAMED = "Unnamed"


class ValueKind(str, Enum):
    """Declared type of a field's value."""
    TEXT = "text"
    LONG_TEXT = "long-text"
    NUMBER = "number"
    ENUM = "enum"
    BOOLEAN = "boolean"
    IMMUTABLE_TEXT = "immutable-text"
    TAG = "tag"
    TIMESTAMP = "timestamp"
    STRUCTURED_OBJECT = "structured-object"
    STRUCTURED_LIST = "structured-list"
    IMAGE_REFERENCE = "image-reference"
    VIDEO_REFERENCE = "video-reference"
    LINKED_ENTITY_SET = "linked-entity-set"


class View(str, Enum):
    """Views a field can be shown in."""
    LIST = "list"
    DETAIL = "detail"
    EDIT = "edit"


class FieldSpec(BaseModel):
    """One declared field of one entity kind."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    label: str = ""
    value_kind: ValueKind = Field(ValueKind.TEXT, alias="kind")
    visible_in: Tuple[View, ...] = Field((View.DETAIL, View.EDIT), alias="views")
    group_name: Optional[str] = Field(None, alias="group")
    enum_values: Tuple[str, ...] = ()
    layout_span: int = Field(1, alias="span", ge=1, le=2)
    linked_entity_kind: Optional[str] = Field(None, alias="linked_kind")
    linked_category: Optional[str] = None
    placeholder: Optional[str] = None
    required: bool = False
    badge: bool = False

    @model_validator(mode="before")
    @classmethod
    def default_label(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("label") and data.get("key"):
            data = dict(data)
            data["label"] = normalize_label(data["key"])
        return data

    @model_validator(mode="after")
    def linked_fields_name_a_target(self) -> "FieldSpec":
        if self.value_kind == ValueKind.LINKED_ENTITY_SET and not self.linked_entity_kind:
            raise ValueError(f"linked-entity-set field '{self.key}' must declare linked_kind")
        return self

    def is_visible_in(self, view: Union[View, str]) -> bool:
        return View(view) in self.visible_in


class FunnelStageSpec(BaseModel):
    """One named stage of the signup funnel plus its estimate fallback."""
    model_config = ConfigDict(frozen=True)

    event: str
    label: str
    basis: str = "signups"
    ratio: float = 1.0


class EntitySchema(BaseModel):
    """Named collection of FieldSpecs plus display metadata."""
    model_config = ConfigDict(frozen=True)

    kind: str
    label: str
    table: str
    id_field: str = "id"
    name_field: str = "name"
    secondary_field: Optional[str] = None
    field_specs: Tuple[FieldSpec, ...] = ()
    core_fields: Tuple[str, ...] = ()
    enrichment_fields: Tuple[str, ...] = ()

    @field_validator("field_specs")
    @classmethod
    def unique_keys(cls, fields: Tuple[FieldSpec, ...]) -> Tuple[FieldSpec, ...]:
        seen = set()
        for spec in fields:
            if spec.key in seen:
                raise ValueError(f"duplicate field key '{spec.key}'")
            seen.add(spec.key)
        return fields

    def get_field(self, key: str) -> Optional[FieldSpec]:
        for spec in self.field_specs:
            if spec.key == key:
                return spec
        return None


class SchemaRegistry:
    """
    Read-only registry of entity schemas keyed by entity kind.

    Lookups for an unknown entity kind return empty results rather than
    raising: the set of kinds is small and closed, so callers treat "no
    fields" as "nothing to render".
    """

    def __init__(
        self,
        schemas: Dict[str, EntitySchema],
        funnel_stages: List[FunnelStageSpec] = None,
        default_core_fields: Tuple[str, ...] = ("name", "description", "image_url"),
    ):
        self._schemas = dict(schemas)
        self._funnel_stages = list(funnel_stages or [])
        self._default_core_fields = tuple(default_core_fields)
        self._validate_links()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaRegistry":
        """Build a registry from the parsed YAML document."""
        entities = data.get("entities") or {}
        if not entities:
            raise SchemaValidationError("Schema document declares no entities")

        schemas: Dict[str, EntitySchema] = {}
        for kind, raw in entities.items():
            raw = raw or {}
            scoring = raw.get("scoring") or {}
            try:
                schemas[kind] = EntitySchema(
                    kind=kind,
                    label=raw.get("label") or normalize_label(kind),
                    table=raw.get("table") or kind,
                    id_field=raw.get("id_field", "id"),
                    name_field=raw.get("name_field", "name"),
                    secondary_field=raw.get("secondary_field"),
                    field_specs=tuple(FieldSpec(**f) for f in raw.get("fields") or []),
                    core_fields=tuple(scoring.get("core") or ()),
                    enrichment_fields=tuple(scoring.get("enrichment") or ()),
                )
            except ValidationError as e:
                raise SchemaValidationError(
                    f"Invalid schema for entity kind '{kind}': {e}",
                    context={"entity_kind": kind},
                ) from e

        funnel = (data.get("funnel") or {}).get("stages") or []
        try:
            stages = [FunnelStageSpec(**s) for s in funnel]
        except ValidationError as e:
            raise SchemaValidationError(f"Invalid funnel stage: {e}") from e

        defaults = data.get("defaults") or {}
        return cls(
            schemas,
            funnel_stages=stages,
            default_core_fields=tuple(defaults.get("core_fields") or ("name", "description", "image_url")),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path] = None) -> "SchemaRegistry":
        """Load and validate the registry from a YAML file."""
        yaml_path = Path(path) if path else BUNDLED_SCHEMA_PATH
        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise SchemaValidationError(
                f"Cannot read schema file {yaml_path}: {e}",
                context={"path": str(yaml_path)},
            ) from e
        except yaml.YAMLError as e:
            raise SchemaValidationError(
                f"Schema file {yaml_path} is not valid YAML: {e}",
                context={"path": str(yaml_path)},
            ) from e

        registry = cls.from_dict(data)
        logger.info(f"Loaded {len(registry.entity_kinds())} entity schemas from {yaml_path}")
        return registry

    def _validate_links(self):
        for kind, schema in self._schemas.items():
            for spec in schema.field_specs:
                target = spec.linked_entity_kind
                if spec.value_kind == ValueKind.LINKED_ENTITY_SET and target not in self._schemas:
                    raise SchemaValidationError(
                        f"Field '{kind}.{spec.key}' links to unknown entity kind '{target}'",
                        context={"entity_kind": kind, "field": spec.key, "target": target},
                    )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def entity_kinds(self) -> List[str]:
        return list(self._schemas.keys())

    def get_schema(self, entity_kind: str) -> Optional[EntitySchema]:
        return self._schemas.get(entity_kind)

    def get_fields_for_view(self, entity_kind: str, view: Union[View, str]) -> List[FieldSpec]:
        """Ordered fields of a kind visible in a view; empty for unknown kinds."""
        schema = self._schemas.get(entity_kind)
        if schema is None:
            logger.debug(f"No schema for entity kind '{entity_kind}'")
            return []
        view = View(view)
        return [spec for spec in schema.field_specs if view in spec.visible_in]

    def get_sections(self, entity_kind: str) -> List[str]:
        """Detail-view group names in the order they are first declared."""
        sections: List[str] = []
        for spec in self.get_fields_for_view(entity_kind, View.DETAIL):
            if spec.group_name and spec.group_name not in sections:
                sections.append(spec.group_name)
        return sections

    def get_linked_fields(self, entity_kind: str) -> List[FieldSpec]:
        schema = self._schemas.get(entity_kind)
        if schema is None:
            return []
        return [spec for spec in schema.field_specs if spec.value_kind == ValueKind.LINKED_ENTITY_SET]

    def table_for(self, entity_kind: str) -> Optional[str]:
        schema = self._schemas.get(entity_kind)
        return schema.table if schema else None

    def id_field_for(self, entity_kind: str) -> str:
        schema = self._schemas.get(entity_kind)
        return schema.id_field if schema else "id"

    def core_fields(self, entity_kind: str) -> List[str]:
        schema = self._schemas.get(entity_kind)
        if schema is None or not schema.core_fields:
            return list(self._default_core_fields)
        return list(schema.core_fields)

    def enrichment_fields(self, entity_kind: str) -> List[str]:
        schema = self._schemas.get(entity_kind)
        return list(schema.enrichment_fields) if schema else []

    @property
    def funnel_stages(self) -> List[FunnelStageSpec]:
        return list(self._funnel_stages)

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------

    def get_display_name(self, entity_kind: str, record: Dict[str, Any]) -> str:
        """Human-readable name for a record, falling back across common name keys."""
        schema = self._schemas.get(entity_kind)
        candidates = ((schema.name_field,) if schema else ()) + DISPLAY_NAME_FALLBACKS
        for key in candidates:
            value = record.get(key)
            if has_data(value):
                return str(value).strip()
        return UNNAMED

    def get_secondary_label(self, entity_kind: str, record: Dict[str, Any]) -> Optional[str]:
        schema = self._schemas.get(entity_kind)
        if schema is None or not schema.secondary_field:
            return None
        value = record.get(schema.secondary_field)
        if not has_data(value):
            return None
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)

    def get_record_id(self, entity_kind: str, record: Dict[str, Any]) -> Optional[str]:
        value = record.get(self.id_field_for(entity_kind))
        return str(value) if has_data(value) else None

    def get_image_ref(self, entity_kind: str, record: Dict[str, Any]) -> Optional[str]:
        """
        First populated image for a record.

        Declared image-reference fields win; otherwise image_url / avatar_url,
        and for recipes the legacy images list or image key.
        """
        schema = self._schemas.get(entity_kind)
        if schema is not None:
            for spec in schema.field_specs:
                if spec.value_kind == ValueKind.IMAGE_REFERENCE and has_data(record.get(spec.key)):
                    return str(record[spec.key])

        for key in ("image_url", "avatar_url"):
            if has_data(record.get(key)):
                return str(record[key])

        if entity_kind == "recipes":
            images = record.get("images")
            if isinstance(images, list) and images and has_data(images[0]):
                return str(images[0])
            if isinstance(images, str) and has_data(images):
                return images
            if has_data(record.get("image")):
                return str(record["image"])
        return None


# Singleton instance
_registry: Optional[SchemaRegistry] = None


def get_schema_registry() -> SchemaRegistry:
    """Get the singleton schema registry instance."""
    global _registry
    if _registry is None:
        _registry = SchemaRegistry.from_yaml(get_config().resolved_schema_path)
    return _registry


def reset_schema_registry():
    """Reset the singleton (for testing or after changing INSPECTOR_SCHEMA_PATH)."""
    global _registry
    _registry = None
