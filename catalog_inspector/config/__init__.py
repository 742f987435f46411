"""
Configuration for the catalog inspector: environment-driven settings and
the bundled entity schema registry (entity_schemas.yaml).
"""
from catalog_inspector.config.settings import (
    AppConfig,
    InspectorConfig,
    StorageConfig,
    BUNDLED_SCHEMA_PATH,
    get_config,
)

__all__ = [
    "AppConfig",
    "InspectorConfig",
    "StorageConfig",
    "BUNDLED_SCHEMA_PATH",
    "get_config",
]
