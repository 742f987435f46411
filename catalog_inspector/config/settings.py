"""
Configuration settings for the Catalog Inspector.

All connection details come from environment variables so the same code
runs against a local stack or the hosted backend without edits.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


BUNDLED_SCHEMA_PATH = Path(__file__).parent / "entity_schemas.yaml"


@dataclass
class StorageConfig:
    """Hosted record-storage API configuration."""
    base_url: str = field(default_factory=lambda: os.getenv("INSPECTOR_API_BASE_URL", ""))
    api_key: str = field(default_factory=lambda: os.getenv("INSPECTOR_API_KEY", ""))
    access_token: str = field(default_factory=lambda: os.getenv("INSPECTOR_ACCESS_TOKEN", ""))
    rest_path: str = field(default_factory=lambda: os.getenv("INSPECTOR_REST_PATH", "rest/v1"))
    functions_path: str = field(
        default_factory=lambda: os.getenv("INSPECTOR_FUNCTIONS_PATH", "functions/v1/server")
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("INSPECTOR_REQUEST_TIMEOUT", "30"))
    )
    fetch_limit: int = field(
        default_factory=lambda: int(os.getenv("INSPECTOR_FETCH_LIMIT", "1000"))
    )

    @property
    def rest_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.rest_path.strip('/')}"

    @property
    def functions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.functions_path.strip('/')}"

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and (self.api_key or self.access_token))


@dataclass
class InspectorConfig:
    """Rendering and aggregation knobs."""
    search_result_limit: int = 4
    trend_window: int = 8
    min_bar_percent: float = 2.0
    key_value_grid_cap: int = 9
    default_trend_period: str = field(
        default_factory=lambda: os.getenv("INSPECTOR_TREND_PERIOD", "week")
    )
    default_date_range: str = field(
        default_factory=lambda: os.getenv("INSPECTOR_DATE_RANGE", "all")
    )


@dataclass
class AppConfig:
    """Main application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    inspector: InspectorConfig = field(default_factory=InspectorConfig)

    schema_path: Optional[str] = field(
        default_factory=lambda: os.getenv("INSPECTOR_SCHEMA_PATH") or None
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @property
    def resolved_schema_path(self) -> Path:
        """Schema file in use: the override if set, else the bundled registry."""
        if self.schema_path:
            return Path(self.schema_path)
        return BUNDLED_SCHEMA_PATH


def get_config() -> AppConfig:
    """Factory function to get application configuration."""
    return AppConfig()
