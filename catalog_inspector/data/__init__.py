"""
Data layer: record-set aggregation and the cross-collection search cache.
"""
from catalog_inspector.data.record_aggregator import (
    CompletenessReport,
    DateRange,
    Funnel,
    FunnelStep,
    RecordAggregator,
    ScanSummary,
    TrendBucket,
    TrendPeriod,
    TrendTimeline,
    WaitlistSummary,
    build_funnel,
)
from catalog_inspector.data.search_cache import (
    SearchCache,
    SearchMatch,
)

__all__ = [
    # Aggregation
    "CompletenessReport",
    "DateRange",
    "Funnel",
    "FunnelStep",
    "RecordAggregator",
    "ScanSummary",
    "TrendBucket",
    "TrendPeriod",
    "TrendTimeline",
    "WaitlistSummary",
    "build_funnel",
    # Search
    "SearchCache",
    "SearchMatch",
]
