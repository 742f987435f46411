"""
Record Set Aggregator

Summary metrics over an already-fetched record collection:

1. Completeness / enrichment scoring per entity kind
   - complete: every "core" field has data
   - enriched: at least half (rounded up, minimum 1) of the enrichment fields
     have data
2. Funnel math over named stage counts, with an explicitly flagged estimate
   fallback when measured event counts are missing
3. Date-bucketed trend lines (day / ISO week / month) built with pandas

Date-range filtering applies to summary counts only. Trend timelines always
use the full history so their shape does not move with the range control.

All timestamps are compared as naive UTC.
"""
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from catalog_inspector.core.schema_registry import SchemaRegistry, get_schema_registry
from catalog_inspector.core.value_extraction import extract_numeric, has_data

logger = logging.getLogger(__name__)

# First populated field wins
TIMESTAMP_FIELDS = ("scanned_at", "signupDate", "created_at")

TREND_WINDOW = 8
MIN_BAR_PERCENT = 2.0
MIN_FUNNEL_WIDTH = 8.0
TOP_REFERRERS = 5


class DateRange(Enum):
    """Summary-count window, relative to now."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"

    def cutoff(self, now: datetime) -> Optional[datetime]:
        if self == DateRange.DAY:
            return now - timedelta(days=1)
        if self == DateRange.WEEK:
            return now - timedelta(days=7)
        if self == DateRange.MONTH:
            return (pd.Timestamp(now) - pd.DateOffset(months=1)).to_pydatetime()
        if self == DateRange.YEAR:
            return (pd.Timestamp(now) - pd.DateOffset(years=1)).to_pydatetime()
        return None


class TrendPeriod(Enum):
    """Trend bucket size."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def percent(part: float, whole: float) -> float:
    """part / whole as a percentage with one decimal; 0.0 for an empty whole."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def growth_percent(current: int, previous: int) -> float:
    """Change vs the previous bucket; an empty previous bucket reads as 100% or 0%."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO string / datetime -> naive UTC datetime, None when unparseable."""
    if not has_data(value) or not isinstance(value, (str, datetime)):
        return None
    ts = pd.to_datetime(value, utc=True, errors="coerce")
    if pd.isna(ts):
        logger.warning(f"Unparseable timestamp {value!r}; record left out of dated metrics")
        return None
    return ts.tz_convert(None).to_pydatetime()


def record_timestamp(record: Dict[str, Any]) -> Optional[datetime]:
    for key in TIMESTAMP_FIELDS:
        if has_data(record.get(key)):
            return parse_timestamp(record[key])
    return None


def filter_by_date_range(
    records: List[Dict[str, Any]],
    date_range: DateRange,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Records whose timestamp falls inside the range; undated records only for ALL."""
    cutoff = date_range.cutoff(now or utc_now())
    if cutoff is None:
        return list(records)
    kept = []
    for record in records:
        ts = record_timestamp(record)
        if ts is not None and ts >= cutoff:
            kept.append(record)
    return kept


def bucket_keys(stamps: List[datetime], period: TrendPeriod) -> pd.Series:
    """Truncate timestamps to their bucket and return the bucket keys."""
    series = pd.Series(pd.to_datetime(stamps))
    if period == TrendPeriod.DAY:
        return series.dt.normalize().dt.strftime("%Y-%m-%d")
    if period == TrendPeriod.WEEK:
        monday = series - pd.to_timedelta(series.dt.weekday, unit="D")
        return monday.dt.normalize().dt.strftime("%Y-%m-%d")
    return series.dt.to_period("M").dt.to_timestamp().dt.strftime("%Y-%m")


def bucket_key(stamp: datetime, period: TrendPeriod) -> str:
    return bucket_keys([stamp], period).iloc[0]


def _previous_period(now: datetime, period: TrendPeriod) -> datetime:
    if period == TrendPeriod.DAY:
        return now - timedelta(days=1)
    if period == TrendPeriod.WEEK:
        return now - timedelta(days=7)
    return (pd.Timestamp(now) - pd.DateOffset(months=1)).to_pydatetime()


def _top_value(records: List[Dict[str, Any]], key: str) -> Tuple[Optional[str], int]:
    counter = Counter(
        str(r[key]) for r in records
        if has_data(r.get(key)) and not isinstance(r[key], (dict, list))
    )
    if not counter:
        return None, 0
    value, count = counter.most_common(1)[0]
    return value, count


def _is_true(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _referral_count(record: Dict[str, Any]) -> int:
    return max(0, int(extract_numeric(record.get("referrals")).value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class CompletenessReport:
    """Completeness / enrichment figures for one entity kind and range."""
    entity_kind: str
    date_range: DateRange
    total: int
    with_image: int
    with_image_percent: float
    complete: int
    complete_percent: float
    enriched: int
    enriched_percent: float
    enrichment_coverage: Dict[str, float] = field(default_factory=dict)
    top_category: Optional[str] = None
    top_category_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_kind": self.entity_kind,
            "date_range": self.date_range.value,
            "total": self.total,
            "with_image": self.with_image,
            "with_image_percent": self.with_image_percent,
            "complete": self.complete,
            "complete_percent": self.complete_percent,
            "enriched": self.enriched,
            "enriched_percent": self.enriched_percent,
            "enrichment_coverage": dict(self.enrichment_coverage),
            "top_category": self.top_category,
            "top_category_count": self.top_category_count,
        }


@dataclass
class TrendBucket:
    key: str
    count: int
    height_percent: float
    is_current: bool = False


@dataclass
class TrendTimeline:
    period: TrendPeriod
    buckets: List[TrendBucket] = field(default_factory=list)
    growth_percent: float = 0.0
    current_count: int = 0
    previous_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.value,
            "buckets": [
                {"key": b.key, "count": b.count, "height_percent": b.height_percent, "is_current": b.is_current}
                for b in self.buckets
            ],
            "growth_percent": self.growth_percent,
            "current_count": self.current_count,
            "previous_count": self.previous_count,
        }


@dataclass
class FunnelStep:
    """One stage of a linear conversion funnel."""
    label: str
    count: int
    comparison_base: Optional[int]
    conversion_percent: float
    conversion_sub_label: str
    width_percent: float
    estimated: bool = False
    event: Optional[str] = None


@dataclass
class Funnel:
    steps: List[FunnelStep] = field(default_factory=list)

    @property
    def is_estimate(self) -> bool:
        return any(step.estimated for step in self.steps)

    @property
    def overall_conversion(self) -> float:
        if not self.steps:
            return 0.0
        return percent(self.steps[-1].count, self.steps[0].count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_estimate": self.is_estimate,
            "overall_conversion": self.overall_conversion,
            "steps": [
                {
                    "event": s.event,
                    "label": s.label,
                    "count": s.count,
                    "comparison_base": s.comparison_base,
                    "conversion_percent": s.conversion_percent,
                    "conversion_sub_label": s.conversion_sub_label,
                    "width_percent": s.width_percent,
                    "estimated": s.estimated,
                }
                for s in self.steps
            ],
        }


@dataclass
class ScanSummary:
    date_range: DateRange
    total: int
    completed: int
    failed: int
    processing: int
    average_score: Optional[float]
    top_scan_type: Optional[str]
    top_scan_type_count: int
    timeline: TrendTimeline

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_range": self.date_range.value,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "processing": self.processing,
            "average_score": self.average_score,
            "top_scan_type": self.top_scan_type,
            "top_scan_type_count": self.top_scan_type_count,
            "timeline": self.timeline.to_dict(),
        }


@dataclass
class WaitlistSummary:
    total: int
    last_24h: int
    last_7d: int
    last_30d: int
    week_growth_percent: float
    confirmed: int
    confirmed_percent: float
    total_referrals: int
    referred_users: int
    users_with_referrals: int
    viral_coefficient: float
    average_referrals: float
    referral_conversion_percent: float
    active_referrer_percent: float
    top_referrers: List[Dict[str, Any]] = field(default_factory=list)
    funnel: Funnel = field(default_factory=Funnel)
    median_minutes: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "last_24h": self.last_24h,
            "last_7d": self.last_7d,
            "last_30d": self.last_30d,
            "week_growth_percent": self.week_growth_percent,
            "confirmed": self.confirmed,
            "confirmed_percent": self.confirmed_percent,
            "total_referrals": self.total_referrals,
            "referred_users": self.referred_users,
            "users_with_referrals": self.users_with_referrals,
            "viral_coefficient": self.viral_coefficient,
            "average_referrals": self.average_referrals,
            "referral_conversion_percent": self.referral_conversion_percent,
            "active_referrer_percent": self.active_referrer_percent,
            "top_referrers": list(self.top_referrers),
            "funnel": self.funnel.to_dict(),
            "median_minutes": dict(self.median_minutes),
        }


# ----------------------------------------------------------------------
# Funnel
# ----------------------------------------------------------------------

def build_funnel(
    counts: Dict[str, int],
    labels: Optional[Dict[str, str]] = None,
    estimated: Iterable[str] = (),
) -> Funnel:
    """
    Linear funnel over ordered stage counts.

    Step n converts against step n-1; a zero denominator reports 0%. Bar
    widths are relative to the first step (minimum 8%).
    """
    labels = labels or {}
    estimated = set(estimated)
    items = list(counts.items())
    if not items:
        return Funnel()

    first_count = items[0][1] or 1
    steps: List[FunnelStep] = []
    for i, (event, count) in enumerate(items):
        label = labels.get(event, event)
        width = round(min(100.0, max(MIN_FUNNEL_WIDTH, count / first_count * 100)), 1)
        if i == 0:
            base = None
            conversion = 100.0 if count > 0 else 0.0
            sub_label = "Entry"
        else:
            base = items[i - 1][1]
            conversion = percent(count, base)
            sub_label = f"{conversion}% of {steps[-1].label}"
        steps.append(FunnelStep(
            label=label,
            count=count,
            comparison_base=base,
            conversion_percent=conversion,
            conversion_sub_label=sub_label,
            width_percent=width,
            estimated=event in estimated,
            event=event,
        ))
    return Funnel(steps=steps)


class RecordAggregator:
    """
    Computes summary metrics over record collections.

    Pure given (records, date range, now); nothing is cached between calls.
    """

    def __init__(
        self,
        registry: SchemaRegistry = None,
        trend_window: int = TREND_WINDOW,
        min_bar_percent: float = MIN_BAR_PERCENT,
    ):
        self.registry = registry or get_schema_registry()
        self.trend_window = trend_window
        self.min_bar_percent = min_bar_percent

    # ------------------------------------------------------------------
    # Completeness / enrichment
    # ------------------------------------------------------------------

    def is_complete(self, record: Dict[str, Any], entity_kind: str) -> bool:
        return all(has_data(record.get(key)) for key in self.registry.core_fields(entity_kind))

    def is_enriched(self, record: Dict[str, Any], entity_kind: str) -> bool:
        fields = self.registry.enrichment_fields(entity_kind)
        threshold = max(1, math.ceil(len(fields) / 2))
        return sum(1 for key in fields if has_data(record.get(key))) >= threshold

    def summarize_catalog(
        self,
        records: List[Dict[str, Any]],
        entity_kind: str,
        date_range: DateRange = DateRange.ALL,
        now: Optional[datetime] = None,
    ) -> CompletenessReport:
        filtered = filter_by_date_range(records, date_range, now)
        total = len(filtered)

        with_image = sum(1 for r in filtered if self.registry.get_image_ref(entity_kind, r))
        complete = sum(1 for r in filtered if self.is_complete(r, entity_kind))
        enriched = sum(1 for r in filtered if self.is_enriched(r, entity_kind))
        coverage = {
            key: percent(sum(1 for r in filtered if has_data(r.get(key))), total)
            for key in self.registry.enrichment_fields(entity_kind)
        }
        top_category, top_count = _top_value(filtered, "category")

        logger.debug(f"Summarized {total} {entity_kind} record(s) for range '{date_range.value}'")
        return CompletenessReport(
            entity_kind=entity_kind,
            date_range=date_range,
            total=total,
            with_image=with_image,
            with_image_percent=percent(with_image, total),
            complete=complete,
            complete_percent=percent(complete, total),
            enriched=enriched,
            enriched_percent=percent(enriched, total),
            enrichment_coverage=coverage,
            top_category=top_category,
            top_category_count=top_count,
        )

    # ------------------------------------------------------------------
    # Trend
    # ------------------------------------------------------------------

    def build_trend(
        self,
        records: List[Dict[str, Any]],
        period: TrendPeriod = TrendPeriod.WEEK,
        now: Optional[datetime] = None,
    ) -> TrendTimeline:
        """Bucket the full history and keep the last non-empty buckets."""
        now = now or utc_now()
        stamps = [ts for ts in (record_timestamp(r) for r in records) if ts is not None]
        if not stamps:
            return TrendTimeline(period=period)

        counts = bucket_keys(stamps, period).value_counts().sort_index()
        window = counts.iloc[-self.trend_window:]
        peak = int(window.max()) or 1

        current_key = bucket_key(now, period)
        previous_key = bucket_key(_previous_period(now, period), period)

        buckets = [
            TrendBucket(
                key=key,
                count=int(count),
                height_percent=round(max(self.min_bar_percent, count / peak * 100), 1),
                is_current=key == current_key,
            )
            for key, count in window.items()
        ]
        current = int(counts.get(current_key, 0))
        previous = int(counts.get(previous_key, 0))
        return TrendTimeline(
            period=period,
            buckets=buckets,
            growth_percent=growth_percent(current, previous),
            current_count=current,
            previous_count=previous,
        )

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def summarize_scans(
        self,
        records: List[Dict[str, Any]],
        date_range: DateRange = DateRange.ALL,
        period: TrendPeriod = TrendPeriod.WEEK,
        now: Optional[datetime] = None,
    ) -> ScanSummary:
        filtered = filter_by_date_range(records, date_range, now)
        statuses = Counter(str(r.get("status") or "").lower() for r in filtered)

        scores = [
            extract_numeric(r.get("overall_score")).value
            for r in filtered
            if str(r.get("status") or "").lower() == "completed" and has_data(r.get("overall_score"))
        ]
        average = round(sum(scores) / len(scores), 1) if scores else None
        top_type, top_count = _top_value(filtered, "scan_type")

        return ScanSummary(
            date_range=date_range,
            total=len(filtered),
            completed=statuses.get("completed", 0),
            failed=statuses.get("failed", 0),
            processing=statuses.get("processing", 0) + statuses.get("pending", 0),
            average_score=average,
            top_scan_type=top_type,
            top_scan_type_count=top_count,
            timeline=self.build_trend(records, period, now),
        )

    # ------------------------------------------------------------------
    # Waitlist
    # ------------------------------------------------------------------

    def funnel_bases(self, records: List[Dict[str, Any]]) -> Dict[str, int]:
        """Record-derived quantities the estimate ratios multiply."""
        return {
            "signups": len(records),
            "confirmed": sum(1 for r in records if _is_true(r.get("confirmed"))),
            "active_referrers": sum(1 for r in records if _referral_count(r) > 0),
            "total_referrals": sum(_referral_count(r) for r in records),
            "referred_users": sum(1 for r in records if has_data(r.get("referredBy"))),
        }

    def estimate_funnel_counts(
        self,
        records: List[Dict[str, Any]],
        measured: Optional[Dict[str, int]] = None,
    ) -> Tuple[Dict[str, int], List[str]]:
        """
        Stage counts in funnel order, measured where available.

        Stages with no measured count are estimated as basis * ratio. These
        ratios are guesses, so every such stage is returned in the second
        element and must be shown as an estimate.
        """
        measured = measured or {}
        bases = self.funnel_bases(records)
        counts: Dict[str, int] = {}
        estimated: List[str] = []
        for stage in self.registry.funnel_stages:
            if stage.event in measured:
                counts[stage.event] = int(measured[stage.event])
            else:
                counts[stage.event] = _round_half_up(bases.get(stage.basis, 0) * stage.ratio)
                estimated.append(stage.event)

        if estimated:
            logger.warning(f"Estimating {len(estimated)} funnel stage(s) from records: {', '.join(estimated)}")
        return counts, estimated

    def summarize_waitlist(
        self,
        records: List[Dict[str, Any]],
        funnel_snapshot: Any = None,
        now: Optional[datetime] = None,
    ) -> WaitlistSummary:
        """
        Signup, referral and funnel metrics over the waitlist.

        Args:
            records: Waitlist rows.
            funnel_snapshot: Measured event counts (FunnelSnapshot) or None,
                             in which case every funnel stage is estimated.
            now: Reference time; defaults to the current UTC time.
        """
        now = now or utc_now()
        stamps = [ts for ts in (record_timestamp(r) for r in records) if ts is not None]

        def since(delta: timedelta) -> int:
            return sum(1 for ts in stamps if ts >= now - delta)

        this_week = since(timedelta(days=7))
        last_week = sum(1 for ts in stamps if now - timedelta(days=14) <= ts < now - timedelta(days=7))

        bases = self.funnel_bases(records)
        total = len(records)
        referrers = sorted(
            (r for r in records if _referral_count(r) > 0),
            key=_referral_count,
            reverse=True,
        )[:TOP_REFERRERS]

        measured = funnel_snapshot.counts if funnel_snapshot is not None else None
        counts, estimated = self.estimate_funnel_counts(records, measured)
        labels = {stage.event: stage.label for stage in self.registry.funnel_stages}

        return WaitlistSummary(
            total=total,
            last_24h=since(timedelta(days=1)),
            last_7d=this_week,
            last_30d=since(timedelta(days=30)),
            week_growth_percent=growth_percent(this_week, last_week),
            confirmed=bases["confirmed"],
            confirmed_percent=percent(bases["confirmed"], total),
            total_referrals=bases["total_referrals"],
            referred_users=bases["referred_users"],
            users_with_referrals=bases["active_referrers"],
            viral_coefficient=round(bases["referred_users"] / total, 2) if total else 0.0,
            average_referrals=(
                round(bases["total_referrals"] / bases["active_referrers"], 1)
                if bases["active_referrers"] else 0.0
            ),
            referral_conversion_percent=percent(bases["referred_users"], bases["total_referrals"]),
            active_referrer_percent=percent(bases["active_referrers"], total),
            top_referrers=[
                {"email": r.get("email"), "name": r.get("name"), "referrals": _referral_count(r)}
                for r in referrers
            ],
            funnel=build_funnel(counts, labels, estimated),
            median_minutes=dict(funnel_snapshot.median_minutes) if funnel_snapshot is not None else {},
        )
