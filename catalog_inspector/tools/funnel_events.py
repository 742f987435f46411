"""
Funnel Event Source

Reads measured signup-funnel event counts and median stage-to-stage times
from the admin funnel-metrics endpoint, or computes the same snapshot from
raw tracking events when the endpoint returns those instead of counts.

When the source cannot be read, fetch_snapshot() returns None and the
aggregator falls back to record-derived estimates.
"""
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import requests

from catalog_inspector.config.settings import StorageConfig, get_config
from catalog_inspector.core.error_taxonomy import FunnelSourceError
from catalog_inspector.core.value_extraction import extract_numeric, is_numeric_extractable
from catalog_inspector.data.record_aggregator import parse_timestamp

logger = logging.getLogger(__name__)

# transition key -> (from event, to event)
TRANSITIONS: Dict[str, Tuple[str, str]] = {
    "view_to_submit": ("lp_view", "signup_submit"),
    "cta_to_submit": ("cta_click", "signup_submit"),
    "submit_to_confirm": ("signup_submit", "email_confirm"),
    "confirm_to_referral": ("email_confirm", "referral_email_confirm"),
}
MAX_TRANSITION = timedelta(days=7)


@dataclass
class FunnelSnapshot:
    """Measured funnel data at one point in time."""
    counts: Dict[str, int] = field(default_factory=dict)
    median_minutes: Dict[str, Optional[float]] = field(default_factory=dict)
    daily_trend: Dict[str, Dict[str, int]] = field(default_factory=dict)
    total_events: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FunnelSnapshot":
        """
        Parse the endpoint payload.

        A count that is null or not numeric is left out, so that stage is
        estimated rather than reported as measured.
        """
        medians = data.get("medianTimes") or data.get("median_minutes") or {}
        counts = {}
        for key, raw in (data.get("counts") or {}).items():
            if is_numeric_extractable(raw):
                counts[str(key)] = int(extract_numeric(raw).value)
            else:
                logger.debug(f"Ignoring non-numeric funnel count for '{key}': {raw!r}")
        total = data.get("totalEvents") or data.get("total_events")
        return cls(
            counts=counts,
            median_minutes={k: _minutes(medians.get(k)) for k in TRANSITIONS} if medians else {},
            daily_trend=data.get("dailyTrend") or data.get("daily_trend") or {},
            total_events=int(extract_numeric(total).value) if is_numeric_extractable(total) else sum(counts.values()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "median_minutes": dict(self.median_minutes),
            "daily_trend": {day: dict(c) for day, c in self.daily_trend.items()},
            "total_events": self.total_events,
        }


def _minutes(raw: Any) -> Optional[float]:
    return extract_numeric(raw).value if is_numeric_extractable(raw) else None


def format_minutes(minutes: Optional[float]) -> str:
    """45s / 12m / 1.5h / 2.0d, or an em dash when unknown."""
    if minutes is None:
        return "—"
    if minutes < 1:
        return f"{round(minutes * 60)}s"
    if minutes < 60:
        return f"{round(minutes)}m"
    if minutes < 1440:
        return f"{minutes / 60:.1f}h"
    return f"{minutes / 1440:.1f}d"


def _upper_median(values: List[float]) -> Optional[float]:
    if not values:
        return None
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def summarize_events(events: List[Dict[str, Any]]) -> FunnelSnapshot:
    """
    Build a FunnelSnapshot from raw tracking events.

    Each event needs a name ("event" or "name") and a timestamp ("timestamp"
    or "created_at"); transitions are measured per "session_id". A transition
    runs from the session's earliest "from" event to its earliest "to" event
    and only positive gaps shorter than seven days count.
    """
    counts: Counter = Counter()
    daily: Dict[str, Counter] = defaultdict(Counter)
    first_seen: Dict[str, Dict[str, Any]] = defaultdict(dict)

    for event in events:
        name = event.get("event") or event.get("name")
        if not name:
            continue
        counts[name] += 1
        ts = parse_timestamp(event.get("timestamp") or event.get("created_at"))
        if ts is None:
            continue
        daily[ts.strftime("%Y-%m-%d")][name] += 1

        session = event.get("session_id")
        if session:
            earliest = first_seen[session].get(name)
            if earliest is None or ts < earliest:
                first_seen[session][name] = ts

    medians: Dict[str, Optional[float]] = {}
    for key, (start, end) in TRANSITIONS.items():
        gaps = []
        for seen in first_seen.values():
            if start in seen and end in seen:
                gap = seen[end] - seen[start]
                if timedelta(0) < gap < MAX_TRANSITION:
                    gaps.append(gap.total_seconds() / 60)
        medians[key] = _upper_median(gaps)

    return FunnelSnapshot(
        counts=dict(counts),
        median_minutes=medians,
        daily_trend={day: dict(c) for day, c in sorted(daily.items())},
        total_events=sum(counts.values()),
    )


class FunnelEventSource:
    """Reads the measured funnel snapshot from the admin function."""

    def __init__(self, config: Optional[StorageConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or get_config().storage
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            token = self.config.access_token or self.config.api_key
            if token:
                self._session.headers.update({"Authorization": f"Bearer {token}"})
        return self._session

    def read_snapshot(self) -> FunnelSnapshot:
        """Fetch the snapshot, raising FunnelSourceError when unavailable."""
        url = f"{self.config.functions_url}/admin/funnel-metrics"
        try:
            response = self._get_session().get(url, timeout=self.config.request_timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise FunnelSourceError(f"Funnel metrics unavailable: {e}", context={"url": url}) from e

        if not isinstance(data, dict) or data.get("success") is False:
            raise FunnelSourceError("Funnel metrics endpoint reported failure", context={"url": url})

        try:
            if isinstance(data.get("events"), list) and "counts" not in data:
                return summarize_events(data["events"])
            return FunnelSnapshot.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise FunnelSourceError(f"Malformed funnel metrics payload: {e}", context={"url": url}) from e

    def fetch_snapshot(self) -> Optional[FunnelSnapshot]:
        """Measured snapshot, or None (logged) so callers fall back to estimates."""
        try:
            snapshot = self.read_snapshot()
        except FunnelSourceError as e:
            logger.warning(f"{e}; funnel stages will be estimated")
            return None
        logger.info(f"Loaded funnel snapshot with {snapshot.total_events} event(s)")
        return snapshot
