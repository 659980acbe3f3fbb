"""MapWatch — Epic Payload → Internal Record Transformer.

The only place provider payloads turn into stored records. The sparsity
rule lives here: a bucket whose metrics are all null or zero never becomes
a ``MetricSample``. Malformed payloads or entries are skipped and count as
"no data".
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from mapwatch.core.metric_registry import ECOSYSTEM_METRICS, MetricDefinition
from mapwatch.core.logging import get_logger
from mapwatch.models.listing_models import ListingPlacement
from mapwatch.models.metric_models import DailyMetrics, MetricSample, daily_id, sample_id

logger = get_logger("epic.transformer")

# Island code field on discovery results, in order of preference
PLACEMENT_CODE_FIELDS = ("linkCode", "mnemonic")


def has_data(value: Any) -> bool:
    """Null and zero both mean "nothing happened" for a bucket."""
    return value is not None and value != 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into aware UTC."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _coerce(definition: MetricDefinition, value: Any) -> Optional[float | int]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if definition.is_float:
        return round(number, 2)
    return int(round(number))


def parse_metric_buckets(payload: Any) -> List[Dict[str, Any]]:
    """Group a metrics payload into per-timestamp buckets.

    Returns buckets sorted by timestamp, each ``{"timestamp": datetime,
    <metric>: value, ...}``, with null/zero values dropped and empty buckets
    removed.
    """
    if not isinstance(payload, dict):
        return []

    buckets: Dict[datetime, Dict[str, Any]] = defaultdict(dict)
    for name, definition in ECOSYSTEM_METRICS.items():
        entries = payload.get(definition.api_field)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            ts = parse_timestamp(entry.get("timestamp"))
            if ts is None:
                continue
            value = _coerce(definition, entry.get("value"))
            if not has_data(value):
                continue
            buckets[ts][name] = value

    return [
        {"timestamp": ts, **metrics}
        for ts, metrics in sorted(buckets.items())
        if any(has_data(v) for v in metrics.values())
    ]


def to_metric_samples(
    map_id: str,
    buckets: List[Dict[str, Any]],
    tier: str | None,
    collection_cycle: str,
    collected_at: datetime,
) -> List[MetricSample]:
    """Turn parsed buckets into ``MetricSample`` rows."""
    samples = []
    for bucket in buckets:
        metrics = {k: v for k, v in bucket.items() if k in ECOSYSTEM_METRICS and has_data(v)}
        if not metrics:
            continue
        samples.append(
            MetricSample(
                id=sample_id(map_id, bucket["timestamp"]),
                map_id=map_id,
                timestamp=bucket["timestamp"],
                tier=tier,
                collection_cycle=collection_cycle,
                collected_at=collected_at,
                **metrics,
            )
        )
    return samples


def to_daily_documents(
    map_id: str,
    buckets: List[Dict[str, Any]],
    collected_at: datetime,
) -> List[DailyMetrics]:
    """Fold hourly buckets into one compound document per UTC date."""
    by_date: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for bucket in buckets:
        ts: datetime = bucket["timestamp"]
        hourly = {k: v for k, v in bucket.items() if k in ECOSYSTEM_METRICS and has_data(v)}
        if not hourly:
            continue
        by_date[ts.strftime("%Y-%m-%d")].append({"timestamp": ts.isoformat(), **hourly})

    return [
        DailyMetrics(
            id=daily_id(map_id, date),
            map_id=map_id,
            date=date,
            hourly_metrics=hours,
            collected_at=collected_at,
        )
        for date, hours in sorted(by_date.items())
    ]


def placement_code(item: Dict[str, Any]) -> Optional[str]:
    for field in PLACEMENT_CODE_FIELDS:
        code = item.get(field)
        if isinstance(code, str) and code:
            return code
    return None


def to_placement(
    surface: str, panel: str, region: str, position: int, item: Dict[str, Any]
) -> Optional[ListingPlacement]:
    code = placement_code(item)
    if code is None:
        return None
    return ListingPlacement(
        surface=surface, panel=panel, map_id=code, region=region, position=position
    )
