"""MapWatch — Data Compactor.

Thins old raw samples and folds old hourly documents into daily ones.

Time-series bands: rule *i* covers samples aged between ``age_i`` and the
next rule's age (the last rule is open-ended). Inside a band a sample is
kept only if its minute of day lands on the rule's grid, so with a 30
minute target only ``:00`` and ``:30`` survive. Both the bands and the grid
are pure functions of ``now`` and the timestamp, so re-running compaction
deletes nothing new.

Daily documents: hourly buckets older than the retention window are merged
with the reducer their metric type calls for (see ``core.metric_registry``).
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from mapwatch.config import Settings
from mapwatch.core.logging import get_logger
from mapwatch.core.metric_registry import ECOSYSTEM_METRICS, MetricType, metrics_by_type
from mapwatch.models.control_models import CompactionStats
from mapwatch.models.metric_models import DailyMetrics, MetricSample
from mapwatch.store import DocumentStore

logger = get_logger("workers.compactor")

MINUTES_PER_DAY = 24 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CompactionRule:
    """Samples older than ``age`` are thinned to one per ``target_interval_minutes``."""

    age: timedelta
    target_interval_minutes: int


def validate_rules(rules: Sequence[CompactionRule]) -> List[CompactionRule]:
    """Rules must be non-empty, on a daily grid and strictly coarser with age."""
    rules = list(rules)
    if not rules:
        raise ValueError("At least one compaction rule is required")
    for rule in rules:
        if rule.age <= timedelta(0):
            raise ValueError(f"Compaction age must be positive, got {rule.age}")
        target = rule.target_interval_minutes
        if target <= 0 or MINUTES_PER_DAY % target != 0:
            raise ValueError(f"Target interval {target}m must divide a day evenly")
    for older, newer in zip(rules, rules[1:]):
        if newer.age <= older.age:
            raise ValueError("Compaction rules must be ordered by increasing age")
        if newer.target_interval_minutes <= older.target_interval_minutes:
            raise ValueError("Older data must be compacted more coarsely")
    return rules


def rules_from_settings(cfg: Settings) -> List[CompactionRule]:
    return validate_rules(
        CompactionRule(age=timedelta(days=age_days), target_interval_minutes=target)
        for age_days, target in cfg.compaction_rules
    )


def keeps(timestamp: datetime, target_interval_minutes: int) -> bool:
    """Whether a sample lies on the grid. Seconds are ignored."""
    return (timestamp.hour * 60 + timestamp.minute) % target_interval_minutes == 0


# ─────────────────────────────────────────────
# REDUCERS
# ─────────────────────────────────────────────


def merge_hourly(hourly: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Fold hourly buckets into one daily value per metric.

    PEAK takes the max, COUNT the sum. RATIO metrics are recomputed from the
    merged totals they are defined over; only when a total is missing do
    they fall back to the mean of the hourly ratios.
    """
    merged: Dict[str, Any] = {}
    for name, definition in ECOSYSTEM_METRICS.items():
        values = [h[name] for h in hourly if h.get(name) is not None]
        if not values:
            continue
        if definition.metric_type == MetricType.PEAK:
            merged[name] = max(values)
        elif definition.metric_type == MetricType.COUNT:
            merged[name] = sum(values)

    for definition in metrics_by_type(MetricType.RATIO):
        numerator = merged.get(definition.numerator)
        denominator = merged.get(definition.denominator)
        if numerator is not None and denominator:
            merged[definition.name] = round(numerator / denominator, 2)
            continue
        values = [h[definition.name] for h in hourly if h.get(definition.name) is not None]
        if values:
            merged[definition.name] = round(sum(values) / len(values), 2)

    return merged


class Compactor:
    def __init__(
        self,
        store: DocumentStore,
        rules: Optional[Sequence[CompactionRule]] = None,
        batch_size: int = 1000,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.rules = validate_rules(rules) if rules is not None else None
        self.batch_size = batch_size
        self._now = now
        self.last_stats: Optional[CompactionStats] = None

    # ── Time-series bands ──

    def compact(self, rules: Optional[Sequence[CompactionRule]] = None) -> List[Dict[str, int]]:
        rules = validate_rules(rules) if rules is not None else self.rules
        if rules is None:
            raise ValueError("No compaction rules configured")
        now = self._now()
        bands: List[Dict[str, int]] = []

        for index, rule in enumerate(rules):
            upper = now - rule.age
            criteria = [MetricSample.timestamp <= upper]
            if index + 1 < len(rules):
                criteria.append(MetricSample.timestamp > now - rules[index + 1].age)

            kept = deleted = 0
            for batch in self.store.scroll_batches(
                MetricSample, *criteria, batch_size=self.batch_size
            ):
                doomed = [
                    s.id for s in batch if not keeps(s.timestamp, rule.target_interval_minutes)
                ]
                kept += len(batch) - len(doomed)
                deleted += self.store.bulk_delete(MetricSample, doomed)

            band = {
                "age_days": rule.age.days,
                "target_minutes": rule.target_interval_minutes,
                "kept": kept,
                "deleted": deleted,
            }
            bands.append(band)
            logger.info(
                f"Band {rule.age.days}d → {rule.target_interval_minutes}m: "
                f"kept {kept}, deleted {deleted}"
            )
        return bands

    # ── Daily documents ──

    def compact_daily_documents(self, retention_days: int = 30) -> Dict[str, int]:
        now = self._now()
        cutoff = (now - timedelta(days=retention_days)).date().isoformat()
        processed = compacted = 0

        for batch in self.store.scroll_batches(
            DailyMetrics,
            DailyMetrics.date < cutoff,
            DailyMetrics.compacted_at.is_(None),
            batch_size=self.batch_size,
        ):
            processed += len(batch)
            updated = []
            for doc in batch:
                if not doc.hourly_metrics:
                    continue
                doc.daily_metrics = merge_hourly(doc.hourly_metrics)
                doc.hourly_metrics = None
                doc.compacted_at = now
                updated.append(doc)
            compacted += self.store.bulk_upsert(updated).written

        logger.info(f"Compacted {compacted} of {processed} daily documents older than {cutoff}")
        return {"processed": processed, "compacted": compacted}

    # ── Run ──

    def run(self, retention_days: int = 30) -> CompactionStats:
        started = self._now()
        clock_start = time.monotonic()
        logger.info("🗜️ Starting compaction run")

        daily = self.compact_daily_documents(retention_days)
        bands = self.compact()

        stats = CompactionStats(
            started_at=started,
            daily_processed=daily["processed"],
            daily_compacted=daily["compacted"],
            samples_kept=sum(b["kept"] for b in bands),
            samples_deleted=sum(b["deleted"] for b in bands),
            bands=bands,
            duration_ms=int((time.monotonic() - clock_start) * 1000),
        )
        self.last_stats = stats
        logger.info(
            f"✅ Compaction finished: {stats.samples_deleted} samples deleted, "
            f"{stats.daily_compacted} daily documents compacted",
            extra={"job": "compaction", "duration_ms": stats.duration_ms},
        )
        return stats
