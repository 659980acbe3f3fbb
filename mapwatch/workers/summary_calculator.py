"""MapWatch — Map Summary Calculator.

Recomputes the denormalized ``map_summaries`` row for an island from the
raw samples and the listing tables. Each group of fields comes from its own
query; when one query fails the fields it owns keep their previous value
and the rest of the summary is still refreshed.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from mapwatch.core.logging import get_logger
from mapwatch.models.catalog_models import MapRecord, MapSummary
from mapwatch.models.listing_models import (
    EventType,
    ListingCurrent,
    ListingEventRecord,
    ListingPresence,
)
from mapwatch.models.metric_models import MetricSample
from mapwatch.store import DocumentStore

logger = get_logger("workers.summary")

SubQuery = Callable[[str, datetime], Dict[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_int(value: Optional[float]) -> int:
    return int(round(value)) if value is not None else 0


class SummaryCalculator:
    def __init__(self, store: DocumentStore, now: Callable[[], datetime] = _utcnow):
        self.store = store
        self._now = now
        self.last_stats: Optional[Dict[str, Any]] = None

    # ── Sub-queries ──

    def _current(self, map_id: str, now: datetime) -> Dict[str, Any]:
        latest = self.store.latest(
            MetricSample,
            MetricSample.timestamp,
            MetricSample.map_id == map_id,
            MetricSample.peak_ccu.is_not(None),
        )
        return {"current_value": latest.peak_ccu if latest else 0}

    def _window(self, map_id: str, since: datetime, op: str) -> int:
        return _as_int(
            self.store.aggregate(
                MetricSample,
                MetricSample.peak_ccu,
                op,
                MetricSample.map_id == map_id,
                MetricSample.timestamp >= since,
            )
        )

    def _peaks(self, map_id: str, now: datetime) -> Dict[str, Any]:
        return {
            "peak_24h": self._window(map_id, now - timedelta(hours=24), "max"),
            "peak_7d": self._window(map_id, now - timedelta(days=7), "max"),
            "peak_30d": self._window(map_id, now - timedelta(days=30), "max"),
        }

    def _averages(self, map_id: str, now: datetime) -> Dict[str, Any]:
        return {
            "avg_24h": self._window(map_id, now - timedelta(hours=24), "avg"),
            "avg_7d": self._window(map_id, now - timedelta(days=7), "avg"),
            "avg_30d": self._window(map_id, now - timedelta(days=30), "avg"),
        }

    def _presence(self, map_id: str, now: datetime) -> Dict[str, Any]:
        return {"in_listing": self.store.exists(ListingPresence, map_id)}

    def _appearances(self, map_id: str, now: datetime) -> Dict[str, Any]:
        count = self.store.count(
            ListingEventRecord,
            ListingEventRecord.map_id == map_id,
            ListingEventRecord.event_type == EventType.ADDED.value,
            ListingEventRecord.timestamp >= now - timedelta(days=7),
        )
        return {"listing_appearances_7d": count}

    def _best_position(self, map_id: str, now: datetime) -> Dict[str, Any]:
        # REMOVED events carry the position the island left from, not one it held
        from_events = self.store.aggregate(
            ListingEventRecord,
            ListingEventRecord.position,
            "min",
            ListingEventRecord.map_id == map_id,
            ListingEventRecord.event_type != EventType.REMOVED.value,
            ListingEventRecord.position.is_not(None),
        )
        from_current = self.store.aggregate(
            ListingCurrent, ListingCurrent.position, "min", ListingCurrent.map_id == map_id
        )
        candidates = [int(v) for v in (from_events, from_current) if v is not None]
        return {"best_position": min(candidates) if candidates else None}

    def _seen(self, map_id: str, now: datetime) -> Dict[str, Any]:
        first = self.store.earliest(
            ListingEventRecord,
            ListingEventRecord.timestamp,
            ListingEventRecord.map_id == map_id,
            ListingEventRecord.event_type == EventType.ADDED.value,
        )
        last = self.store.latest(
            ListingEventRecord,
            ListingEventRecord.timestamp,
            ListingEventRecord.map_id == map_id,
        )
        return {
            "first_seen": first.timestamp if first else None,
            "last_seen": last.timestamp if last else None,
        }

    def sub_queries(self) -> List[Tuple[str, SubQuery]]:
        return [
            ("current", self._current),
            ("peaks", self._peaks),
            ("averages", self._averages),
            ("presence", self._presence),
            ("appearances", self._appearances),
            ("best_position", self._best_position),
            ("seen", self._seen),
        ]

    # ── Recompute ──

    def recompute(self, map_id: str) -> MapSummary:
        now = self._now()
        summary = self.store.get(MapSummary, map_id) or MapSummary(map_id=map_id)

        for name, query in self.sub_queries():
            try:
                fields = query(map_id, now)
            except SQLAlchemyError as e:
                logger.warning(
                    f"Summary query '{name}' failed, keeping previous values: {e}",
                    extra={"map_id": map_id},
                )
                continue
            for field, value in fields.items():
                setattr(summary, field, value)

        summary.last_calculated = now
        self.store.upsert(summary)
        return summary

    def recompute_all(self, batch_size: int = 500) -> Dict[str, Any]:
        """Refresh the summary of every catalogued island."""
        processed = failed = 0
        batch: List[str] = []

        def flush():
            nonlocal processed, failed
            for map_id in batch:
                try:
                    self.recompute(map_id)
                except SQLAlchemyError as e:
                    failed += 1
                    logger.error(f"Summary write failed: {e}", extra={"map_id": map_id})
                processed += 1
            batch.clear()
            logger.info(f"Summaries: {processed} processed, {failed} failed")

        for map_id in self.store.ids(MapRecord):
            batch.append(map_id)
            if len(batch) >= batch_size:
                flush()
        if batch:
            flush()

        self.last_stats = {
            "processed": processed,
            "failed": failed,
            "finished_at": self._now(),
        }
        logger.info(
            f"📊 Summary calculation finished: {processed} maps, {failed} failed",
            extra={"job": "summaries"},
        )
        return self.last_stats
