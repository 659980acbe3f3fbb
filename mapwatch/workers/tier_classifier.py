"""MapWatch — Tier Classifier.

Ranks islands by peak CCU over the trailing activity window:
- Hot: top ``hot_size`` islands
- Warm: the next ``warm_size``
- Cold: every other known island, including ones with no recent samples

If the activity query fails, every catalog island goes to Cold. Collection
slows down but never stops.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from mapwatch.core.logging import get_logger
from mapwatch.core.metric_registry import ACTIVITY_METRIC
from mapwatch.models.catalog_models import MapRecord
from mapwatch.models.control_models import TierSet
from mapwatch.models.metric_models import MetricSample
from mapwatch.store import DocumentStore

logger = get_logger("workers.tiers")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TierClassifier:
    def __init__(
        self,
        store: DocumentStore,
        hot_size: int,
        warm_size: int,
        activity_window_hours: int = 24,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.hot_size = hot_size
        self.warm_size = warm_size
        self.activity_window = timedelta(hours=activity_window_hours)
        self._now = now
        self._latest: Optional[TierSet] = None

    @property
    def latest(self) -> Optional[TierSet]:
        return self._latest

    def _catalog(self) -> List[str]:
        return list(self.store.ids(MapRecord))

    def _ranked_by_activity(self, since: datetime) -> List[str]:
        metric = getattr(MetricSample, ACTIVITY_METRIC)
        ranked = self.store.terms(
            MetricSample,
            MetricSample.map_id,
            metric,
            "max",
            MetricSample.timestamp >= since,
            metric.is_not(None),
            limit=self.hot_size + self.warm_size,
        )
        # Equal peaks fall back to island id so tiers don't flap between runs
        ranked.sort(key=lambda row: (-row[1], row[0]))
        return [map_id for map_id, _ in ranked]

    def classify(self) -> TierSet:
        """Compute a fresh, complete tier assignment."""
        now = self._now()
        catalog = self._catalog()

        try:
            ranked = self._ranked_by_activity(now - self.activity_window)
        except SQLAlchemyError as e:
            logger.error(f"Activity query failed, classifying all {len(catalog)} maps as cold: {e}")
            tiers = TierSet(cold=sorted(catalog), classified_at=now, degraded=True)
            self._latest = tiers
            return tiers

        hot = ranked[: self.hot_size]
        warm = ranked[self.hot_size : self.hot_size + self.warm_size]
        active = set(hot) | set(warm)
        known = set(catalog) | set(ranked)
        cold = sorted(known - active)

        tiers = TierSet(hot=hot, warm=warm, cold=cold, classified_at=now)
        logger.info(
            f"Tier 1 (Hot): {len(hot)} maps | Tier 2 (Warm): {len(warm)} maps | "
            f"Tier 3 (Cold): {len(cold)} maps"
        )
        self._latest = tiers
        return tiers

    def current(self, max_age: timedelta) -> TierSet:
        """Reuse the last classification while it is younger than ``max_age``."""
        latest = self._latest
        if latest is not None and self._now() - latest.classified_at < max_age:
            return latest
        return self.classify()
