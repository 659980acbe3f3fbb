"""MapWatch — Tiered Metrics Collector.

One collector type serves all three tiers; a ``CollectorProfile`` says how
often it runs, how far back each run looks, how fast it may call the
provider and, for the cold tier, how large a rotation slice is.

Per cycle:
  Idle → fetch(i) → {ok | no data | failed} → fetch(i+1) … → flush → Idle

Islands are fetched one at a time, paced to the request budget. A failure
for one island (rate limit, timeout, HTTP error, bad payload) is counted
and logged, and the loop moves on; the next scheduled cycle retries it.
Only systemic errors (no credentials, store unreachable) end a cycle early.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlmodel import SQLModel

from mapwatch.config import Settings
from mapwatch.connectors.base import MetricsProvider
from mapwatch.connectors.epic.client import EpicAuthError, RateLimitedError
from mapwatch.connectors.epic.transformer import (
    parse_metric_buckets,
    to_daily_documents,
    to_metric_samples,
)
from mapwatch.core.logging import get_logger
from mapwatch.core.pacer import RequestPacer
from mapwatch.models.catalog_models import MapRecord
from mapwatch.models.control_models import CycleStats, Tier
from mapwatch.store import DocumentStore
from mapwatch.workers.bulk_writer import BulkWriter
from mapwatch.workers.rotation import RotationCheckpoint, next_slice
from mapwatch.workers.tier_classifier import TierClassifier

logger = get_logger("workers.collector")

PROGRESS_EVERY = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CollectorProfile:
    """Everything that differs between the hot, warm and cold collectors."""

    name: str
    tier: Optional[Tier]
    cadence_minutes: int
    lookback_minutes: int
    requests_per_second: float
    granularity: str = "minute"
    batch_size: int = 1000
    slice_size: Optional[int] = None  # Set only for rotating populations

    def __post_init__(self):
        # Each run rebuilds everything since the previous run, so the window
        # may never be shorter than the gap between runs.
        if self.lookback_minutes < self.cadence_minutes:
            raise ValueError(
                f"{self.name}: lookback ({self.lookback_minutes}m) must cover "
                f"the cadence ({self.cadence_minutes}m)"
            )
        if self.requests_per_second <= 0:
            raise ValueError(f"{self.name}: requests_per_second must be positive")

    @property
    def cycle_label(self) -> str:
        return f"{self.cadence_minutes}min"


def build_profiles(cfg: Settings) -> Dict[Tier, CollectorProfile]:
    """Reference cadences: hot 10m, warm 30m, cold 60m with rotation."""
    return {
        Tier.HOT: CollectorProfile(
            name="hot",
            tier=Tier.HOT,
            cadence_minutes=cfg.hot_cadence_minutes,
            lookback_minutes=cfg.hot_lookback_minutes,
            requests_per_second=cfg.collector_requests_per_second,
            batch_size=cfg.bulk_batch_size,
        ),
        Tier.WARM: CollectorProfile(
            name="warm",
            tier=Tier.WARM,
            cadence_minutes=cfg.warm_cadence_minutes,
            lookback_minutes=cfg.warm_lookback_minutes,
            requests_per_second=cfg.collector_requests_per_second,
            batch_size=cfg.bulk_batch_size,
        ),
        Tier.COLD: CollectorProfile(
            name="cold",
            tier=Tier.COLD,
            cadence_minutes=cfg.cold_cadence_minutes,
            lookback_minutes=cfg.cold_lookback_minutes,
            requests_per_second=cfg.collector_requests_per_second,
            batch_size=cfg.bulk_batch_size,
            slice_size=cfg.cold_slice_size,
        ),
    }


class TieredCollector:
    """Collects and persists metrics for one tier's islands."""

    def __init__(
        self,
        profile: CollectorProfile,
        provider: MetricsProvider,
        store: DocumentStore,
        classifier: Optional[TierClassifier] = None,
        pacer: Optional[RequestPacer] = None,
        checkpoint: Optional[RotationCheckpoint] = None,
        request_timeout: float = 45.0,
        tier_max_age: timedelta = timedelta(minutes=10),
        now: Callable[[], datetime] = _utcnow,
    ):
        if profile.slice_size and checkpoint is None:
            raise ValueError(f"{profile.name}: a rotating collector needs a checkpoint")
        self.profile = profile
        self.provider = provider
        self.store = store
        self.classifier = classifier
        self.pacer = pacer or RequestPacer(profile.requests_per_second)
        self.checkpoint = checkpoint
        self.request_timeout = request_timeout
        self.tier_max_age = tier_max_age
        self._now = now
        self._stop_requested = False
        self.last_stats: Optional[CycleStats] = None

    @property
    def name(self) -> str:
        return self.profile.name

    def request_stop(self) -> None:
        """Finish the current island, skip the rest of the cycle."""
        self._stop_requested = True

    # ── Hooks ──

    def window(self, started: datetime, lookback: timedelta) -> Tuple[datetime, datetime]:
        return started - lookback, started

    def build_records(
        self, map_id: str, buckets: List[dict], started: datetime
    ) -> List[SQLModel]:
        tier = self.profile.tier.value if self.profile.tier else None
        return to_metric_samples(map_id, buckets, tier, self.profile.cycle_label, started)

    async def population(self) -> List[str]:
        if self.classifier is None or self.profile.tier is None:
            raise ValueError(f"{self.name}: no population source configured")
        tiers = await asyncio.to_thread(self.classifier.current, self.tier_max_age)
        return tiers.members(self.profile.tier)

    # ── Cycle ──

    async def run(self) -> CycleStats:
        """Resolve this tier's islands and run one cycle over them."""
        map_ids = await self.population()
        if not self.profile.slice_size:
            return await self.run_cycle(map_ids)

        # Stable order within a classification so slices line up across runs
        population = sorted(map_ids)
        cursor = self.checkpoint.load()
        chunk, next_cursor = next_slice(population, cursor, self.profile.slice_size, self._now())
        start = 0 if cursor.cursor_index >= len(population) else cursor.cursor_index
        logger.info(
            f"[{self.name}] Total maps: {len(population)} | slice {start} to "
            f"{start + len(chunk)} | rotation {round(start / len(population) * 100) if population else 0}%"
        )

        stats = await self.run_cycle(chunk)

        if stats.skipped:
            logger.warning(f"[{self.name}] Cycle stopped early; rotation cursor not advanced")
        elif self.checkpoint.save(next_cursor):
            logger.info(
                f"[{self.name}] Next rotation index: {next_cursor.cursor_index}/"
                f"{next_cursor.total_population_size}"
            )
            if next_cursor.cycles_completed > cursor.cycles_completed:
                logger.info(f"[{self.name}] Full rotation complete, starting new cycle")
        return stats

    async def run_cycle(
        self, map_ids: Sequence[str], lookback: Optional[timedelta] = None
    ) -> CycleStats:
        """Fetch, filter and persist metrics for ``map_ids``."""
        started = self._now()
        clock_start = time.monotonic()
        lookback = lookback or timedelta(minutes=self.profile.lookback_minutes)
        window_start, window_end = self.window(started, lookback)
        stats = CycleStats(collector=self.name, started_at=started, planned=len(map_ids))
        writer = BulkWriter(self.store, self.profile.batch_size, self.name)

        logger.info(
            f"[{self.name}] Collecting {len(map_ids)} maps, window "
            f"{window_start.isoformat()} to {window_end.isoformat()}",
            extra={"tier": self.name},
        )

        try:
            for index, map_id in enumerate(map_ids):
                if self._stop_requested:
                    stats.skipped = len(map_ids) - index
                    logger.info(f"[{self.name}] Stop requested, skipping {stats.skipped} maps")
                    break
                await self._collect_one(map_id, window_start, window_end, started, stats, writer)
                if stats.processed % PROGRESS_EVERY == 0:
                    logger.info(
                        f"[{self.name}] Progress: {stats.processed}/{len(map_ids)} | "
                        f"Success: {stats.successful} | No Data: {stats.no_data} | "
                        f"Failed: {stats.failed} | Datapoints: {stats.datapoints}"
                    )
        finally:
            result = await writer.close()
            stats.written = result.written
            stats.write_failures = len(result.failed)
            stats.duration_ms = int((time.monotonic() - clock_start) * 1000)
            self.last_stats = stats

        logger.info(
            f"[{self.name}] Cycle summary: processed={stats.processed} "
            f"successful={stats.successful} no_data={stats.no_data} failed={stats.failed} "
            f"rate_limited={stats.rate_limited} datapoints={stats.datapoints} "
            f"written={stats.written} write_failures={stats.write_failures} "
            f"skipped={stats.skipped}",
            extra={"tier": self.name, "duration_ms": stats.duration_ms},
        )
        return stats

    async def _collect_one(
        self,
        map_id: str,
        window_start: datetime,
        window_end: datetime,
        started: datetime,
        stats: CycleStats,
        writer: BulkWriter,
    ) -> None:
        stats.processed += 1
        await self.pacer.wait()
        try:
            payload = await asyncio.wait_for(
                self.provider.get_metrics(
                    map_id, self.profile.granularity, window_start, window_end
                ),
                timeout=self.request_timeout,
            )
        except EpicAuthError:
            raise
        except RateLimitedError:
            stats.failed += 1
            stats.rate_limited += 1
            logger.warning(
                f"[{self.name}] Rate limited at {stats.processed}",
                extra={"map_id": map_id, "tier": self.name},
            )
            return
        except Exception as e:
            stats.failed += 1
            logger.warning(
                f"[{self.name}] Fetch failed for {map_id}: {e!r}",
                extra={"map_id": map_id, "tier": self.name},
            )
            return

        records = self.build_records(map_id, parse_metric_buckets(payload), started)
        if not records:
            stats.no_data += 1
            return
        await writer.add(records)
        stats.successful += 1
        stats.datapoints += len(records)


class DailyCollector(TieredCollector):
    """Once a day, store yesterday's hourly buckets as one document per island."""

    def window(self, started: datetime, lookback: timedelta) -> Tuple[datetime, datetime]:
        day_start = (started - timedelta(days=1)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return day_start, day_start + timedelta(days=1) - timedelta(milliseconds=1)

    def build_records(
        self, map_id: str, buckets: List[dict], started: datetime
    ) -> List[SQLModel]:
        return to_daily_documents(map_id, buckets, started)

    async def population(self) -> List[str]:
        return await asyncio.to_thread(lambda: list(self.store.ids(MapRecord)))


def daily_profile(cfg: Settings) -> CollectorProfile:
    return CollectorProfile(
        name="daily",
        tier=None,
        cadence_minutes=24 * 60,
        lookback_minutes=24 * 60,
        requests_per_second=cfg.collector_requests_per_second,
        granularity="hour",
        batch_size=cfg.bulk_batch_size,
    )
