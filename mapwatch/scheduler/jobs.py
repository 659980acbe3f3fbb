"""MapWatch — Scheduler Jobs.

Every worker is its own APScheduler job. ``max_instances=1`` keeps a slow
cycle from overlapping the next one, and ``coalesce`` folds missed runs into
one. A job that fails is logged and recorded; the next scheduled run goes
ahead regardless.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from mapwatch.config import Settings, settings
from mapwatch.connectors.epic.client import EpicAuthError, EpicClient
from mapwatch.connectors.epic.discovery import DiscoveryAPI
from mapwatch.connectors.epic.ecosystem import EcosystemAPI
from mapwatch.core.logging import get_logger
from mapwatch.core.pacer import RequestPacer
from mapwatch.database import store as default_store
from mapwatch.models.control_models import Tier
from mapwatch.store import DocumentStore
from mapwatch.workers.collector import (
    DailyCollector,
    TieredCollector,
    build_profiles,
    daily_profile,
)
from mapwatch.workers.compactor import Compactor, rules_from_settings
from mapwatch.workers.listing_tracker import ListingTracker
from mapwatch.workers.rotation import RotationCheckpoint
from mapwatch.workers.summary_calculator import SummaryCalculator
from mapwatch.workers.tier_classifier import TierClassifier

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler(timezone="UTC")


@dataclass
class Workers:
    """Everything the scheduled jobs run, wired to one store and one HTTP client."""

    client: EpicClient
    classifier: TierClassifier
    checkpoint: RotationCheckpoint
    collectors: Dict[str, TieredCollector]
    tracker: ListingTracker
    compactor: Compactor
    calculator: SummaryCalculator
    last_runs: Dict[str, Dict[str, Any]] = field(default_factory=dict)


workers: Optional[Workers] = None


def build_workers(cfg: Settings = settings, store: DocumentStore = default_store) -> Workers:
    client = EpicClient(
        access_token=cfg.epic_access_token,
        timeout=cfg.http_timeout_seconds,
        max_retries=cfg.http_max_retries,
    )
    ecosystem = EcosystemAPI(client, cfg.ecosystem_base_url)
    discovery = DiscoveryAPI(client, cfg.epic_account_id, cfg.discovery_base_url, cfg.fortnite_branch)
    classifier = TierClassifier(
        store, cfg.tier_hot_size, cfg.tier_warm_size, cfg.tier_activity_window_hours
    )
    checkpoint = RotationCheckpoint(cfg.rotation_state_path)
    tier_max_age = timedelta(minutes=cfg.tier_refresh_minutes)

    collectors: Dict[str, TieredCollector] = {}
    for tier, profile in build_profiles(cfg).items():
        collectors[profile.name] = TieredCollector(
            profile,
            ecosystem,
            store,
            classifier=classifier,
            checkpoint=checkpoint if tier == Tier.COLD else None,
            request_timeout=cfg.request_timeout_seconds,
            tier_max_age=tier_max_age,
        )
    daily = daily_profile(cfg)
    collectors[daily.name] = DailyCollector(
        daily, ecosystem, store, request_timeout=cfg.request_timeout_seconds
    )

    tracker = ListingTracker(
        discovery,
        store,
        cfg.surfaces,
        cfg.regions,
        max_pages=cfg.listing_max_pages,
        pacer=RequestPacer(cfg.listing_requests_per_second),
        request_timeout=cfg.request_timeout_seconds,
    )
    return Workers(
        client=client,
        classifier=classifier,
        checkpoint=checkpoint,
        collectors=collectors,
        tracker=tracker,
        compactor=Compactor(store, rules_from_settings(cfg)),
        calculator=SummaryCalculator(store),
    )


# ── Job Wrapper ──


async def run_job(name: str, target: Callable[[], Awaitable[Any]], registry: Workers) -> None:
    """Run one job, record its outcome, never raise."""
    logger.info(f"⏱️ Scheduled {name} job starting...", extra={"job": name})
    clock_start = time.monotonic()
    record: Dict[str, Any] = {"started_at": datetime.now(timezone.utc)}
    try:
        await target()
        record["status"] = "ok"
    except EpicAuthError as e:
        record["status"] = "failed"
        record["error"] = str(e)
        logger.error(f"Scheduled {name} job stopped, Epic credentials rejected: {e}", extra={"job": name})
    except Exception as e:
        record["status"] = "failed"
        record["error"] = str(e)
        logger.error(f"Scheduled {name} job failed: {e!r}", extra={"job": name}, exc_info=True)
    record["duration_ms"] = int((time.monotonic() - clock_start) * 1000)
    registry.last_runs[name] = record


def _job(
    name: str, target: Callable[[], Awaitable[Any]], registry: Workers
) -> Callable[[], Awaitable[None]]:
    async def job() -> None:
        await run_job(name, target, registry)

    job.__name__ = f"{name}_job"
    return job


def register_jobs(registry: Workers, cfg: Settings = settings) -> None:
    common = {"max_instances": 1, "coalesce": True, "replace_existing": True}
    now = datetime.now(timezone.utc)

    for name in ("hot", "warm", "cold"):
        collector = registry.collectors[name]
        scheduler.add_job(
            _job(name, collector.run, registry),
            "interval",
            minutes=collector.profile.cadence_minutes,
            id=f"collector_{name}",
            next_run_time=now,
            **common,
        )

    scheduler.add_job(
        _job("listing", registry.tracker.run_cycle, registry),
        "interval",
        minutes=cfg.listing_cadence_minutes,
        id="listing",
        next_run_time=now,
        **common,
    )
    scheduler.add_job(
        _job(
            "summaries",
            lambda: asyncio.to_thread(registry.calculator.recompute_all, cfg.summary_batch_size),
            registry,
        ),
        "interval",
        minutes=cfg.summary_cadence_minutes,
        id="summaries",
        **common,
    )
    scheduler.add_job(
        _job("daily", registry.collectors["daily"].run, registry),
        "cron",
        hour=cfg.daily_collection_hour,
        minute=0,
        id="collector_daily",
        misfire_grace_time=3600,
        **common,
    )
    scheduler.add_job(
        _job(
            "compaction",
            lambda: asyncio.to_thread(registry.compactor.run, cfg.daily_retention_days),
            registry,
        ),
        "cron",
        day=cfg.compaction_day_of_month,
        hour=cfg.compaction_hour,
        minute=0,
        id="compaction",
        misfire_grace_time=3600,
        **common,
    )


def start_scheduler():
    """Build the workers, register every job and start the scheduler."""
    global workers
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    workers = build_workers()
    register_jobs(workers)
    scheduler.start()
    logger.info(
        f"Scheduler started. Collectors hot/warm/cold every "
        f"{settings.hot_cadence_minutes}/{settings.warm_cadence_minutes}/"
        f"{settings.cold_cadence_minutes}m, daily at {settings.daily_collection_hour}:00 UTC, "
        f"compaction on day {settings.compaction_day_of_month} at {settings.compaction_hour}:00 UTC"
    )


def stop_scheduler():
    """Ask collectors to finish their current island, then shut down."""
    if workers is not None:
        for collector in workers.collectors.values():
            collector.request_stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


async def close_clients() -> None:
    if workers is not None:
        await workers.client.close()


def get_workers() -> Optional[Workers]:
    return workers


def status_snapshot(registry: Optional[Workers]) -> Dict[str, Any]:
    """Last outcome of every job, plus tier sizes and the rotation cursor."""
    if registry is None:
        return {"scheduler_running": scheduler.running, "workers": None}

    jobs = {}
    for job in scheduler.get_jobs():
        jobs[job.id] = {"next_run_time": getattr(job, "next_run_time", None)}

    tiers = registry.classifier.latest
    return {
        "scheduler_running": scheduler.running,
        "jobs": jobs,
        "last_runs": registry.last_runs,
        "collectors": {
            name: collector.last_stats.model_dump() if collector.last_stats else None
            for name, collector in registry.collectors.items()
        },
        "tiers": (
            {**tiers.sizes(), "classified_at": tiers.classified_at, "degraded": tiers.degraded}
            if tiers
            else None
        ),
        "rotation": registry.checkpoint.load().model_dump(),
        "listing": registry.tracker.last_stats.model_dump() if registry.tracker.last_stats else None,
        "compaction": (
            registry.compactor.last_stats.model_dump() if registry.compactor.last_stats else None
        ),
        "summaries": registry.calculator.last_stats,
    }
