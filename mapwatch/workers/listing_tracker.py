"""MapWatch — Discovery Listing Tracker.

Every cycle:
1. Load the previous snapshot from ``listing_current``
2. Poll every surface → panel → region → page
3. Diff against the previous snapshot (ADDED / REMOVED / MOVED)
4. Register islands seen for the first time in the catalog
5. Append events, replace ``listing_current``, rebuild ``listing_presence``

A surface or panel whose poll failed keeps its previous placements, so a
failed request is never mistaken for islands leaving the listing.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Set, Tuple

from mapwatch.connectors.base import ListingProvider, PanelRef
from mapwatch.connectors.epic.client import EpicAuthError
from mapwatch.connectors.epic.transformer import to_placement
from mapwatch.core.logging import get_logger
from mapwatch.core.pacer import RequestPacer
from mapwatch.models.catalog_models import MapRecord
from mapwatch.models.control_models import ListingCycleStats
from mapwatch.models.listing_models import (
    EventType,
    ListingCurrent,
    ListingEvent,
    ListingPlacement,
    ListingPresence,
    placement_id,
)
from mapwatch.store import DocumentStore
from mapwatch.workers.listing_differ import build_presence, diff_snapshots

logger = get_logger("workers.listing")

AUTO_DISCOVER_SOURCE = "listing_auto_discover"
LOOKUP_CHUNK = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Snapshot:
    placements: List[ListingPlacement] = field(default_factory=list)
    failed_surfaces: Set[str] = field(default_factory=set)
    failed_panels: Set[Tuple[str, str]] = field(default_factory=set)

    def covers(self, placement: ListingPlacement) -> bool:
        """True if this poll actually observed the placement's scope."""
        return (
            placement.surface not in self.failed_surfaces
            and (placement.surface, placement.panel) not in self.failed_panels
        )


class ListingTracker:
    def __init__(
        self,
        provider: ListingProvider,
        store: DocumentStore,
        surfaces: Sequence[str],
        regions: Sequence[str],
        max_pages: int = 2,
        pacer: Optional[RequestPacer] = None,
        request_timeout: float = 45.0,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.provider = provider
        self.store = store
        self.surfaces = list(surfaces)
        self.regions = list(regions)
        self.max_pages = max_pages
        self.pacer = pacer or RequestPacer(10.0)
        self.request_timeout = request_timeout
        self._now = now
        self.last_stats: Optional[ListingCycleStats] = None

    # ── Polling ──

    async def _call(self, coro):
        await self.pacer.wait()
        return await asyncio.wait_for(coro, timeout=self.request_timeout)

    async def fetch_panel(self, surface: str, panel: PanelRef) -> List[ListingPlacement]:
        """All placements of one panel across regions.

        Each region is paged until ``has_more`` is false. Position is the
        rank within that region's list. An island listed in several regions
        is kept once, under the first region in configured order.
        """
        placements: List[ListingPlacement] = []
        seen: Set[str] = set()
        for region in self.regions:
            region_items: List[dict] = []
            for page_index in range(self.max_pages):
                page = await self._call(
                    self.provider.list_placements(
                        surface, panel.panel_name, panel.variant, region, page_index
                    )
                )
                region_items.extend(page.results)
                if not page.has_more:
                    break

            for position, item in enumerate(region_items):
                placement = to_placement(surface, panel.panel_name, region, position, item)
                if placement is None or placement.map_id in seen:
                    continue
                seen.add(placement.map_id)
                placements.append(placement)
        return placements

    async def fetch_snapshot(self) -> Snapshot:
        snapshot = Snapshot()
        for surface in self.surfaces:
            try:
                panels = await self._call(self.provider.list_panels(surface))
            except EpicAuthError:
                raise
            except Exception as e:
                logger.error(f"Error fetching panels for {surface}: {e!r}", extra={"surface": surface})
                snapshot.failed_surfaces.add(surface)
                continue

            logger.info(f"Surface {surface}: {len(panels)} panels", extra={"surface": surface})
            for panel in panels:
                try:
                    snapshot.placements.extend(await self.fetch_panel(surface, panel))
                except EpicAuthError:
                    raise
                except Exception as e:
                    logger.error(
                        f"Error fetching panel {panel.panel_name}: {e!r}",
                        extra={"surface": surface, "panel": panel.panel_name},
                    )
                    snapshot.failed_panels.add((surface, panel.panel_name))
        return snapshot

    # ── Persistence ──

    def load_current(self) -> List[ListingPlacement]:
        return [row.to_placement() for row in self.store.scroll_all(ListingCurrent)]

    def register_new_maps(self, map_ids: Set[str], now: datetime) -> int:
        ids = sorted(map_ids)
        known: Set[str] = set()
        for i in range(0, len(ids), LOOKUP_CHUNK):
            chunk = ids[i : i + LOOKUP_CHUNK]
            known.update(r.id for r in self.store.find(MapRecord, MapRecord.id.in_(chunk)))
        new_records = [
            MapRecord(id=map_id, first_indexed=now, ingestion_source=AUTO_DISCOVER_SOURCE)
            for map_id in ids
            if map_id not in known
        ]
        if new_records:
            self.store.bulk_upsert(new_records)
            logger.info(f"Found {len(new_records)} new maps in discovery")
        return len(new_records)

    def persist(
        self,
        current: List[ListingPlacement],
        events: List[ListingEvent],
        now: datetime,
    ) -> int:
        new_maps = self.register_new_maps({p.map_id for p in current}, now)
        self.store.insert_many([event.to_row() for event in events])
        self.store.bulk_upsert([p.to_row(now) for p in current])
        self.store.bulk_delete(
            ListingCurrent,
            [
                placement_id((e.surface, e.panel, e.map_id, e.region))
                for e in events
                if e.type == EventType.REMOVED
            ],
        )
        self.store.replace_all(ListingPresence, build_presence(current, now))
        return new_maps

    # ── Cycle ──

    async def run_cycle(self) -> ListingCycleStats:
        started = self._now()
        clock_start = time.monotonic()
        logger.info(
            f"Monitoring {len(self.surfaces)} surfaces across {len(self.regions)} regions"
        )

        previous = await asyncio.to_thread(self.load_current)
        snapshot = await self.fetch_snapshot()

        carried = [p for p in previous if not snapshot.covers(p)]
        current = snapshot.placements + carried
        events = diff_snapshots(previous, current, started)

        new_maps = await asyncio.to_thread(self.persist, current, events, started)

        stats = ListingCycleStats(
            started_at=started,
            previous_placements=len(previous),
            current_placements=len(current),
            added=sum(1 for e in events if e.type == EventType.ADDED),
            removed=sum(1 for e in events if e.type == EventType.REMOVED),
            moved=sum(1 for e in events if e.type == EventType.MOVED),
            new_maps=new_maps,
            failed_surfaces=sorted(snapshot.failed_surfaces),
            failed_panels=sorted(f"{s}/{p}" for s, p in snapshot.failed_panels),
            duration_ms=int((time.monotonic() - clock_start) * 1000),
        )
        self.last_stats = stats
        logger.info(
            f"Discovery updated: {len(events)} changes (ADDED: {stats.added}, "
            f"REMOVED: {stats.removed}, MOVED: {stats.moved}), {new_maps} new maps, "
            f"{len(carried)} placements carried over from failed scopes",
            extra={"duration_ms": stats.duration_ms},
        )
        return stats
