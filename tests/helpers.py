"""Fake upstream providers, frozen clocks and payload builders shared by the tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from mapwatch.connectors.base import ListingProvider, MetricsProvider, PanelRef, PlacementPage
from mapwatch.core.pacer import RequestPacer

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


async def _no_sleep(_seconds: float) -> None:
    return None


def instant_pacer() -> RequestPacer:
    return RequestPacer(1000.0, sleep=_no_sleep)


def frozen(ts: datetime):
    return lambda: ts


def metrics_payload(start: datetime, peaks: List[Optional[int]], step_minutes: int = 1) -> Dict[str, Any]:
    """Ecosystem-style payload with one peakCCU entry per step."""
    return {
        "peakCCU": [
            {
                "timestamp": (start + timedelta(minutes=i * step_minutes)).isoformat().replace("+00:00", "Z"),
                "value": value,
            }
            for i, value in enumerate(peaks)
        ]
    }


class FakeMetricsProvider(MetricsProvider):
    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        errors: Optional[Dict[str, Exception]] = None,
    ):
        self.responses = responses or {}
        self.errors = errors or {}
        self.calls: List[Tuple[str, str, datetime, datetime]] = []

    async def get_metrics(self, map_id, granularity, from_ts, to_ts):
        self.calls.append((map_id, granularity, from_ts, to_ts))
        if map_id in self.errors:
            raise self.errors[map_id]
        return self.responses.get(map_id)


class FakeListingProvider(ListingProvider):
    """``listings[(surface, panel, region)]`` is a list of pages of island codes."""

    def __init__(
        self,
        panels: Dict[str, List[str]],
        listings: Dict[Tuple[str, str, str], List[List[str]]],
        failing_surfaces: Tuple[str, ...] = (),
        failing_panels: Tuple[Tuple[str, str], ...] = (),
    ):
        self.panels = panels
        self.listings = listings
        self.failing_surfaces = set(failing_surfaces)
        self.failing_panels = set(failing_panels)
        self.page_calls: List[Tuple[str, str, str, int]] = []

    async def list_panels(self, surface):
        if surface in self.failing_surfaces:
            raise RuntimeError(f"surface {surface} unavailable")
        return [PanelRef(panel_name=name) for name in self.panels.get(surface, [])]

    async def list_placements(self, surface, panel, variant, region, page_index):
        self.page_calls.append((surface, panel, region, page_index))
        if (surface, panel) in self.failing_panels:
            raise RuntimeError(f"panel {panel} unavailable")
        pages = self.listings.get((surface, panel, region), [])
        if page_index >= len(pages):
            return PlacementPage()
        return PlacementPage(
            results=[{"linkCode": code} for code in pages[page_index]],
            has_more=page_index + 1 < len(pages),
        )
