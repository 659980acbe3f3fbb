"""MapWatch — Abstract Upstream Providers."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PanelRef(BaseModel):
    """A panel on a discovery surface."""

    panel_name: str
    variant: str = ""
    display_name: str = ""


class PlacementPage(BaseModel):
    """One page of a panel's ranked results for a single region."""

    results: List[Dict[str, Any]] = Field(default_factory=list)
    has_more: bool = False


class MetricsProvider(ABC):
    """Source of per-island activity time series."""

    @abstractmethod
    async def get_metrics(
        self,
        map_id: str,
        granularity: str,
        from_ts: datetime,
        to_ts: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Fetch metrics for one island.

        Args:
            map_id: Island code.
            granularity: One of "minute", "hour", "day".
            from_ts: Window start (inclusive).
            to_ts: Window end.

        Returns:
            ``{providerMetricName: [{"timestamp": ..., "value": ...}]}`` or
            None when the provider has nothing for this island.
        """
        ...


class ListingProvider(ABC):
    """Source of ranked discovery listings."""

    @abstractmethod
    async def list_panels(self, surface: str) -> List[PanelRef]:
        ...

    @abstractmethod
    async def list_placements(
        self,
        surface: str,
        panel: str,
        variant: str,
        region: str,
        page_index: int,
    ) -> PlacementPage:
        ...
