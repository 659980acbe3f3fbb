"""MapWatch — Discovery Surface Endpoints.

Panels for a surface: ``POST {discovery_base_url}/{surface}``.
Ranked panel pages: ``POST {discovery_base_url}/{surface}/page``, one region
and one page per call.
"""

from typing import Any, Dict, List

from mapwatch.config import settings
from mapwatch.connectors.base import ListingProvider, PanelRef, PlacementPage
from mapwatch.connectors.epic.client import EpicAPIError, EpicClient
from mapwatch.core.logging import get_logger

logger = get_logger("epic.discovery")

# Returned when a surface is not served in the requested region
INVALID_SURFACE_ERROR = "errors.com.epicgames.discovery.invalid_discovery_surface"


class DiscoveryAPI(ListingProvider):
    """Discovery surfaces, panels and ranked placements."""

    def __init__(
        self,
        client: EpicClient,
        account_id: str | None = None,
        base_url: str | None = None,
        branch: str | None = None,
    ):
        self.client = client
        self.account_id = account_id or settings.epic_account_id
        self.base_url = (base_url or settings.discovery_base_url).rstrip("/")
        self.branch = branch if branch is not None else settings.fortnite_branch

    def _params(self) -> Dict[str, str]:
        return {"appId": "Fortnite", "stream": self.branch}

    async def list_panels(self, surface: str) -> List[PanelRef]:
        resp = await self.client.request(
            "POST", f"{self.base_url}/{surface}", params=self._params(), json_body={}
        )
        data = resp.json()
        if not isinstance(data, dict) or not data.get("panels"):
            logger.warning(f"No panels found for surface: {surface}", extra={"surface": surface})
            return []

        variant = data.get("testVariantName") or ""
        panels = [
            PanelRef(
                panel_name=panel["panelName"],
                variant=variant,
                display_name=panel.get("panelDisplayName") or "",
            )
            for panel in data["panels"]
            if isinstance(panel, dict) and panel.get("panelName")
        ]
        logger.info(f"Fetched {len(panels)} panels for surface: {surface}", extra={"surface": surface})
        return panels

    async def list_placements(
        self,
        surface: str,
        panel: str,
        variant: str,
        region: str,
        page_index: int,
    ) -> PlacementPage:
        body: Dict[str, Any] = {
            "testVariantName": variant,
            "panelName": panel,
            "pageIndex": page_index,
            "playerId": self.account_id,
            "partyMemberIds": [self.account_id],
            "matchmakingRegion": region,
            "platform": "Windows",
            "isCabined": False,
            "ratingAuthority": "ESRB",
            "rating": "ESRB_T",
            "numLocalPlayers": 1,
        }
        try:
            resp = await self.client.request(
                "POST", f"{self.base_url}/{surface}/page", params=self._params(), json_body=body
            )
        except EpicAPIError as e:
            if e.error_code == INVALID_SURFACE_ERROR:
                logger.info(
                    f"Skipping region {region} for panel {panel}: surface not served",
                    extra={"surface": surface, "panel": panel, "region": region},
                )
                return PlacementPage()
            raise

        data = resp.json()
        if not isinstance(data, dict):
            return PlacementPage()
        results = [item for item in data.get("results") or [] if isinstance(item, dict)]
        return PlacementPage(results=results, has_more=bool(data.get("hasMore")) and bool(results))
