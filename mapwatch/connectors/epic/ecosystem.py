"""MapWatch — Ecosystem Metrics Endpoint.

``GET {ecosystem_base_url}/islands/{code}/metrics/{interval}?from=&to=``
returns every metric for an island in one response, each as a list of
``{"timestamp", "value"}`` buckets.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from mapwatch.config import settings
from mapwatch.connectors.base import MetricsProvider
from mapwatch.connectors.epic.client import EpicAPIError, EpicClient
from mapwatch.core.logging import get_logger

logger = get_logger("epic.ecosystem")

GRANULARITIES = ("minute", "hour", "day")


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 with milliseconds and a ``Z`` suffix, as the API expects."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


class EcosystemAPI(MetricsProvider):
    """Island metrics from the public ecosystem API."""

    def __init__(self, client: EpicClient, base_url: str | None = None):
        self.client = client
        self.base_url = (base_url or settings.ecosystem_base_url).rstrip("/")

    async def get_metrics(
        self,
        map_id: str,
        granularity: str,
        from_ts: datetime,
        to_ts: datetime,
    ) -> Optional[Dict[str, Any]]:
        if granularity not in GRANULARITIES:
            raise ValueError(f"Unknown granularity: {granularity}")
        url = f"{self.base_url}/islands/{map_id}/metrics/{granularity}"
        params = {"from": format_timestamp(from_ts), "to": format_timestamp(to_ts)}
        try:
            resp = await self.client.request("GET", url, params=params)
        except EpicAPIError as e:
            if e.status_code == 404:
                return None
            raise
        if not resp.content:
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.warning(f"Non-JSON metrics response for {map_id}", extra={"map_id": map_id})
            return None
        return data if isinstance(data, dict) else None
