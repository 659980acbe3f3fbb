"""MapWatch — Map & Listing Read Routes."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from mapwatch.core.logging import get_logger
from mapwatch.database import get_store
from mapwatch.models.catalog_models import MapSummary
from mapwatch.models.listing_models import ListingCurrent, ListingEventRecord
from mapwatch.models.metric_models import MetricSample
from mapwatch.store import DocumentStore

logger = get_logger("api.maps")

router = APIRouter(tags=["Maps"])


# ── Maps ──


@router.get("/maps/{map_id}/summary", response_model=MapSummary)
async def get_map_summary(map_id: str, store: DocumentStore = Depends(get_store)):
    """Latest computed summary for one island."""
    summary = store.get(MapSummary, map_id)
    if summary is None:
        raise HTTPException(status_code=404, detail=f"No summary for map {map_id}")
    return summary


@router.get("/maps/{map_id}/samples", response_model=List[MetricSample])
async def get_map_samples(
    map_id: str,
    hours: int = Query(24, ge=1, le=24 * 30),
    store: DocumentStore = Depends(get_store),
):
    """Raw samples for one island over the trailing ``hours``, oldest first."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    return store.find(
        MetricSample,
        MetricSample.map_id == map_id,
        MetricSample.timestamp >= since,
        order_by=MetricSample.timestamp.asc(),
    )


# ── Listing ──


@router.get("/listing/current", response_model=List[ListingCurrent])
async def get_listing_current(
    surface: Optional[str] = None,
    panel: Optional[str] = None,
    region: Optional[str] = None,
    limit: int = Query(500, ge=1, le=5000),
    store: DocumentStore = Depends(get_store),
):
    """Current placements, best position first."""
    criteria = []
    if surface:
        criteria.append(ListingCurrent.surface == surface)
    if panel:
        criteria.append(ListingCurrent.panel == panel)
    if region:
        criteria.append(ListingCurrent.region == region)
    return store.find(
        ListingCurrent, *criteria, order_by=ListingCurrent.position.asc(), limit=limit
    )


@router.get("/listing/events", response_model=List[ListingEventRecord])
async def get_listing_events(
    map_id: Optional[str] = None,
    event_type: Optional[str] = Query(None, pattern="^(ADDED|REMOVED|MOVED)$"),
    limit: int = Query(100, ge=1, le=1000),
    store: DocumentStore = Depends(get_store),
):
    """Most recent listing changes, newest first."""
    criteria = []
    if map_id:
        criteria.append(ListingEventRecord.map_id == map_id)
    if event_type:
        criteria.append(ListingEventRecord.event_type == event_type)
    return store.find(
        ListingEventRecord,
        *criteria,
        order_by=ListingEventRecord.timestamp.desc(),
        limit=limit,
    )
