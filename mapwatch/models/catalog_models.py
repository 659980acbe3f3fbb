"""MapWatch — Island Catalog & Summary Models."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field


class MapRecord(SQLModel, table=True):
    """A known island. The catalog is the population every tier is drawn from."""

    __tablename__ = "maps"

    id: str = Field(primary_key=True, description="Island code, e.g. 8530-0110-2817")
    first_indexed: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ingestion_source: str = Field(default="", description="How the island entered the catalog")


class MapSummary(SQLModel, table=True):
    """Denormalized per-island read model.

    Derived from ``metric_samples`` and the listing tables; always safe to
    overwrite or rebuild.
    """

    __tablename__ = "map_summaries"

    map_id: str = Field(primary_key=True)
    current_value: Optional[int] = Field(default=None, description="Latest peak CCU")
    peak_24h: Optional[int] = None
    peak_7d: Optional[int] = None
    peak_30d: Optional[int] = None
    avg_24h: Optional[int] = None
    avg_7d: Optional[int] = None
    avg_30d: Optional[int] = None
    in_listing: Optional[bool] = None
    listing_appearances_7d: Optional[int] = None
    best_position: Optional[int] = None
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    last_calculated: Optional[datetime] = None
