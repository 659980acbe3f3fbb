"""MapWatch — Discovery Listing Models.

Boundary records (pydantic) for placements and change events, plus the
tables they are persisted into:

- ``listing_current``: one row per (surface, panel, map_id, region), overwritten
  every poll.
- ``listing_events``: append-only change log.
- ``listing_presence``: per-map rollup rebuilt from each new snapshot.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel
from sqlmodel import SQLModel, Field

PlacementKey = Tuple[str, str, str, str]


def placement_id(key: PlacementKey) -> str:
    """Row id for a placement key. ``|`` does not occur in surface/panel/region names."""
    return "|".join(key)


# ─────────────────────────────────────────────
# PYDANTIC RECORDS
# ─────────────────────────────────────────────


class EventType(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MOVED = "MOVED"


class ListingPlacement(BaseModel):
    """An island's rank within one (surface, panel, region) listing."""

    model_config = {"frozen": True}

    surface: str
    panel: str
    map_id: str
    region: str
    position: int

    @property
    def key(self) -> PlacementKey:
        return (self.surface, self.panel, self.map_id, self.region)

    def to_row(self, now: datetime) -> "ListingCurrent":
        return ListingCurrent(
            id=placement_id(self.key),
            surface=self.surface,
            panel=self.panel,
            map_id=self.map_id,
            region=self.region,
            position=self.position,
            last_updated=now,
        )


class ListingEvent(BaseModel):
    """A single ADDED / REMOVED / MOVED change for one placement key."""

    model_config = {"frozen": True}

    type: EventType
    surface: str
    panel: str
    map_id: str
    region: str
    position: Optional[int] = None
    previous_position: Optional[int] = None
    timestamp: datetime

    def to_row(self) -> "ListingEventRecord":
        return ListingEventRecord(
            event_type=self.type.value,
            surface=self.surface,
            panel=self.panel,
            map_id=self.map_id,
            region=self.region,
            position=self.position,
            previous_position=self.previous_position,
            timestamp=self.timestamp,
        )


# ─────────────────────────────────────────────
# DATABASE MODELS
# ─────────────────────────────────────────────


class ListingCurrent(SQLModel, table=True):
    """Latest known placement per key."""

    __tablename__ = "listing_current"

    id: str = Field(primary_key=True, description="surface|panel|map_id|region")
    surface: str = Field(index=True)
    panel: str = Field(index=True)
    map_id: str = Field(index=True)
    region: str = Field(index=True)
    position: int
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_placement(self) -> ListingPlacement:
        return ListingPlacement(
            surface=self.surface,
            panel=self.panel,
            map_id=self.map_id,
            region=self.region,
            position=self.position,
        )


class ListingEventRecord(SQLModel, table=True):
    """Append-only change log. Never updated or deleted by the workers."""

    __tablename__ = "listing_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_type: str = Field(index=True, description="ADDED | REMOVED | MOVED")
    surface: str
    panel: str
    map_id: str = Field(index=True)
    region: str
    position: Optional[int] = None
    previous_position: Optional[int] = None
    timestamp: datetime = Field(index=True)


class ListingPresence(SQLModel, table=True):
    """Is this island featured anywhere right now, and how prominently."""

    __tablename__ = "listing_presence"

    map_id: str = Field(primary_key=True)
    is_featured: bool = True
    surface_count: int = 0
    panel_count: int = 0
    first_surface: str = ""
    best_position: Optional[int] = None
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
