"""MapWatch — Worker Control State.

Tier assignments, the cold-tier rotation cursor and per-cycle statistics.
None of these are ground truth; all can be rebuilt or reset.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Tier(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class TierAssignment(BaseModel):
    map_id: str
    tier: Tier
    classified_at: datetime


class TierSet(BaseModel):
    """One complete classification run. Replaced wholesale, never patched."""

    hot: List[str] = Field(default_factory=list)
    warm: List[str] = Field(default_factory=list)
    cold: List[str] = Field(default_factory=list)
    classified_at: datetime
    degraded: bool = False  # Activity query failed; everything went to cold

    def members(self, tier: Tier) -> List[str]:
        return {Tier.HOT: self.hot, Tier.WARM: self.warm, Tier.COLD: self.cold}[tier]

    def assignments(self) -> List[TierAssignment]:
        return [
            TierAssignment(map_id=map_id, tier=tier, classified_at=self.classified_at)
            for tier in Tier
            for map_id in self.members(tier)
        ]

    def sizes(self) -> Dict[str, int]:
        return {tier.value: len(self.members(tier)) for tier in Tier}


class RotationCursor(BaseModel):
    """Durable position of the cold-tier rotation."""

    cursor_index: int = 0
    total_population_size: int = 0
    last_run_at: Optional[datetime] = None
    cycles_completed: int = 0


class CycleStats(BaseModel):
    """Outcome of one collector cycle."""

    collector: str
    started_at: datetime
    planned: int = 0
    processed: int = 0
    successful: int = 0
    no_data: int = 0
    failed: int = 0
    rate_limited: int = 0
    skipped: int = 0
    datapoints: int = 0
    written: int = 0
    write_failures: int = 0
    duration_ms: int = 0


class ListingCycleStats(BaseModel):
    """Outcome of one discovery listing poll."""

    started_at: datetime
    previous_placements: int = 0
    current_placements: int = 0
    added: int = 0
    removed: int = 0
    moved: int = 0
    new_maps: int = 0
    failed_surfaces: List[str] = Field(default_factory=list)
    failed_panels: List[str] = Field(default_factory=list)
    duration_ms: int = 0


class CompactionStats(BaseModel):
    """Outcome of one compaction run."""

    started_at: datetime
    daily_processed: int = 0
    daily_compacted: int = 0
    samples_kept: int = 0
    samples_deleted: int = 0
    bands: List[Dict[str, int]] = Field(default_factory=list)
    duration_ms: int = 0
