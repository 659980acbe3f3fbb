"""MapWatch — Time-Series Metric Models.

``MetricSample`` rows are immutable once written. Their identity is
(map_id, timestamp), so re-collecting an overlapping window upserts the same
rows instead of duplicating them.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


def sample_id(map_id: str, timestamp: datetime) -> str:
    """Build the upsert key for a sample: ``<map_id>-<epoch millis>``."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return f"{map_id}-{int(timestamp.timestamp() * 1000)}"


def daily_id(map_id: str, date: str) -> str:
    return f"{map_id}-{date}"


class MetricSample(SQLModel, table=True):
    """One collected bucket of island metrics.

    Only built for buckets with at least one non-null, non-zero metric.
    """

    __tablename__ = "metric_samples"

    id: str = Field(primary_key=True, description="<map_id>-<epoch ms>")
    map_id: str = Field(index=True, nullable=False)
    timestamp: datetime = Field(index=True, nullable=False)
    peak_ccu: Optional[int] = None
    unique_players: Optional[int] = None
    plays: Optional[int] = None
    minutes_played: Optional[int] = None
    avg_minutes_per_player: Optional[float] = None
    favorites: Optional[int] = None
    recommendations: Optional[int] = None
    tier: Optional[str] = Field(default=None, description="hot | warm | cold")
    collection_cycle: str = Field(default="", description="e.g. 10min, 60min")
    data_source: str = Field(default="ecosystem_api")
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DailyMetrics(SQLModel, table=True):
    """Compound per-day document.

    Holds the hourly buckets for one island and date until the compactor
    folds them into a single ``daily_metrics`` summary.
    """

    __tablename__ = "daily_metrics"

    id: str = Field(primary_key=True, description="<map_id>-<YYYY-MM-DD>")
    map_id: str = Field(index=True, nullable=False)
    date: str = Field(index=True, description="YYYY-MM-DD")
    hourly_metrics: Optional[List[Dict[str, Any]]] = Field(
        default=None, sa_column=Column(JSON)
    )
    daily_metrics: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    data_source: str = Field(default="ecosystem_api")
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    compacted_at: Optional[datetime] = None
