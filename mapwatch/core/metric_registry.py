"""MapWatch — Ecosystem Metric Registry.

Defines the canonical set of island metrics, the provider field each one is
read from, and its semantic type. The type decides how a metric is merged
when several buckets are folded into one (see ``workers.compactor``), so it
is fixed per metric and never inferred from the values.
"""

from enum import Enum
from typing import Dict, List, Optional


class MetricType(str, Enum):
    """How a metric is categorised."""

    PEAK = "peak"  # Highest observed value: merged with max
    COUNT = "count"  # Counts and totals: merged with sum
    RATIO = "ratio"  # Per-unit averages: recomputed from merged totals


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self,
        name: str,
        api_field: str,
        metric_type: MetricType,
        unit: str = "",
        description: str = "",
        numerator: Optional[str] = None,
        denominator: Optional[str] = None,
    ):
        self.name = name
        self.api_field = api_field
        self.metric_type = metric_type
        self.unit = unit
        self.description = description
        self.numerator = numerator
        self.denominator = denominator

    @property
    def is_float(self) -> bool:
        return self.metric_type == MetricType.RATIO

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value})>"


# ─────────────────────────────────────────────
# ECOSYSTEM METRICS: Canonical Registry
# ─────────────────────────────────────────────

ECOSYSTEM_METRICS: Dict[str, MetricDefinition] = {
    "peak_ccu": MetricDefinition(
        "peak_ccu", "peakCCU", MetricType.PEAK, "players", "Peak concurrent players"
    ),
    "unique_players": MetricDefinition(
        "unique_players",
        "uniquePlayers",
        MetricType.COUNT,
        "players",
        "Distinct players in the bucket",
    ),
    "plays": MetricDefinition("plays", "plays", MetricType.COUNT, "count", "Sessions started"),
    "minutes_played": MetricDefinition(
        "minutes_played", "minutesPlayed", MetricType.COUNT, "minutes", "Total minutes played"
    ),
    "avg_minutes_per_player": MetricDefinition(
        "avg_minutes_per_player",
        "averageMinutesPerPlayer",
        MetricType.RATIO,
        "minutes",
        "Minutes played per unique player",
        numerator="minutes_played",
        denominator="unique_players",
    ),
    "favorites": MetricDefinition(
        "favorites", "favorites", MetricType.COUNT, "count", "Times favorited"
    ),
    "recommendations": MetricDefinition(
        "recommendations", "recommendations", MetricType.COUNT, "count", "Times recommended"
    ),
}

# Metric used to rank and summarise island activity
ACTIVITY_METRIC = "peak_ccu"


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────


def metrics_by_type(metric_type: MetricType) -> List[MetricDefinition]:
    """Return all metrics of a given type."""
    return [m for m in ECOSYSTEM_METRICS.values() if m.metric_type == metric_type]
