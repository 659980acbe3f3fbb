"""MapWatch — Discovery Listing Differ.

Compares two full snapshots keyed by (surface, panel, map_id, region):

- key only in previous  → REMOVED (previous_position = old position)
- key only in current   → ADDED   (previous_position = None)
- key in both, moved    → MOVED   (both positions)

Keying by island alone would hide moves between panels or regions, and an
island that drops out everywhere must yield one REMOVED per key. ``diff_snapshots``
is a pure function of its inputs.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List

from mapwatch.models.listing_models import (
    EventType,
    ListingEvent,
    ListingPlacement,
    ListingPresence,
    PlacementKey,
)


def _by_key(snapshot: Iterable[ListingPlacement]) -> Dict[PlacementKey, ListingPlacement]:
    # dicts keep insertion order, which keeps event order deterministic
    return {placement.key: placement for placement in snapshot}


def _event(kind: EventType, placement: ListingPlacement, **fields) -> ListingEvent:
    return ListingEvent(
        type=kind,
        surface=placement.surface,
        panel=placement.panel,
        map_id=placement.map_id,
        region=placement.region,
        **fields,
    )


def diff_snapshots(
    previous: Iterable[ListingPlacement],
    current: Iterable[ListingPlacement],
    timestamp: datetime,
) -> List[ListingEvent]:
    """Return REMOVED events (previous order), then ADDED/MOVED (current order)."""
    prev_map = _by_key(previous)
    curr_map = _by_key(current)
    events: List[ListingEvent] = []

    for key, item in prev_map.items():
        if key not in curr_map:
            events.append(
                _event(
                    EventType.REMOVED,
                    item,
                    position=item.position,
                    previous_position=item.position,
                    timestamp=timestamp,
                )
            )

    for key, item in curr_map.items():
        prev = prev_map.get(key)
        if prev is None:
            events.append(
                _event(
                    EventType.ADDED,
                    item,
                    position=item.position,
                    previous_position=None,
                    timestamp=timestamp,
                )
            )
        elif prev.position != item.position:
            events.append(
                _event(
                    EventType.MOVED,
                    item,
                    position=item.position,
                    previous_position=prev.position,
                    timestamp=timestamp,
                )
            )

    return events


def build_presence(
    snapshot: Iterable[ListingPlacement], now: datetime
) -> List[ListingPresence]:
    """Per-island rollup of a snapshot, independent of what changed."""
    grouped: Dict[str, List[ListingPlacement]] = defaultdict(list)
    for placement in snapshot:
        grouped[placement.map_id].append(placement)

    return [
        ListingPresence(
            map_id=map_id,
            is_featured=True,
            surface_count=len({p.surface for p in placements}),
            panel_count=len({(p.surface, p.panel) for p in placements}),
            first_surface=placements[0].surface,
            best_position=min(p.position for p in placements),
            last_updated=now,
        )
        for map_id, placements in grouped.items()
    ]
