"""Tests for the listing poll → diff → persist cycle."""

import asyncio

from helpers import NOW, FakeListingProvider, frozen, instant_pacer
from mapwatch.models.catalog_models import MapRecord
from mapwatch.models.listing_models import (
    ListingCurrent,
    ListingEventRecord,
    ListingPresence,
)
from mapwatch.workers.listing_tracker import AUTO_DISCOVER_SOURCE, ListingTracker

FIRST = {
    ("S", "P", "EU"): [["a", "b"], ["c"]],
    ("S", "P", "NAE"): [["b", "d"]],
}
SECOND = {
    ("S", "P", "EU"): [["b", "a"]],
    ("S", "P", "NAE"): [["d"]],
}


def tracker(store, provider, max_pages=2):
    return ListingTracker(
        provider,
        store,
        surfaces=["S"],
        regions=["EU", "NAE"],
        max_pages=max_pages,
        pacer=instant_pacer(),
        now=frozen(NOW),
    )


def current_positions(store):
    return {(r.map_id, r.region): r.position for r in store.find(ListingCurrent)}


def test_first_poll_adds_everything(store):
    provider = FakeListingProvider({"S": ["P"]}, FIRST)
    stats = asyncio.run(tracker(store, provider).run_cycle())

    assert stats.added == 4 and stats.removed == 0 and stats.moved == 0
    # b is listed in both regions but kept once, under the first region
    assert current_positions(store) == {
        ("a", "EU"): 0,
        ("b", "EU"): 1,
        ("c", "EU"): 2,
        ("d", "NAE"): 1,
    }
    assert store.count(ListingEventRecord) == 4
    assert store.count(ListingPresence) == 4


def test_new_maps_are_registered_in_catalog(store):
    store.upsert(MapRecord(id="a", ingestion_source="manual"))
    provider = FakeListingProvider({"S": ["P"]}, FIRST)
    stats = asyncio.run(tracker(store, provider).run_cycle())

    assert stats.new_maps == 3
    assert store.get(MapRecord, "a").ingestion_source == "manual"
    assert store.get(MapRecord, "d").ingestion_source == AUTO_DISCOVER_SOURCE


def test_second_poll_diffs_against_stored_snapshot(store):
    asyncio.run(tracker(store, FakeListingProvider({"S": ["P"]}, FIRST)).run_cycle())
    stats = asyncio.run(tracker(store, FakeListingProvider({"S": ["P"]}, SECOND)).run_cycle())

    assert (stats.added, stats.removed, stats.moved) == (0, 1, 3)
    assert current_positions(store) == {("a", "EU"): 1, ("b", "EU"): 0, ("d", "NAE"): 0}
    assert store.get(ListingPresence, "c") is None
    assert store.count(ListingEventRecord) == 8

    removed = store.find(ListingEventRecord, ListingEventRecord.event_type == "REMOVED")
    assert [(e.map_id, e.previous_position) for e in removed] == [("c", 2)]


def test_identical_poll_is_quiet(store):
    asyncio.run(tracker(store, FakeListingProvider({"S": ["P"]}, FIRST)).run_cycle())
    stats = asyncio.run(tracker(store, FakeListingProvider({"S": ["P"]}, FIRST)).run_cycle())

    assert (stats.added, stats.removed, stats.moved) == (0, 0, 0)
    assert store.count(ListingEventRecord) == 4


def test_paging_stops_at_max_pages(store):
    listings = {("S", "P", "EU"): [["a"], ["b"], ["c"]]}
    provider = FakeListingProvider({"S": ["P"]}, listings)
    asyncio.run(tracker(store, provider, max_pages=2).run_cycle())

    assert [c for c in provider.page_calls if c[2] == "EU"] == [
        ("S", "P", "EU", 0),
        ("S", "P", "EU", 1),
    ]
    assert set(current_positions(store)) == {("a", "EU"), ("b", "EU")}


def test_failed_panel_keeps_previous_placements(store):
    asyncio.run(tracker(store, FakeListingProvider({"S": ["P"]}, FIRST)).run_cycle())
    failing = FakeListingProvider({"S": ["P"]}, {}, failing_panels=(("S", "P"),))
    stats = asyncio.run(tracker(store, failing).run_cycle())

    assert (stats.added, stats.removed, stats.moved) == (0, 0, 0)
    assert stats.failed_panels == ["S/P"]
    assert len(current_positions(store)) == 4


def test_failed_surface_keeps_previous_placements(store):
    asyncio.run(tracker(store, FakeListingProvider({"S": ["P"]}, FIRST)).run_cycle())
    failing = FakeListingProvider({"S": ["P"]}, {}, failing_surfaces=("S",))
    stats = asyncio.run(tracker(store, failing).run_cycle())

    assert stats.removed == 0
    assert stats.failed_surfaces == ["S"]
    assert store.count(ListingPresence) == 4
