"""Tests for per-map summary recomputation."""

from datetime import timedelta

from sqlalchemy.exc import OperationalError

from helpers import NOW, frozen
from mapwatch.models.catalog_models import MapRecord, MapSummary
from mapwatch.models.listing_models import ListingCurrent, ListingEventRecord, ListingPresence
from mapwatch.models.metric_models import MetricSample, sample_id
from mapwatch.workers.summary_calculator import SummaryCalculator


def naive(ts):
    return ts.replace(tzinfo=None)


def add_sample(store, peak, age, map_id="m1"):
    ts = NOW - age
    store.upsert(MetricSample(id=sample_id(map_id, ts), map_id=map_id, timestamp=ts, peak_ccu=peak))


def add_event(store, event_type, position, age, previous=None, map_id="m1"):
    store.insert_many(
        [
            ListingEventRecord(
                event_type=event_type,
                surface="S",
                panel="P",
                map_id=map_id,
                region="EU",
                position=position,
                previous_position=previous,
                timestamp=NOW - age,
            )
        ]
    )


def seed(store):
    add_sample(store, 100, timedelta(hours=1))
    add_sample(store, 300, timedelta(hours=2))
    add_sample(store, 50, timedelta(days=3))
    add_sample(store, 10, timedelta(days=20))
    add_event(store, "ADDED", 8, timedelta(days=10))
    add_event(store, "ADDED", 5, timedelta(days=2))
    add_event(store, "MOVED", 2, timedelta(days=1), previous=5)
    add_event(store, "REMOVED", 1, timedelta(hours=12), previous=1)


def test_recompute_fills_every_field(store):
    seed(store)
    summary = SummaryCalculator(store, now=frozen(NOW)).recompute("m1")

    assert summary.current_value == 100
    assert summary.peak_24h == 300
    assert summary.peak_7d == 300
    assert summary.peak_30d == 300
    assert summary.avg_24h == 200
    assert summary.avg_7d == 150
    assert summary.avg_30d == 115
    assert summary.in_listing is False
    assert summary.listing_appearances_7d == 1
    # The REMOVED event's position is where it left from, not a rank it held
    assert summary.best_position == 2
    assert naive(summary.first_seen) == naive(NOW - timedelta(days=10))
    assert naive(summary.last_seen) == naive(NOW - timedelta(hours=12))
    assert store.get(MapSummary, "m1").peak_24h == 300


def test_peaks_cover_their_own_windows(store):
    add_sample(store, 40, timedelta(hours=2))
    add_sample(store, 90, timedelta(days=3))
    add_sample(store, 250, timedelta(days=20))
    add_sample(store, 900, timedelta(days=40))

    summary = SummaryCalculator(store, now=frozen(NOW)).recompute("m1")
    assert summary.peak_24h == 40
    assert summary.peak_7d == 90
    assert summary.peak_30d == 250


def test_current_listing_counts_towards_presence_and_best_position(store):
    seed(store)
    store.upsert(ListingPresence(map_id="m1", surface_count=1, panel_count=1, first_surface="S", best_position=0))
    store.upsert(ListingCurrent(id="S|P|m1|EU", surface="S", panel="P", map_id="m1", region="EU", position=0))

    summary = SummaryCalculator(store, now=frozen(NOW)).recompute("m1")
    assert summary.in_listing is True
    assert summary.best_position == 0


def test_map_without_data_gets_zeroes(store):
    summary = SummaryCalculator(store, now=frozen(NOW)).recompute("empty")
    assert summary.current_value == 0
    assert summary.peak_24h == 0
    assert summary.avg_30d == 0
    assert summary.listing_appearances_7d == 0
    assert summary.best_position is None
    assert summary.first_seen is None


def test_failed_sub_query_keeps_previous_value(store, monkeypatch):
    seed(store)
    calculator = SummaryCalculator(store, now=frozen(NOW))
    calculator.recompute("m1")
    add_sample(store, 999, timedelta(minutes=10))

    def broken_aggregate(*args, **kwargs):
        raise OperationalError("SELECT max", {}, Exception("timeout"))

    monkeypatch.setattr(store, "aggregate", broken_aggregate)
    summary = calculator.recompute("m1")

    assert summary.current_value == 999
    assert summary.peak_24h == 300
    assert summary.peak_30d == 300
    assert summary.avg_24h == 200
    assert summary.best_position == 2
    assert summary.listing_appearances_7d == 1

    stored = store.get(MapSummary, "m1")
    assert stored.current_value == 999
    assert stored.peak_24h == 300


def test_recompute_all_walks_catalog(store):
    for map_id in ["a", "b", "c"]:
        store.upsert(MapRecord(id=map_id))
    add_sample(store, 7, timedelta(minutes=5), map_id="b")

    result = SummaryCalculator(store, now=frozen(NOW)).recompute_all(batch_size=2)

    assert result["processed"] == 3
    assert result["failed"] == 0
    assert store.count(MapSummary) == 3
    assert store.get(MapSummary, "b").current_value == 7
