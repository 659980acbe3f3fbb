"""Tests for activity-ranked tier classification."""

from datetime import timedelta

from sqlalchemy.exc import OperationalError

from helpers import NOW, frozen
from mapwatch.models.catalog_models import MapRecord
from mapwatch.models.control_models import Tier
from mapwatch.models.metric_models import MetricSample, sample_id
from mapwatch.workers.tier_classifier import TierClassifier


def add_sample(store, map_id, peak, age=timedelta(hours=1)):
    ts = NOW - age
    store.upsert(MetricSample(id=sample_id(map_id, ts), map_id=map_id, timestamp=ts, peak_ccu=peak))


def seed(store):
    for map_id in ["a", "b", "c", "d", "e", "f"]:
        store.upsert(MapRecord(id=map_id))
    add_sample(store, "a", 500)
    add_sample(store, "a", 900, age=timedelta(hours=2))
    add_sample(store, "b", 700)
    add_sample(store, "c", 300)
    add_sample(store, "d", 300)
    # Outside the activity window
    add_sample(store, "e", 10_000, age=timedelta(hours=30))


def test_tiers_ranked_by_peak(store):
    seed(store)
    tiers = TierClassifier(store, hot_size=1, warm_size=2, now=frozen(NOW)).classify()

    assert tiers.hot == ["a"]
    # c and d tie on peak; id breaks the tie
    assert tiers.warm == ["b", "c"]
    assert tiers.cold == ["d", "e", "f"]
    assert not tiers.degraded


def test_tiers_are_disjoint_and_cover_catalog(store):
    seed(store)
    tiers = TierClassifier(store, hot_size=2, warm_size=2, now=frozen(NOW)).classify()

    members = tiers.hot + tiers.warm + tiers.cold
    assert len(members) == len(set(members))
    assert set(members) == {"a", "b", "c", "d", "e", "f"}
    assert tiers.sizes() == {"hot": 2, "warm": 2, "cold": 2}
    assert {a.tier for a in tiers.assignments() if a.map_id == "f"} == {Tier.COLD}


def test_ranked_map_missing_from_catalog_still_classified(store):
    add_sample(store, "uncatalogued", 50)
    tiers = TierClassifier(store, hot_size=1, warm_size=1, now=frozen(NOW)).classify()
    assert tiers.hot == ["uncatalogued"]


def test_activity_query_failure_degrades_to_cold(store, monkeypatch):
    seed(store)

    def broken_terms(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("boom"))

    monkeypatch.setattr(store, "terms", broken_terms)
    tiers = TierClassifier(store, hot_size=1, warm_size=2, now=frozen(NOW)).classify()

    assert tiers.degraded
    assert tiers.hot == [] and tiers.warm == []
    assert tiers.cold == ["a", "b", "c", "d", "e", "f"]


def test_current_reuses_recent_classification(store):
    seed(store)
    clock = {"now": NOW}
    classifier = TierClassifier(store, hot_size=1, warm_size=1, now=lambda: clock["now"])

    first = classifier.current(timedelta(minutes=10))
    clock["now"] = NOW + timedelta(minutes=5)
    assert classifier.current(timedelta(minutes=10)) is first

    clock["now"] = NOW + timedelta(minutes=11)
    assert classifier.current(timedelta(minutes=10)) is not first
    assert classifier.latest.classified_at == NOW + timedelta(minutes=11)
