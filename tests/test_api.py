"""Tests for the read API."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from mapwatch.database import get_store
from mapwatch.main import app
from mapwatch.models.catalog_models import MapSummary
from mapwatch.models.listing_models import ListingCurrent, ListingEventRecord
from mapwatch.models.metric_models import MetricSample, sample_id
from mapwatch.scheduler.jobs import get_workers


@pytest.fixture
def client(store):
    """Test client without lifespan, so no scheduler or real database."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_workers] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_summary_found_and_missing(client, store):
    store.upsert(MapSummary(map_id="m1", current_value=42, peak_24h=90))

    response = client.get("/maps/m1/summary")
    assert response.status_code == 200
    assert response.json()["current_value"] == 42

    assert client.get("/maps/nope/summary").status_code == 404


def test_samples_window(client, store):
    now = datetime.now(timezone.utc)
    for age, peak in [(timedelta(hours=1), 10), (timedelta(hours=3), 20), (timedelta(hours=30), 30)]:
        ts = now - age
        store.upsert(MetricSample(id=sample_id("m1", ts), map_id="m1", timestamp=ts, peak_ccu=peak))

    response = client.get("/maps/m1/samples", params={"hours": 24})
    assert response.status_code == 200
    assert [s["peak_ccu"] for s in response.json()] == [20, 10]

    assert client.get("/maps/m1/samples", params={"hours": 0}).status_code == 422


def test_listing_current_filters_and_orders(client, store):
    for map_id, region, position in [("a", "EU", 3), ("b", "EU", 1), ("c", "NAE", 0)]:
        store.upsert(
            ListingCurrent(
                id=f"S|P|{map_id}|{region}", surface="S", panel="P",
                map_id=map_id, region=region, position=position,
            )
        )

    response = client.get("/listing/current", params={"region": "EU"})
    assert [row["map_id"] for row in response.json()] == ["b", "a"]


def test_listing_events_newest_first(client, store):
    now = datetime.now(timezone.utc)
    store.insert_many(
        [
            ListingEventRecord(
                event_type=kind, surface="S", panel="P", map_id="a", region="EU",
                position=0, timestamp=now - timedelta(minutes=minutes),
            )
            for kind, minutes in [("ADDED", 20), ("MOVED", 10), ("REMOVED", 5)]
        ]
    )

    response = client.get("/listing/events", params={"map_id": "a"})
    assert [e["event_type"] for e in response.json()] == ["REMOVED", "MOVED", "ADDED"]

    response = client.get("/listing/events", params={"event_type": "MOVED"})
    assert len(response.json()) == 1
    assert client.get("/listing/events", params={"event_type": "BOGUS"}).status_code == 422


def test_workers_status_without_scheduler(client):
    response = client.get("/workers/status")
    assert response.status_code == 200
    assert response.json()["workers"] is None
