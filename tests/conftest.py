"""Shared fixtures: in-memory store and an instant request pacer."""

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from helpers import instant_pacer
from mapwatch.models import catalog_models, listing_models, metric_models  # noqa: F401
from mapwatch.store import DocumentStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return DocumentStore(engine)


@pytest.fixture
def pacer():
    return instant_pacer()
