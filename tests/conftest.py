import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

# Must be set before config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("LOG_FILE", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from data.database import Base, build_engine, create_tables
from main import app  # import your FastAPI app
from services.cache import get_cache_client, get_mock_cache_client
from models.events import EventCreate
from services.store import SqlExperimentStore, get_store
from config import config

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
config.valid_tokens = ["fake-client-token"]

engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create tables once
create_tables(bind=engine)


def override_get_store():
    return SqlExperimentStore(session_factory=TestingSessionLocal)

app.dependency_overrides[get_store] = override_get_store


TEST_CACHE_CLIENT = get_mock_cache_client()

def override_get_cache_client():
    return TEST_CACHE_CLIENT

app.dependency_overrides[get_cache_client] = override_get_cache_client


@pytest.fixture(autouse=True)
def setup_database():
    # Every test starts from empty tables and no cached sweep report
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    TEST_CACHE_CLIENT.backend = get_mock_cache_client().backend
    yield

@pytest.fixture
def store():
    return SqlExperimentStore(session_factory=TestingSessionLocal)

@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer fake-client-token"}

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c

@pytest.fixture
def seed_events(store):
    """Record `impressions` and `conversions` events for one variant."""
    def seed(experiment_id, variant_id, impressions, conversions):
        for event_type, count in (("impression", impressions), ("conversion", conversions)):
            for i in range(count):
                store.record_event(EventCreate(
                    experiment_id=experiment_id,
                    variant_id=variant_id,
                    event_type=event_type,
                    user_id=f"user-{variant_id}-{i}",
                ))
    return seed
