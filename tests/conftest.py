"""Shared fixtures: per-test SQLite database, fake Strava HTTP API, API client."""

import os
import time

# Must be set before any apps.* import creates the engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("STATE_SECRET", "test-state-secret")

import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from apps.shared.database import Base, get_db
from apps.strava import store
from apps.strava.constants import STRAVA_API_BASE, STRAVA_TOKEN_URL
from apps.strava.main import app

ATHLETE_ID = 100
OTHER_ATHLETE_ID = 200


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text is not None else ("" if json_data is None else repr(json_data))

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeStrava:
    """
    In-memory stand-in for the Strava REST API and Cloudflare purge endpoint.

    activities: full list of summaries, served in PAGE_SIZE pages
    streams: activity id -> stream payload, or an int status to answer with
    """

    def __init__(self):
        self.activities = []
        self.streams = {}
        self.page_status = None
        self.token_status = 200
        self.token_counter = 0
        self.purge_status = 200
        self.get_calls = []
        self.post_calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.get_calls.append({"url": url, "headers": headers, "params": params})
        if url == f"{STRAVA_API_BASE}/athlete/activities":
            if self.page_status is not None:
                return FakeResponse(self.page_status, {"message": "error"})
            page, per_page = params["page"], params["per_page"]
            start = (page - 1) * per_page
            return FakeResponse(200, self.activities[start:start + per_page])

        if url.startswith(f"{STRAVA_API_BASE}/activities/") and url.endswith("/streams"):
            activity_id = int(url.split("/")[-2])
            answer = self.streams.get(activity_id, {"time": {"data": [0, 1, 2]}})
            if isinstance(answer, int):
                return FakeResponse(answer, {"message": "error"})
            return FakeResponse(200, answer)

        return FakeResponse(404, {"message": "Not Found"})

    def post(self, url, data=None, json=None, headers=None, timeout=None):
        self.post_calls.append({"url": url, "data": data, "json": json})
        if url == STRAVA_TOKEN_URL:
            if self.token_status != 200:
                return FakeResponse(self.token_status, {"message": "Bad Request"})
            self.token_counter += 1
            return FakeResponse(200, {
                "access_token": f"access-{self.token_counter}",
                "refresh_token": f"refresh-{self.token_counter}",
                "expires_at": int(time.time()) + 6 * 3600,
            })
        if "purge_cache" in url:
            return FakeResponse(self.purge_status, {"success": self.purge_status == 200})
        return FakeResponse(404, {"message": "Not Found"})

    @property
    def stream_calls(self):
        return [c for c in self.get_calls if c["url"].endswith("/streams")]

    @property
    def token_calls(self):
        return [c for c in self.post_calls if c["url"] == STRAVA_TOKEN_URL]


def make_activity(activity_id, day=1, **overrides):
    payload = {
        "id": activity_id,
        "name": f"Activity {activity_id}",
        "type": "Run",
        "start_date": f"2024-03-{day:02d}T07:00:00Z",
        "distance": 5000.0,
        "moving_time": 1500,
        "elapsed_time": 1600,
        "total_elevation_gain": 42.0,
        "kudos_count": 3,
    }
    payload.update(overrides)
    return payload


@pytest.fixture(autouse=True)
def environment(monkeypatch):
    monkeypatch.delenv("CLOUDFLARE_ZONE_ID", raising=False)
    monkeypatch.delenv("CLOUDFLARE_API_TOKEN", raising=False)
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    monkeypatch.delenv("FRONTEND_URL", raising=False)
    monkeypatch.setenv("STRAVA_SYNC_ALLOWED_ATHLETES", str(ATHLETE_ID))


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'mirror.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def strava(monkeypatch):
    fake = FakeStrava()
    monkeypatch.setattr(requests, "get", fake.get)
    monkeypatch.setattr(requests, "post", fake.post)
    return fake


@pytest.fixture
def client(session_factory, strava):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def app_config(db):
    store.save_app_config(db, "12345", "client-secret")
    db.commit()


@pytest.fixture
def user(db, app_config):
    """A linked athlete whose token is valid for hours"""
    store.upsert_user(
        db,
        athlete_id=ATHLETE_ID,
        firstname="Test",
        lastname="Runner",
        profile_pic="pic.jpg",
        access_token="valid-token",
        refresh_token="refresh-0",
        expires_at=int(time.time()) + 6 * 3600,
    )
    db.commit()
    return store.get_user(db, ATHLETE_ID)
