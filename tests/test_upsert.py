"""Atomic upserts: insert-then-replace, idempotence and one stream per activity."""

import json

import pytest
from sqlalchemy import func, select

from apps.shared.upsert import atomic_upsert
from apps.strava import store
from apps.strava.models import AppConfig, StravaActivity, StravaStream

from conftest import ATHLETE_ID, make_activity


def _activity_row(session, activity_id):
    row = session.get(StravaActivity, activity_id)
    data = row.to_dict()
    data.pop("start_date")
    return data


def test_insert_then_update_replaces_columns(db):
    atomic_upsert(db, AppConfig, {"id": 1, "client_id": "first", "client_secret": "s1"}, conflict_fields=["id"])
    db.commit()
    atomic_upsert(db, AppConfig, {"id": 1, "client_id": "second", "client_secret": "s2"}, conflict_fields=["id"])
    db.commit()

    rows = db.scalars(select(AppConfig)).all()
    assert len(rows) == 1
    assert rows[0].client_id == "second"


def test_rejects_unknown_columns(db):
    with pytest.raises(ValueError):
        atomic_upsert(db, AppConfig, {"id": 1, "nonexistent_field": "x"}, conflict_fields=["id"])

    with pytest.raises(ValueError):
        atomic_upsert(
            db, AppConfig, {"id": 1, "client_id": "x", "client_secret": "y"},
            conflict_fields=["id"], timestamp_field="nonexistent_timestamp",
        )


def test_app_config_stays_single_row(db):
    store.save_app_config(db, "abc", "secret-1")
    store.save_app_config(db, "def", "secret-2")
    db.commit()

    assert db.scalar(select(func.count()).select_from(AppConfig)) == 1
    config = store.get_app_config(db)
    assert config.client_id == "def"
    assert config.client_secret == "secret-2"
    # Stored encrypted
    assert config._client_secret != "secret-2"


def test_upserting_identical_activity_twice_is_idempotent(session_factory):
    payload = make_activity(1)

    with session_factory() as session:
        store.upsert_activity(session, ATHLETE_ID, payload)
        session.commit()
    with session_factory() as session:
        first = _activity_row(session, 1)

    with session_factory() as session:
        store.upsert_activity(session, ATHLETE_ID, payload)
        session.commit()
    with session_factory() as session:
        second = _activity_row(session, 1)
        count = session.scalar(select(func.count()).select_from(StravaActivity))

    assert first == second
    assert count == 1


def test_activity_upsert_is_full_replace(db):
    store.upsert_activity(db, ATHLETE_ID, make_activity(1, name="Morning Run", kudos_count=3))
    store.upsert_activity(db, ATHLETE_ID, make_activity(1, name="Renamed", distance=None, kudos_count=None))
    db.commit()
    db.expire_all()

    activity = store.get_activity(db, 1)
    assert activity.name == "Renamed"
    assert activity.distance == 0
    assert json.loads(activity.data_json)["kudos_count"] is None


def test_normalize_activity_defaults_missing_fields():
    row = store.normalize_activity(ATHLETE_ID, {"id": "77"})

    assert row["id"] == 77
    assert row["name"] == ""
    assert row["type"] == "Workout"
    assert row["start_date"] is None
    assert row["distance"] == 0.0
    assert row["moving_time"] == 0


def test_stream_upsert_keeps_one_row_per_activity(db):
    store.upsert_activity(db, ATHLETE_ID, make_activity(1))
    store.save_stream(db, ATHLETE_ID, 1, {"time": {"data": [0]}})
    db.commit()
    store.save_stream(db, ATHLETE_ID, 1, {"time": {"data": [0, 1]}})
    db.commit()

    rows = db.scalars(select(StravaStream).where(StravaStream.activity_id == 1)).all()
    assert len(rows) == 1
    assert json.loads(rows[0].data_json) == {"time": {"data": [0, 1]}}
