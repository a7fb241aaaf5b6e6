"""
Persistence operations for the Strava mirror.

All writes are single-statement upserts or deletes keyed by primary key or
athlete id, so different athletes never contend. Callers own the
transaction: nothing here commits.
"""
import functools
import json
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.shared.database import dialect_name
from apps.shared.encryption import encrypt_token
from apps.shared.errors import StorageError, log_and_sanitize_error
from apps.shared.upsert import atomic_upsert
from apps.strava.constants import DEFAULT_ACTIVITY_TYPE
from apps.strava.models import AppConfig, StravaUser, StravaActivity, StravaStream

logger = logging.getLogger(__name__)


def _storage_guard(operation: str):
    """Turn database failures inside a store call into StorageError"""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except SQLAlchemyError as e:
                sanitized_msg, _ = log_and_sanitize_error(e, operation)
                raise StorageError(sanitized_msg) from e
        return wrapper
    return decorator


# ──────────────────────────────────────────────────────────────────────────────
# App config
# ──────────────────────────────────────────────────────────────────────────────

@_storage_guard("Saving app config")
def save_app_config(db: Session, client_id: str, client_secret: str) -> None:
    atomic_upsert(
        db,
        AppConfig,
        {"id": 1, "client_id": client_id, "client_secret": encrypt_token(client_secret)},
        conflict_fields=["id"],
        timestamp_field="updated_at",
    )


def get_app_config(db: Session) -> Optional[AppConfig]:
    return db.get(AppConfig, 1)


# ──────────────────────────────────────────────────────────────────────────────
# Users
# ──────────────────────────────────────────────────────────────────────────────

@_storage_guard("Saving user")
def upsert_user(
    db: Session,
    athlete_id: int,
    firstname: Optional[str],
    lastname: Optional[str],
    profile_pic: Optional[str],
    access_token: str,
    refresh_token: str,
    expires_at: int,
) -> None:
    """
    Insert or update a linked athlete after OAuth.

    Only identity and token columns are overwritten; sync_since and
    last_synced_at survive a re-login.
    """
    atomic_upsert(
        db,
        StravaUser,
        {
            "athlete_id": athlete_id,
            "firstname": firstname,
            "lastname": lastname,
            "profile_pic": profile_pic,
            "access_token": encrypt_token(access_token),
            "refresh_token": encrypt_token(refresh_token),
            "expires_at": expires_at,
        },
        conflict_fields=["athlete_id"],
        timestamp_field="updated_at",
    )


def get_user(db: Session, athlete_id: int, for_update: bool = False) -> Optional[StravaUser]:
    """
    Load one athlete. With for_update the row is re-read and, on PostgreSQL,
    locked until the transaction ends, which serializes same-athlete token
    refreshes. SQLite has no row locks, so there it is a fresh read only.
    """
    stmt = select(StravaUser).where(StravaUser.athlete_id == athlete_id)
    if for_update:
        if dialect_name(db) == "postgresql":
            stmt = stmt.with_for_update()
        # Pick up whatever a concurrent writer committed
        stmt = stmt.execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def list_users(db: Session) -> List[StravaUser]:
    return list(db.scalars(select(StravaUser).order_by(StravaUser.firstname, StravaUser.athlete_id)))


@_storage_guard("Saving tokens")
def save_tokens(db: Session, user: StravaUser, access_token: str, refresh_token: str, expires_at: int) -> None:
    """Replace the token triple as one unit"""
    user._access_token = encrypt_token(access_token)
    user._refresh_token = encrypt_token(refresh_token)
    user.expires_at = expires_at
    db.flush()


@_storage_guard("Updating sync boundary")
def update_sync_since(db: Session, user: StravaUser, sync_since: date) -> None:
    user.sync_since = sync_since
    db.flush()


@_storage_guard("Marking sync complete")
def mark_synced(db: Session, user: StravaUser, now: int) -> None:
    user.last_synced_at = now
    db.flush()


# ──────────────────────────────────────────────────────────────────────────────
# Activities
# ──────────────────────────────────────────────────────────────────────────────

def _parse_start_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # Strava sends e.g. 2024-03-01T07:12:45Z
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        logger.warning(f"Unparsable start_date {value!r}")
        return None


def normalize_activity(athlete_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Map a Strava summary activity onto StravaActivity columns"""
    return {
        "id": int(payload["id"]),
        "athlete_id": athlete_id,
        "name": payload.get("name") or "",
        "type": payload.get("type") or payload.get("sport_type") or DEFAULT_ACTIVITY_TYPE,
        "start_date": _parse_start_date(payload.get("start_date")),
        "distance": float(payload.get("distance") or 0),
        "moving_time": int(payload.get("moving_time") or 0),
        "elapsed_time": int(payload.get("elapsed_time") or 0),
        "total_elevation_gain": float(payload.get("total_elevation_gain") or 0),
        "data_json": json.dumps(payload, separators=(",", ":"), sort_keys=True),
    }


@_storage_guard("Saving activity")
def upsert_activity(db: Session, athlete_id: int, payload: Dict[str, Any]) -> None:
    """Insert an activity or fully replace the stored copy"""
    atomic_upsert(
        db,
        StravaActivity,
        normalize_activity(athlete_id, payload),
        conflict_fields=["id"],
        timestamp_field="fetched_at",
    )


def get_activity(db: Session, activity_id: int) -> Optional[StravaActivity]:
    return db.get(StravaActivity, activity_id)


def list_activities(db: Session, athlete_id: int) -> List[StravaActivity]:
    stmt = (
        select(StravaActivity)
        .where(StravaActivity.athlete_id == athlete_id)
        .order_by(StravaActivity.start_date.desc(), StravaActivity.id.desc())
    )
    return list(db.scalars(stmt))


@_storage_guard("Deleting activity")
def delete_activity(db: Session, activity_id: int) -> bool:
    """Delete one activity and its stream. Returns False if it did not exist."""
    db.execute(delete(StravaStream).where(StravaStream.activity_id == activity_id))
    result = db.execute(delete(StravaActivity).where(StravaActivity.id == activity_id))
    return result.rowcount > 0


@_storage_guard("Deleting activities")
def delete_all_activities(db: Session, athlete_id: int) -> int:
    """Delete every activity and stream owned by one athlete"""
    db.execute(delete(StravaStream).where(StravaStream.athlete_id == athlete_id))
    result = db.execute(delete(StravaActivity).where(StravaActivity.athlete_id == athlete_id))
    return result.rowcount


# ──────────────────────────────────────────────────────────────────────────────
# Streams
# ──────────────────────────────────────────────────────────────────────────────

@_storage_guard("Saving stream")
def save_stream(db: Session, athlete_id: int, activity_id: int, data: Any) -> None:
    """One stream row per activity, replaced in place on re-fetch"""
    atomic_upsert(
        db,
        StravaStream,
        {
            "athlete_id": athlete_id,
            "activity_id": activity_id,
            "data_json": json.dumps(data, separators=(",", ":")),
        },
        conflict_fields=["activity_id"],
        update_fields=["data_json"],
        timestamp_field="fetched_at",
    )


def get_stream(db: Session, activity_id: int) -> Optional[StravaStream]:
    return db.scalars(select(StravaStream).where(StravaStream.activity_id == activity_id)).first()


def _missing_streams_query(athlete_id: int):
    return (
        select(StravaActivity.id)
        .outerjoin(StravaStream, StravaStream.activity_id == StravaActivity.id)
        .where(StravaActivity.athlete_id == athlete_id, StravaStream.id.is_(None))
    )


def activities_without_streams(db: Session, athlete_id: int, limit: Optional[int] = None) -> List[int]:
    """Ids of the athlete's activities that have no stream yet, newest first"""
    stmt = _missing_streams_query(athlete_id).order_by(
        StravaActivity.start_date.desc(), StravaActivity.id.desc()
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt))


def count_activities_without_streams(db: Session, athlete_id: int) -> int:
    subquery = _missing_streams_query(athlete_id).subquery()
    return db.scalar(select(func.count()).select_from(subquery))
