"""
Bounded sync units for mirroring Strava data.

Each function performs one idempotent slice of a longer task and reports
whether the task is complete. The caller keeps invoking until it is. No
state is kept between calls beyond what is already in the database.
"""
import time
import logging
from datetime import datetime, time as dt_time, timezone
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from apps.shared.database import commit_or_raise
from apps.shared.errors import RateLimitedError, ServiceError, UpstreamError, ValidationError
from apps.strava import client, store
from apps.strava.cache import purge_activity_cache
from apps.strava.constants import PAGE_SIZE, DEFAULT_STREAM_BATCH, MAX_STREAM_BATCH
from apps.strava.models import StravaUser
from apps.strava.utils import get_valid_token

logger = logging.getLogger(__name__)


def sync_cutoff(user: StravaUser) -> int:
    """Epoch seconds of the start of the user's sync_since day (UTC)"""
    return int(datetime.combine(user.sync_since, dt_time.min, tzinfo=timezone.utc).timestamp())


def _with_warnings(result: Dict[str, Any], warnings: List[str]) -> Dict[str, Any]:
    if warnings:
        result["warnings"] = warnings
    return result


def sync_activity_page(db: Session, user: StravaUser, page: int, base_url: str) -> Dict[str, Any]:
    """
    Fetch one page of activity summaries and upsert them.

    A page shorter than PAGE_SIZE (or empty) marks the sync as complete and
    stamps last_synced_at. A full last page is reported incomplete; the next
    call sees an empty page and finishes.

    All upserts of one page commit together or not at all.
    """
    if page < 1:
        raise ValidationError("page must be a positive integer")

    athlete_id = user.athlete_id
    access_token = get_valid_token(db, user)
    activities = client.get_activity_page(access_token, page=page, after=sync_cutoff(user))
    now = int(time.time())
    complete = len(activities) < PAGE_SIZE

    try:
        for activity in activities:
            store.upsert_activity(db, athlete_id, activity)
        if complete:
            store.mark_synced(db, user, now)
    except ServiceError:
        db.rollback()
        raise
    except (KeyError, TypeError, ValueError) as e:
        db.rollback()
        raise UpstreamError(f"Strava returned a malformed activity on page {page}") from e

    commit_or_raise(db, f"Saving activity page {page}")
    logger.info(f"Synced {len(activities)} activities from page {page} for athlete {athlete_id}")

    warnings = []
    warning = purge_activity_cache(base_url, athlete_id)
    if warning:
        warnings.append(warning)

    if not activities:
        return _with_warnings({"synced": 0, "complete": True}, warnings)

    return _with_warnings(
        {"synced": len(activities), "complete": complete, "next_page": page + 1},
        warnings,
    )


def backfill_streams(db: Session, user: StravaUser, limit: int = DEFAULT_STREAM_BATCH) -> Dict[str, Any]:
    """
    Fetch detail streams for up to `limit` activities that have none yet.

    Activities are taken newest first. Every stream is committed as soon as
    it is stored, so an interrupted batch keeps its progress. A 429 from
    Strava stops the batch at once and is reported as rateLimited.
    """
    if not 1 <= limit <= MAX_STREAM_BATCH:
        raise ValidationError(f"limit must be between 1 and {MAX_STREAM_BATCH}")

    athlete_id = user.athlete_id
    access_token = get_valid_token(db, user)
    pending = store.activities_without_streams(db, athlete_id, limit=limit)

    synced = 0
    rate_limited = False
    for activity_id in pending:
        try:
            data = client.get_activity_streams(access_token, activity_id)
        except RateLimitedError:
            logger.warning(f"Rate limited after {synced} streams for athlete {athlete_id}")
            rate_limited = True
            break

        if data is None:
            # Gone on Strava; store an empty stream so it stops being retried
            logger.info(f"Activity {activity_id} has no streams on Strava")
            data = {}

        try:
            store.save_stream(db, athlete_id, activity_id, data)
        except ServiceError:
            db.rollback()
            raise
        commit_or_raise(db, f"Saving streams for activity {activity_id}")
        synced += 1

    remaining = store.count_activities_without_streams(db, athlete_id)
    logger.info(f"Backfilled {synced} streams for athlete {athlete_id}, {remaining} remaining")

    result = {
        "synced": synced,
        "remaining": remaining,
        "complete": remaining == 0 and not rate_limited,
    }
    if rate_limited:
        result["rateLimited"] = True
    return result
