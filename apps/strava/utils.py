"""
Utility functions for Strava token management
"""
import time
import logging
from typing import Optional

from sqlalchemy.orm import Session

from apps.shared.errors import ConfigurationError, ServiceError, StorageError, log_and_sanitize_error
from apps.strava import store
from apps.strava.client import refresh_access_token
from apps.strava.constants import TOKEN_REFRESH_MARGIN
from apps.strava.models import StravaUser

logger = logging.getLogger(__name__)


def needs_refresh(expires_at: int, buffer_seconds: int = TOKEN_REFRESH_MARGIN, now: Optional[float] = None) -> bool:
    """Check if token expires within buffer time"""
    now = time.time() if now is None else now
    return now >= (expires_at - buffer_seconds)


def refresh_strava_token(db: Session, athlete_id: int) -> StravaUser:
    """
    Refresh an athlete's access token and persist the new triple.

    The athlete row is locked and re-read first: if a concurrent call has
    already refreshed, its tokens are used and Strava is not contacted.
    The new refresh token is committed before this returns, so no remote
    call is made with a token that is not yet durable.

    Rolls back if the refresh or the update fails.
    """
    try:
        user = store.get_user(db, athlete_id, for_update=True)
        if user is None:
            raise ConfigurationError(f"No Strava authentication found for athlete {athlete_id}")

        if not needs_refresh(user.expires_at):
            # Someone else refreshed while we waited for the lock
            db.commit()
            return user

        config = store.get_app_config(db)
        if config is None:
            raise ConfigurationError("App not configured, cannot refresh token")

        token_data = refresh_access_token(config.client_id, config.client_secret, user.refresh_token)
        store.save_tokens(
            db,
            user,
            access_token=token_data["access_token"],
            refresh_token=token_data["refresh_token"],
            expires_at=token_data["expires_at"],
        )
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        sanitized_msg, _ = log_and_sanitize_error(e, "Token refresh", "Failed to store refreshed token")
        raise StorageError(sanitized_msg) from e

    logger.info(f"Refreshed Strava token for athlete {athlete_id}, expires at {user.expires_at}")
    return user


def get_valid_token(db: Session, user: StravaUser) -> str:
    """
    Get a valid access token, refreshing if necessary.
    Returns access token string.
    """
    if needs_refresh(user.expires_at):
        user = refresh_strava_token(db, user.athlete_id)

    return user.access_token
