"""
Who may run activity page sync.

The allow-list is configuration, read from STRAVA_SYNC_ALLOWED_ATHLETES as
a comma-separated list of athlete ids. Unset or empty means nobody.
"""
import os
import logging
from typing import FrozenSet

from apps.shared.errors import ForbiddenError

logger = logging.getLogger(__name__)


def allowed_sync_athletes() -> FrozenSet[int]:
    raw = os.getenv("STRAVA_SYNC_ALLOWED_ATHLETES", "")
    allowed = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            allowed.add(int(part))
        except ValueError:
            logger.warning(f"Ignoring invalid athlete id {part!r} in STRAVA_SYNC_ALLOWED_ATHLETES")
    return frozenset(allowed)


def can_sync(athlete_id: int) -> bool:
    return athlete_id in allowed_sync_athletes()


def require_sync_permission(athlete_id: int) -> None:
    """Raise ForbiddenError unless the athlete may run page sync"""
    if not can_sync(athlete_id):
        raise ForbiddenError("Sync is restricted to permitted athletes")
