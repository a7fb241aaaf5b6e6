"""
Edge cache invalidation for the public activity list.

Purging is best effort: every failure becomes a warning string for the
sync result, never an exception.
"""
import os
import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
PURGE_TIMEOUT = 5


def activity_list_url(base_url: str, athlete_id: int) -> str:
    return f"{base_url.rstrip('/')}/api/users/{athlete_id}/activities"


def purge_activity_cache(base_url: str, athlete_id: int) -> Optional[str]:
    """
    Ask Cloudflare to drop the cached activity list of one athlete.

    Returns None on success, otherwise a warning describing what went wrong.
    """
    zone_id = os.getenv("CLOUDFLARE_ZONE_ID")
    api_token = os.getenv("CLOUDFLARE_API_TOKEN")
    public_base = os.getenv("PUBLIC_BASE_URL") or base_url

    if not zone_id or not api_token:
        logger.debug("Cache purge skipped: Cloudflare credentials not configured")
        return "Cache purge skipped: Cloudflare credentials not configured"

    url = activity_list_url(public_base, athlete_id)
    try:
        response = requests.post(
            f"{CLOUDFLARE_API_BASE}/zones/{zone_id}/purge_cache",
            headers={"Authorization": f"Bearer {api_token}"},
            json={"files": [url]},
            timeout=PURGE_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.warning(f"Cache purge for {url} failed: {e}")
        return f"Cache purge failed: {type(e).__name__}"

    if not 200 <= response.status_code < 300:
        logger.warning(f"Cache purge for {url} rejected: {response.status_code}")
        return f"Cache purge failed with status {response.status_code}"

    try:
        succeeded = response.json().get("success", True)
    except (ValueError, AttributeError):
        succeeded = True
    if not succeeded:
        logger.warning(f"Cache purge for {url} reported failure")
        return "Cache purge reported failure"

    logger.info(f"Purged cached activity list {url}")
    return None
