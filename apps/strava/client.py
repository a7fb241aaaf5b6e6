"""
Strava API client

Thin wrappers over the Strava REST endpoints the sync units use. Each call
is one blocking request with a timeout; failures are mapped onto the
service error taxonomy and never retried here.
"""
import os
import logging
from typing import Any, Dict, List, Optional

import requests
from stravalib.client import Client

from apps.shared.errors import RateLimitedError, UnauthorizedError, UpstreamError, TokenRefreshError
from apps.strava.constants import STRAVA_API_BASE, STRAVA_TOKEN_URL, PAGE_SIZE, STREAM_KEYS

logger = logging.getLogger(__name__)


def _timeout() -> float:
    return float(os.getenv("STRAVA_HTTP_TIMEOUT", "15"))


def _auth_headers(access_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _raise_for_status(response: requests.Response, what: str) -> None:
    """Map a non-success Strava response onto a service error"""
    if response.status_code == 401:
        raise UnauthorizedError(f"Strava rejected the access token while fetching {what}")
    if response.status_code == 429:
        raise RateLimitedError(f"Rate limited by Strava while fetching {what}")
    if not 200 <= response.status_code < 300:
        raise UpstreamError(f"Strava error {response.status_code} while fetching {what}", status=response.status_code)


def _get(url: str, access_token: str, params: Optional[Dict[str, Any]], what: str) -> requests.Response:
    try:
        return requests.get(url, headers=_auth_headers(access_token), params=params, timeout=_timeout())
    except requests.RequestException as e:
        logger.error(f"Request to Strava for {what} failed: {e}")
        raise UpstreamError(f"Could not reach Strava while fetching {what}") from e


def get_activity_page(access_token: str, page: int, after: int, per_page: int = PAGE_SIZE) -> List[Dict[str, Any]]:
    """
    Fetch one page of the athlete's activity summaries started after the
    given epoch timestamp. Strava orders them most recent first.
    """
    response = _get(
        f"{STRAVA_API_BASE}/athlete/activities",
        access_token,
        {"page": page, "per_page": per_page, "after": after},
        f"activity page {page}",
    )
    _raise_for_status(response, f"activity page {page}")

    try:
        activities = response.json()
    except ValueError as e:
        raise UpstreamError("Strava returned an unreadable activity page", status=response.status_code) from e

    if not isinstance(activities, list):
        raise UpstreamError("Strava returned an unexpected activity page shape", status=response.status_code)
    return activities


def get_activity_streams(access_token: str, activity_id: int) -> Optional[Any]:
    """
    Fetch the detail streams of one activity, keyed by stream type.
    Returns None when Strava has no such activity (404).
    """
    what = f"streams for activity {activity_id}"
    response = _get(
        f"{STRAVA_API_BASE}/activities/{activity_id}/streams",
        access_token,
        {"keys": ",".join(STREAM_KEYS), "key_by_type": "true"},
        what,
    )
    if response.status_code == 404:
        return None
    _raise_for_status(response, what)

    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(f"Strava returned unreadable {what}", status=response.status_code) from e


def refresh_access_token(client_id: str, client_secret: str, refresh_token: str) -> Dict[str, Any]:
    """
    Exchange a refresh token for a new access/refresh/expiry triple.

    Raises:
        TokenRefreshError: On any non-success or malformed answer
    """
    try:
        response = requests.post(
            STRAVA_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            timeout=_timeout(),
        )
    except requests.RequestException as e:
        raise TokenRefreshError("Could not reach Strava to refresh the access token") from e

    if response.status_code != 200:
        logger.warning(f"Token refresh rejected by Strava: {response.status_code} {response.text[:200]}")
        raise TokenRefreshError(f"Failed to refresh token (Strava status {response.status_code})")

    try:
        token_data = response.json()
        return {
            "access_token": token_data["access_token"],
            "refresh_token": token_data["refresh_token"],
            "expires_at": int(token_data["expires_at"]),
        }
    except (ValueError, KeyError, TypeError) as e:
        raise TokenRefreshError("Strava returned an unexpected token response") from e


def exchange_code(client_id: str, client_secret: str, code: str) -> Dict[str, Any]:
    """
    Exchange an OAuth authorization code for tokens and the athlete profile.

    Returns a dict with access_token, refresh_token, expires_at and athlete
    (id, firstname, lastname, profile).
    """
    client = Client()
    token_response = client.exchange_code_for_token(
        client_id=client_id,
        client_secret=client_secret,
        code=code,
    )

    access_token = token_response["access_token"]
    athlete = token_response.get("athlete")

    # Older stravalib releases drop the athlete from the token response
    if not athlete or "id" not in athlete:
        client.access_token = access_token
        profile = client.get_athlete()
        athlete = {
            "id": profile.id,
            "firstname": profile.firstname,
            "lastname": profile.lastname,
            "profile": profile.profile,
        }

    return {
        "access_token": access_token,
        "refresh_token": token_response["refresh_token"],
        "expires_at": int(token_response["expires_at"]),
        "athlete": athlete,
    }
