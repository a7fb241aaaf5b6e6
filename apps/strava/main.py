"""
Strava Mirror API

Mirrors linked athletes' Strava activities and activity streams into the
local database. Sync runs as bounded units: the caller re-invokes
POST /api/users/{id}/sync and POST /api/users/{id}/streams until the
response says complete.
"""
import os
import json
import logging
from typing import Any, Optional
from urllib.parse import urlencode

from fastapi import FastAPI, APIRouter, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.shared.database import get_db, Base, engine, check_db_connection, commit_or_raise
from apps.shared.errors import (
    ConfigurationError,
    NotFoundError,
    ServiceError,
    ValidationError,
    log_and_sanitize_error,
)
from apps.shared.oauth_state import generate_state, validate_state
from apps.strava import store
from apps.strava.client import exchange_code
from apps.strava.constants import STRAVA_AUTHORIZE_URL, OAUTH_SCOPE, DEFAULT_STREAM_BATCH
from apps.strava.models import StravaUser
from apps.strava.permissions import require_sync_permission
from apps.strava.schemas import AppConfigRequest, SyncConfigRequest, UserResponse
from apps.strava.tasks import sync_activity_page, backfill_streams

logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Strava Mirror",
    version="1.0.0",
    description="Resumable mirror of Strava activities and streams",
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)

router = APIRouter(prefix="/api")


# ──────────────────────────────────────────────────────────────────────────────
# Error responses: always {error, message}
# ──────────────────────────────────────────────────────────────────────────────

_HTTP_ERROR_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "RATE_LIMITED",
}


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": "VALIDATION_ERROR", "message": "; ".join(problems) or "Invalid request"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = "API endpoint not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": _HTTP_ERROR_CODES.get(exc.status_code, "INTERNAL_ERROR"), "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    sanitized_msg, _ = log_and_sanitize_error(exc, f"{request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "INTERNAL_ERROR", "message": sanitized_msg})


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def _load_json(text: Optional[str]) -> Any:
    """Stored payloads may be corrupt; surface that as null, never an error"""
    if text is None:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _activity_dict(activity) -> dict:
    data = activity.to_dict()
    data["data_json"] = _load_json(activity.data_json)
    return data


def _get_user_or_404(db: Session, athlete_id: int) -> StravaUser:
    user = store.get_user(db, athlete_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


# ──────────────────────────────────────────────────────────────────────────────
# Setup and OAuth
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/health")
def health():
    """Health check endpoint"""
    db_connected = check_db_connection()
    return {
        "status": "ok" if db_connected else "degraded",
        "service": "strava-mirror",
        "database": "connected" if db_connected else "disconnected"
    }


@router.post("/config")
def save_config(body: AppConfigRequest, db: Session = Depends(get_db)):
    """Store the Strava OAuth client credentials (single row)."""
    store.save_app_config(db, body.client_id, body.client_secret)
    commit_or_raise(db, "Saving app config")
    logger.info("Strava app config saved")
    return {"success": True}


@router.get("/auth/login")
def login(request: Request, db: Session = Depends(get_db)):
    """
    Initiate OAuth flow by redirecting to Strava.
    The athlete comes back to /api/auth/callback.
    """
    config = store.get_app_config(db)
    if config is None:
        raise ConfigurationError("App not configured")

    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": str(request.url_for("oauth_callback")),
        "approval_prompt": "force",
        "scope": OAUTH_SCOPE,
        "state": generate_state(),
    }
    return RedirectResponse(url=f"{STRAVA_AUTHORIZE_URL}?{urlencode(params)}", status_code=302)


@router.get("/auth/callback", name="oauth_callback")
def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    OAuth callback endpoint.
    Exchanges the code for tokens and stores the athlete.
    """
    if error:
        raise ValidationError(f"Strava auth error: {error}")
    if not code:
        raise ValidationError("No code provided")
    if not validate_state(state):
        raise ValidationError("Invalid or expired state parameter")

    config = store.get_app_config(db)
    if config is None:
        raise ConfigurationError("App not configured")

    try:
        token_data = exchange_code(config.client_id, config.client_secret, code)
        athlete = token_data["athlete"]
        athlete_id = int(athlete["id"])
        store.upsert_user(
            db,
            athlete_id=athlete_id,
            firstname=athlete.get("firstname"),
            lastname=athlete.get("lastname"),
            profile_pic=athlete.get("profile"),
            access_token=token_data["access_token"],
            refresh_token=token_data["refresh_token"],
            expires_at=token_data["expires_at"],
        )
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    except Exception as e:
        # Rollback any pending database changes to maintain session consistency
        db.rollback()
        sanitized_msg, _ = log_and_sanitize_error(
            e,
            "OAuth token exchange",
            "OAuth authorization failed. Please try again."
        )
        raise ServiceError(sanitized_msg)

    logger.info(f"Linked Strava athlete {athlete_id}")
    frontend_url = (os.getenv("FRONTEND_URL") or str(request.base_url)).rstrip("/")
    return RedirectResponse(url=f"{frontend_url}/user/{athlete_id}", status_code=302)


# ──────────────────────────────────────────────────────────────────────────────
# Users
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/users", response_model=list[UserResponse])
def list_users(db: Session = Depends(get_db)):
    return [user.to_dict() for user in store.list_users(db)]


@router.get("/users/{athlete_id}", response_model=UserResponse)
def get_user(athlete_id: int, db: Session = Depends(get_db)):
    return _get_user_or_404(db, athlete_id).to_dict()


@router.patch("/users/{athlete_id}/config", response_model=UserResponse)
def update_user_config(athlete_id: int, body: SyncConfigRequest, db: Session = Depends(get_db)):
    """Change how far back activity sync reaches."""
    user = _get_user_or_404(db, athlete_id)
    store.update_sync_since(db, user, body.sync_since)
    commit_or_raise(db, "Updating sync boundary")
    return user.to_dict()


# ──────────────────────────────────────────────────────────────────────────────
# Sync units
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/users/{athlete_id}/sync")
def sync_page(athlete_id: int, request: Request, page: int = Query(1), db: Session = Depends(get_db)):
    """
    Sync one page of activities.

    Returns {synced, complete, next_page}. Call again with next_page until
    complete is true.
    """
    # Permission comes before existence so unknown ids learn nothing
    require_sync_permission(athlete_id)
    user = _get_user_or_404(db, athlete_id)
    return sync_activity_page(db, user, page, base_url=str(request.base_url))


@router.post("/users/{athlete_id}/streams")
def sync_streams(athlete_id: int, limit: int = Query(DEFAULT_STREAM_BATCH), db: Session = Depends(get_db)):
    """
    Backfill streams for up to `limit` activities that lack them.

    Returns {synced, remaining, complete} plus rateLimited when Strava
    throttled the batch.
    """
    user = _get_user_or_404(db, athlete_id)
    return backfill_streams(db, user, limit=limit)


# ──────────────────────────────────────────────────────────────────────────────
# Activities
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/users/{athlete_id}/activities")
def list_user_activities(athlete_id: int, db: Session = Depends(get_db)):
    """All stored activities of an athlete, newest first."""
    return [_activity_dict(activity) for activity in store.list_activities(db, athlete_id)]


@router.delete("/users/{athlete_id}/activities")
def delete_user_activities(athlete_id: int, db: Session = Depends(get_db)):
    """Remove every stored activity and stream of an athlete."""
    deleted = store.delete_all_activities(db, athlete_id)
    commit_or_raise(db, "Deleting activities")
    logger.info(f"Deleted {deleted} activities for athlete {athlete_id}")
    return {"success": True, "deleted": deleted}


@router.get("/activities/{activity_id}")
def get_activity(activity_id: int, db: Session = Depends(get_db)):
    """One activity with its streams (null when not backfilled yet)."""
    activity = store.get_activity(db, activity_id)
    if activity is None:
        raise NotFoundError("Activity not found")

    data = _activity_dict(activity)
    stream = store.get_stream(db, activity_id)
    data["streams"] = _load_json(stream.data_json) if stream else None
    return data


@router.delete("/activities/{activity_id}")
def delete_activity(activity_id: int, db: Session = Depends(get_db)):
    if not store.delete_activity(db, activity_id):
        db.rollback()
        raise NotFoundError("Activity not found")
    commit_or_raise(db, "Deleting activity")
    return {"success": True}


app.include_router(router)
