"""
Strava service constants
"""
from datetime import date

STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"
STRAVA_API_BASE = "https://www.strava.com/api/v3"

# Permissions requested on login
OAUTH_SCOPE = "read,activity:read_all,profile:read_all"

# Activities per sync page. A shorter page is treated as the last one.
PAGE_SIZE = 30

# Refresh tokens that expire within this many seconds
TOKEN_REFRESH_MARGIN = 60

# Default sync boundary for new users
DEFAULT_SYNC_SINCE = date(2018, 1, 1)

# Activities processed per stream backfill call
DEFAULT_STREAM_BATCH = 5
MAX_STREAM_BATCH = 100

STREAM_KEYS = (
    "time",
    "latlng",
    "distance",
    "altitude",
    "velocity_smooth",
    "heartrate",
    "cadence",
    "watts",
    "temp",
    "moving",
    "grade_smooth",
)

# Fallback type for summaries that omit one
DEFAULT_ACTIVITY_TYPE = "Workout"
