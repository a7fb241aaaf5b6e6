"""
Strava database models: app credentials, linked athletes, activities and streams
"""
from sqlalchemy import Column, Integer, BigInteger, String, Text, Date, DateTime, Float, func
from cryptography.fernet import InvalidToken
from apps.shared.database import Base
from apps.shared.encryption import decrypt_token
from apps.strava.constants import DEFAULT_SYNC_SINCE


def _decrypt_or_raw(value: str) -> str:
    try:
        return decrypt_token(value)
    except (InvalidToken, ValueError, TypeError):
        # Rows written before encryption was enabled hold plaintext
        return value


class AppConfig(Base):
    """
    Single-row table holding the Strava OAuth client credentials.
    Only one row should ever exist with id=1.
    """
    __tablename__ = "strava_app_config"

    id = Column(Integer, primary_key=True)  # Always 1
    client_id = Column(String(100), nullable=False)
    _client_secret = Column("client_secret", String(500), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def client_secret(self) -> str:
        return _decrypt_or_raw(self._client_secret)


class StravaUser(Base):
    """
    A linked Strava athlete and its OAuth tokens.
    Tokens are encrypted at rest and never serialized by to_dict().
    """
    __tablename__ = "strava_users"

    athlete_id = Column(BigInteger, primary_key=True, autoincrement=False)  # Strava athlete id
    firstname = Column(String(255))
    lastname = Column(String(255))
    profile_pic = Column(String(500))
    _access_token = Column("access_token", String(500), nullable=False)
    _refresh_token = Column("refresh_token", String(500), nullable=False)
    expires_at = Column(BigInteger, nullable=False)  # Unix timestamp
    last_synced_at = Column(BigInteger, nullable=True)  # Unix timestamp
    sync_since = Column(Date, nullable=False, default=DEFAULT_SYNC_SINCE)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def access_token(self) -> str:
        return _decrypt_or_raw(self._access_token)

    @property
    def refresh_token(self) -> str:
        return _decrypt_or_raw(self._refresh_token)

    def to_dict(self):
        """Public representation, without token fields"""
        return {
            "strava_id": self.athlete_id,
            "firstname": self.firstname,
            "lastname": self.lastname,
            "profile_pic": self.profile_pic,
            "expires_at": self.expires_at,
            "last_synced_at": self.last_synced_at,
            "sync_since": self.sync_since.isoformat() if self.sync_since else None,
        }


class StravaActivity(Base):
    """
    One activity summary, keyed by its Strava id so re-syncing overwrites
    instead of duplicating. Fields we do not model live in data_json.
    """
    __tablename__ = "strava_activities"

    id = Column(BigInteger, primary_key=True, autoincrement=False)  # Use Strava ID
    athlete_id = Column(BigInteger, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True, index=True)
    distance = Column(Float, nullable=False)  # meters
    moving_time = Column(Integer, nullable=False)  # seconds
    elapsed_time = Column(Integer, nullable=False)  # seconds
    total_elevation_gain = Column(Float, nullable=False)  # meters
    data_json = Column(Text, nullable=False)

    # Metadata
    fetched_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        """Column values; data_json is left as stored text"""
        return {
            "id": self.id,
            "strava_id": self.athlete_id,
            "name": self.name,
            "type": self.type,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "distance": self.distance,
            "moving_time": self.moving_time,
            "elapsed_time": self.elapsed_time,
            "total_elevation_gain": self.total_elevation_gain,
            "data_json": self.data_json,
        }


class StravaStream(Base):
    """
    Detail time series for one activity. The unique constraint on
    activity_id keeps it to one row per activity.
    """
    __tablename__ = "strava_streams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    athlete_id = Column(BigInteger, nullable=False, index=True)
    activity_id = Column(BigInteger, nullable=False, unique=True)
    data_json = Column(Text, nullable=False)
    fetched_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
