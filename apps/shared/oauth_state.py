"""
OAuth State Management

Signed, time-bound OAuth state values so the callback can reject forged or
replayed authorization responses.
"""
import os
import time
import hmac
import hashlib
import secrets
import base64
import binascii

from apps.shared.errors import ConfigurationError


# State expiry time in seconds (10 minutes)
STATE_EXPIRY = 600


def _state_secret() -> bytes:
    secret = os.getenv("STATE_SECRET")
    if not secret:
        raise ConfigurationError(
            "STATE_SECRET environment variable must be set for OAuth security"
        )
    return secret.encode()


def _sign(payload: str) -> str:
    # 32 hex characters (128 bits) of HMAC-SHA256
    return hmac.new(_state_secret(), payload.encode(), hashlib.sha256).hexdigest()[:32]


def generate_state(now: int = None) -> str:
    """
    Generate a state parameter of the form base64("timestamp:nonce:signature").

    Raises:
        ConfigurationError: If STATE_SECRET is not configured
    """
    timestamp = int(time.time()) if now is None else now
    payload = f"{timestamp}:{secrets.token_urlsafe(16)}"
    full_state = f"{payload}:{_sign(payload)}"
    return base64.urlsafe_b64encode(full_state.encode()).decode()


def validate_state(state: str, now: int = None) -> bool:
    """
    Check that a state value decodes, carries a valid signature and has not
    expired. Returns False for anything malformed.

    Raises:
        ConfigurationError: If STATE_SECRET is not configured
    """
    _state_secret()
    if not state:
        return False

    try:
        decoded = base64.urlsafe_b64decode(state.encode()).decode()
        timestamp_str, nonce, received_signature = decoded.rsplit(":", 2)
        timestamp = int(timestamp_str)
    except (ValueError, UnicodeDecodeError, binascii.Error):
        return False

    expected_signature = _sign(f"{timestamp_str}:{nonce}")
    if not hmac.compare_digest(received_signature, expected_signature):
        return False

    current_time = int(time.time()) if now is None else now
    return timestamp + STATE_EXPIRY >= current_time
