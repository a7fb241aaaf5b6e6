import base64

import pytest

from apps.shared.errors import ConfigurationError
from apps.shared.oauth_state import STATE_EXPIRY, generate_state, validate_state


def test_fresh_state_validates():
    assert validate_state(generate_state())


def test_expired_state_is_rejected():
    issued = 1_700_000_000
    state = generate_state(now=issued)

    assert validate_state(state, now=issued + STATE_EXPIRY)
    assert not validate_state(state, now=issued + STATE_EXPIRY + 1)


def test_tampered_state_is_rejected():
    decoded = base64.urlsafe_b64decode(generate_state()).decode()
    timestamp, nonce, signature = decoded.rsplit(":", 2)
    forged = base64.urlsafe_b64encode(f"{int(timestamp) + 100}:{nonce}:{signature}".encode()).decode()

    assert not validate_state(forged)


@pytest.mark.parametrize("state", [None, "", "not-base64!", base64.urlsafe_b64encode(b"only:two").decode()])
def test_malformed_state_is_rejected(state):
    assert not validate_state(state)


def test_missing_secret_is_configuration_error(monkeypatch):
    monkeypatch.delenv("STATE_SECRET")

    with pytest.raises(ConfigurationError):
        generate_state()
