import pytest

from setshop.env import _get_env_int, is_truthy, parse_scopes_env, validate_env

REQUIRED = {
    "SPOTIFY_CLIENT_ID": "spotify-client",
    "SPOTIFY_REDIRECT_URI": "http://localhost:5173/callback",
    "SHOP_SESSION_SECRET": "a-very-long-session-secret",
    "STRIPE_SECRET_KEY": "sk_test_123",
}


@pytest.fixture
def required_env(monkeypatch):
    for key, value in REQUIRED.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


def test_validate_env_accepts_complete_config(required_env) -> None:
    validate_env()


@pytest.mark.parametrize("missing", sorted(REQUIRED))
def test_validate_env_reports_missing(required_env, missing) -> None:
    required_env.delenv(missing)

    with pytest.raises(RuntimeError, match=missing):
        validate_env()


def test_validate_env_rejects_relative_redirect(required_env) -> None:
    required_env.setenv("SPOTIFY_REDIRECT_URI", "/callback")

    with pytest.raises(RuntimeError, match="absolute"):
        validate_env()


def test_validate_env_rejects_short_secret(required_env) -> None:
    required_env.setenv("SHOP_SESSION_SECRET", "short")

    with pytest.raises(RuntimeError, match="16 characters"):
        validate_env()


def test_env_helpers(monkeypatch) -> None:
    assert is_truthy(" Yes ")
    assert not is_truthy("0")
    assert not is_truthy(None)

    monkeypatch.setenv("SPOTIFY_SCOPES", "user-read-email  playlist-modify-private")
    assert parse_scopes_env("SPOTIFY_SCOPES", ["x"]) == ["user-read-email", "playlist-modify-private"]
    monkeypatch.delenv("SPOTIFY_SCOPES")
    assert parse_scopes_env("SPOTIFY_SCOPES", ["x"]) == ["x"]

    monkeypatch.setenv("SHOP_RATE_LIMIT", "abc")
    with pytest.raises(RuntimeError):
        _get_env_int("SHOP_RATE_LIMIT", 1)
