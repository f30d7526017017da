import string
import time
import urllib.parse

import httpx
import pytest

from auth.errors import ExchangeFailedError
from auth.models import TokenPair
from auth.spotify_oauth2 import (
    SPOTIFY_AUTHORIZE_URL,
    SPOTIFY_TOKEN_URL,
    build_authorization_url,
    exchange_code,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)


def test_code_verifier_length() -> None:
    verifier = generate_code_verifier()

    # 32 random bytes, base64url without padding.
    assert len(verifier) == 43


def test_code_verifier_url_safe() -> None:
    verifier = generate_code_verifier()
    allowed = set(string.ascii_letters + string.digits + "-_")

    assert all(char in allowed for char in verifier)


def test_code_challenge_deterministic() -> None:
    verifier = "deterministic-verifier"

    assert generate_code_challenge(verifier) == generate_code_challenge(verifier)


def test_code_challenge_is_s256() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_state_is_128_bit_hex() -> None:
    state = generate_state()

    assert len(state) == 32
    assert int(state, 16) >= 0


def test_states_are_unique() -> None:
    states = {generate_state() for _ in range(20_000)}

    assert len(states) == 20_000


def test_build_authorization_url_contains_required_params() -> None:
    url = build_authorization_url(
        client_id="client123",
        redirect_uri="http://localhost:5173/callback",
        scopes=["playlist-modify-public", "playlist-modify-private"],
        state="state123",
        code_challenge="challenge123",
    )

    assert url.startswith(SPOTIFY_AUTHORIZE_URL + "?")
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    assert query["response_type"] == ["code"]
    assert query["client_id"] == ["client123"]
    assert query["redirect_uri"] == ["http://localhost:5173/callback"]
    assert query["scope"] == ["playlist-modify-public playlist-modify-private"]
    assert query["state"] == ["state123"]
    assert query["code_challenge"] == ["challenge123"]
    assert query["code_challenge_method"] == ["S256"]


@pytest.mark.asyncio
async def test_exchange_code_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        json={
            "access_token": "access-1",
            "token_type": "Bearer",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "scope": "playlist-modify-private",
        },
    )

    tokens = await exchange_code(
        client_id="client123",
        code="code123",
        redirect_uri="http://localhost:5173/callback",
        code_verifier="verifier123",
    )

    assert tokens.access_token == "access-1"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.scope == "playlist-modify-private"
    assert tokens.expires_at > time.time()


@pytest.mark.asyncio
async def test_exchange_code_posts_form_with_verifier(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        json={"access_token": "access-1", "expires_in": 3600},
    )

    await exchange_code(
        client_id="client123",
        code="code123",
        redirect_uri="http://localhost:5173/callback",
        code_verifier="verifier123",
    )

    request = httpx_mock.get_request()
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    form = dict(urllib.parse.parse_qsl(request.content.decode()))
    assert form == {
        "grant_type": "authorization_code",
        "code": "code123",
        "redirect_uri": "http://localhost:5173/callback",
        "client_id": "client123",
        "code_verifier": "verifier123",
    }


@pytest.mark.asyncio
async def test_exchange_code_error_carries_description(httpx_mock) -> None:
    httpx_mock.add_response(
        url=SPOTIFY_TOKEN_URL,
        method="POST",
        status_code=400,
        json={"error": "invalid_grant", "error_description": "code_verifier was incorrect"},
    )

    with pytest.raises(ExchangeFailedError) as excinfo:
        await exchange_code(
            client_id="client123",
            code="bad-code",
            redirect_uri="http://localhost:5173/callback",
            code_verifier="verifier123",
        )

    assert excinfo.value.reason == "code_verifier was incorrect"
    assert excinfo.value.status_code == 502


@pytest.mark.asyncio
async def test_exchange_code_error_without_json(httpx_mock) -> None:
    httpx_mock.add_response(url=SPOTIFY_TOKEN_URL, method="POST", status_code=503, text="down")

    with pytest.raises(ExchangeFailedError, match="down"):
        await exchange_code(
            client_id="client123",
            code="code123",
            redirect_uri="http://localhost:5173/callback",
            code_verifier="verifier123",
        )


@pytest.mark.asyncio
async def test_exchange_code_network_error(httpx_mock) -> None:
    httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=SPOTIFY_TOKEN_URL)

    with pytest.raises(ExchangeFailedError, match="unreachable"):
        await exchange_code(
            client_id="client123",
            code="code123",
            redirect_uri="http://localhost:5173/callback",
            code_verifier="verifier123",
        )


@pytest.mark.asyncio
async def test_exchange_code_missing_access_token(httpx_mock) -> None:
    httpx_mock.add_response(url=SPOTIFY_TOKEN_URL, method="POST", json={"expires_in": 3600})

    with pytest.raises(ExchangeFailedError, match="access_token"):
        await exchange_code(
            client_id="client123",
            code="code123",
            redirect_uri="http://localhost:5173/callback",
            code_verifier="verifier123",
        )


def test_token_pair_tolerates_missing_refresh_token() -> None:
    tokens = TokenPair.from_payload({"access_token": "a", "expires_in": 60})

    assert tokens.refresh_token == ""


def test_is_expired_true() -> None:
    tokens = TokenPair(access_token="a", refresh_token="r", expires_at=time.time() - 1)

    assert tokens.is_expired() is True


def test_is_expired_false() -> None:
    tokens = TokenPair(access_token="a", refresh_token="r", expires_at=time.time() + 3600)

    assert tokens.is_expired() is False
