from __future__ import annotations

import base64
import hashlib
import secrets
import urllib.parse

import httpx

from auth.errors import ExchangeFailedError
from auth.models import TokenPair

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

CODE_VERIFIER_BYTES = 32
STATE_BYTES = 16


def _base64url_no_pad(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    return _base64url_no_pad(secrets.token_bytes(CODE_VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _base64url_no_pad(digest)


def generate_state() -> str:
    return secrets.token_hex(STATE_BYTES)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "scope": " ".join(scopes),
        "redirect_uri": redirect_uri,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{SPOTIFY_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


def _error_reason(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("error_description", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value

    text = response.text.strip()
    return text or f"status {response.status_code}"


async def exchange_code(
    client_id: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> TokenPair:
    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "code_verifier": code_verifier,
    }
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=timeout)

    try:
        response = await http_client.post(SPOTIFY_TOKEN_URL, data=payload)
    except httpx.HTTPError as error:
        raise ExchangeFailedError(f"token endpoint unreachable ({error!r})") from error
    finally:
        if own_client:
            await http_client.aclose()

    if response.status_code >= 400:
        raise ExchangeFailedError(_error_reason(response))

    try:
        return TokenPair.from_payload(response.json())
    except ValueError as error:
        raise ExchangeFailedError("token endpoint returned invalid JSON") from error
    except RuntimeError as error:
        raise ExchangeFailedError(str(error)) from error
