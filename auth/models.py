from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class PendingAuth:
    state: str
    code_verifier: str
    session_id: str
    created_at: float


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_at: float
    scope: str = ""

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenPair":
        access_token = payload.get("access_token")
        # Spotify omits refresh_token on some grants; keep an empty string then.
        refresh_token = payload.get("refresh_token") or ""
        expires_in = payload.get("expires_in", 3600)
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Token response missing access_token.")
        if not isinstance(refresh_token, str):
            raise RuntimeError("Token response refresh_token must be a string.")
        if not isinstance(expires_in, int):
            raise RuntimeError("Token response expires_in must be an integer.")
        if not isinstance(scope, str):
            raise RuntimeError("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=time.time() + expires_in,
            scope=scope,
        )


@dataclass(frozen=True)
class CompletedLogin:
    session_id: str
    tokens: TokenPair
