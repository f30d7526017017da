from __future__ import annotations

import secrets
import time

from auth import signed_token

SESSION_MAX_AGE_SECONDS = 30 * 24 * 3600


class SessionCookies:
    """Issues and verifies the opaque browser session id.

    The cookie only carries a random id signed with the server key; tokens stay
    server side in the token store.
    """

    def __init__(
        self,
        session_secret: str,
        *,
        max_age_seconds: int = SESSION_MAX_AGE_SECONDS,
        clock=time.time,
    ) -> None:
        self._key = signed_token.derive_key(session_secret)
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def new_session_id(self) -> str:
        return secrets.token_urlsafe(32)

    def encode(self, session_id: str) -> str:
        return signed_token.encode({"sid": session_id, "iat": int(self._clock())}, self._key)

    def decode(self, cookie_value: str | None) -> str | None:
        if not cookie_value:
            return None
        try:
            payload = signed_token.decode(cookie_value, self._key)
        except RuntimeError:
            return None

        session_id = payload.get("sid")
        issued_at = payload.get("iat")
        if not isinstance(session_id, str) or not isinstance(issued_at, int):
            return None
        if self._clock() - issued_at > self.max_age_seconds:
            return None
        return session_id
