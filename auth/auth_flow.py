from __future__ import annotations

import logging
import time

from auth import spotify_oauth2
from auth.errors import (
    InvalidOrExpiredStateError,
    MalformedCallbackError,
    ProviderDeniedError,
)
from auth.models import CompletedLogin, PendingAuth, TokenPair
from auth.pending_store import MemoryPendingAuthStore, PendingAuthStore
from auth.token_store import MemoryTokenStore, TokenStore

LOGGER = logging.getLogger("setshop.auth")
DEFAULT_SCOPES = ["playlist-modify-public", "playlist-modify-private"]
STATE_ATTEMPTS = 5


class AuthFlow:
    """PKCE authorization-code login against the Spotify accounts service.

    Each ``begin_login`` call binds a fresh verifier to an unguessable state in
    the pending store. ``complete_login`` consumes that state exactly once and
    trades the code plus verifier for a token pair.
    """

    def __init__(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        pending_store: PendingAuthStore | None = None,
        token_store: TokenStore | None = None,
        exchange_code_fn=spotify_oauth2.exchange_code,
        clock=time.time,
    ) -> None:
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self.pending_store = pending_store or MemoryPendingAuthStore()
        self.token_store = token_store or MemoryTokenStore()
        self._exchange_code_fn = exchange_code_fn
        self._clock = clock

    async def begin_login(self, session_id: str) -> str:
        code_verifier = spotify_oauth2.generate_code_verifier()
        code_challenge = spotify_oauth2.generate_code_challenge(code_verifier)

        for _ in range(STATE_ATTEMPTS):
            state = spotify_oauth2.generate_state()
            stored = await self.pending_store.put(
                PendingAuth(
                    state=state,
                    code_verifier=code_verifier,
                    session_id=session_id,
                    created_at=self._clock(),
                )
            )
            if stored:
                break
        else:
            raise RuntimeError("Could not allocate a unique login state.")

        return spotify_oauth2.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            state=state,
            code_challenge=code_challenge,
        )

    async def complete_login(
        self,
        code: str | None,
        state: str | None,
        provider_error: str | None = None,
        *,
        session_id: str | None = None,
        new_session_id: str | None = None,
    ) -> CompletedLogin:
        """Finish the login bound to ``state``.

        When ``session_id`` is given, the state must also belong to that browser
        session; a state replayed from another session is rejected like an
        unknown one. When ``new_session_id`` is given, the tokens are stored
        under it and anything held under the old session id is dropped.
        """
        if provider_error:
            LOGGER.warning("Spotify authorization denied: %s", provider_error)
            raise ProviderDeniedError(provider_error)

        if not code or not state:
            raise MalformedCallbackError()

        pending = await self.pending_store.consume(state)
        if pending is None:
            LOGGER.warning("Rejected callback with unknown or expired state")
            raise InvalidOrExpiredStateError()
        if session_id is not None and pending.session_id != session_id:
            LOGGER.warning("Rejected callback for a state bound to another session")
            raise InvalidOrExpiredStateError()

        tokens = await self._exchange_code_fn(
            client_id=self.client_id,
            code=code,
            redirect_uri=self.redirect_uri,
            code_verifier=pending.code_verifier,
        )
        owner = new_session_id or pending.session_id
        await self.token_store.set(owner, tokens)
        if owner != pending.session_id:
            await self.token_store.delete(pending.session_id)
        LOGGER.info("Spotify login completed")
        return CompletedLogin(session_id=owner, tokens=tokens)

    async def current_tokens(self, session_id: str | None) -> TokenPair | None:
        if not session_id:
            return None
        return await self.token_store.get(session_id)

    async def logout(self, session_id: str | None) -> None:
        if session_id:
            await self.token_store.delete(session_id)
