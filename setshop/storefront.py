from __future__ import annotations

import asyncio
import urllib.parse

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth.auth_flow import AuthFlow
from auth.errors import AuthError, AuthExpiredError
from auth.sessions import SessionCookies

from .bundles import Bundle
from .catalog import SpotifyCatalog
from .constants import APP_VERSION, AUTH_MODE, DEFAULT_CURATOR, LOGGER, SESSION_COOKIE
from .http import CatalogError, CatalogExhaustedError, ResilientClient, friendly_error_message
from .ledger import PurchaseLedger
from .payments import PaymentError, StripeCheckout, build_success_url


class Storefront:
    def __init__(
        self,
        *,
        auth_flow: AuthFlow,
        cookies: SessionCookies,
        bundles: dict[str, Bundle],
        ledger: PurchaseLedger,
        payments: StripeCheckout,
        spotify_http: httpx.AsyncClient,
        resilient: ResilientClient,
        base_url: str,
        curator: str = DEFAULT_CURATOR,
        stripe_publishable_key: str = "",
        secure_cookies: bool = False,
    ) -> None:
        self.auth_flow = auth_flow
        self.cookies = cookies
        self.bundles = bundles
        self.ledger = ledger
        self.payments = payments
        self.spotify_http = spotify_http
        self.resilient = resilient
        self.base_url = base_url.rstrip("/")
        self.curator = curator
        self.stripe_publishable_key = stripe_publishable_key
        self.secure_cookies = secure_cookies

    def routes(self) -> list[Route]:
        return [
            Route("/", self._handle_index, methods=["GET"]),
            Route("/health", self._handle_health, methods=["GET"]),
            Route("/login", self._handle_login, methods=["GET"]),
            Route("/callback", self._handle_callback, methods=["GET"]),
            Route("/playlists", self._handle_playlists, methods=["GET"]),
            Route("/checkout", self._handle_checkout, methods=["GET"]),
            Route("/success", self._handle_success, methods=["GET"]),
            Route("/save-to-spotify", self._handle_save, methods=["POST"]),
            Route("/logout", self._handle_logout, methods=["GET"]),
        ]

    def catalog_for(self, access_token: str) -> SpotifyCatalog:
        return SpotifyCatalog(self.spotify_http, self.resilient, access_token)

    # -- session helpers -------------------------------------------------------

    def _session_id(self, request: Request) -> str | None:
        return self.cookies.decode(request.cookies.get(SESSION_COOKIE))

    def _set_session_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            SESSION_COOKIE,
            self.cookies.encode(session_id),
            max_age=self.cookies.max_age_seconds,
            httponly=True,
            samesite="lax",
            secure=self.secure_cookies,
        )

    async def _require_user(self, request: Request) -> tuple[SpotifyCatalog, str] | Response:
        session_id = self._session_id(request)
        tokens = await self.auth_flow.current_tokens(session_id)
        if tokens is None:
            return self._auth_required(request)
        if tokens.is_expired():
            await self.auth_flow.logout(session_id)
            return self._auth_required(request)

        catalog = self.catalog_for(tokens.access_token)
        try:
            user = await catalog.get_current_user()
        except AuthExpiredError:
            LOGGER.info("Spotify token rejected; clearing session")
            await self.auth_flow.logout(session_id)
            return self._auth_required(request)
        except CatalogError as error:
            LOGGER.warning("Could not load Spotify profile: %s", error)
            return self._error(
                "catalog_unavailable",
                friendly_error_message(error.status_code),
                503,
            )

        user_id = (user or {}).get("id")
        if not isinstance(user_id, str) or not user_id:
            return self._error("catalog_unavailable", "Spotify profile has no id.", 502)
        return catalog, user_id

    async def _expire_session(self, request: Request) -> Response:
        await self.auth_flow.logout(self._session_id(request))
        return self._auth_required(request)

    # -- handlers --------------------------------------------------------------

    async def _handle_index(self, request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "bundles": [bundle.public_payload() for bundle in self.bundles.values()],
                "login_url": "/login",
            }
        )

    async def _handle_health(self, request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "auth_mode": AUTH_MODE,
            }
        )

    async def _handle_login(self, request: Request) -> Response:
        session_id = self._session_id(request) or self.cookies.new_session_id()
        authorize_url = await self.auth_flow.begin_login(session_id)

        response = RedirectResponse(url=authorize_url, status_code=302)
        self._set_session_cookie(response, session_id)
        return response

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        try:
            completed = await self.auth_flow.complete_login(
                params.get("code"),
                params.get("state"),
                params.get("error"),
                # A callback without a session cookie never matches a pending login.
                session_id=self._session_id(request) or "",
                new_session_id=self.cookies.new_session_id(),
            )
        except AuthError as error:
            LOGGER.warning("Callback failed: %s", error)
            return self._error(error.code, str(error), error.status_code)

        response = RedirectResponse(url="/playlists", status_code=302)
        self._set_session_cookie(response, completed.session_id)
        return response

    async def _handle_playlists(self, request: Request) -> Response:
        authed = await self._require_user(request)
        if isinstance(authed, Response):
            return authed
        catalog, user_id = authed

        purchased = await self.ledger.purchased_bundles(user_id)
        tasks = [
            asyncio.ensure_future(catalog.get_album_arts(list(bundle.playlist_ids)))
            for bundle in self.bundles.values()
        ]
        try:
            album_arts = await asyncio.gather(*tasks)
        except AuthExpiredError:
            # The token is gone; stop the other lookups from using it.
            for task in tasks:
                task.cancel()
            return await self._expire_session(request)

        bundles = []
        for bundle, arts in zip(self.bundles.values(), album_arts):
            bundles.append(
                {
                    **bundle.public_payload(),
                    "playlists": list(bundle.playlist_ids),
                    "album_arts": arts,
                    "purchased": bundle.bundle_id in purchased,
                }
            )

        return JSONResponse(
            {
                "user_id": user_id,
                "bundles": bundles,
                "purchased_bundles": sorted(purchased),
                "stripe_publishable_key": self.stripe_publishable_key,
                "highlight": request.query_params.get("highlight"),
            }
        )

    async def _handle_checkout(self, request: Request) -> Response:
        authed = await self._require_user(request)
        if isinstance(authed, Response):
            return authed
        _, user_id = authed

        bundle = self.bundles.get(request.query_params.get("bundle_id", ""))
        if bundle is None or bundle.free:
            return RedirectResponse(url="/playlists", status_code=302)

        try:
            session = await self.payments.create_session(
                bundle,
                user_id=user_id,
                success_url=build_success_url(self.base_url, bundle.bundle_id),
                cancel_url=f"{self.base_url}/playlists",
            )
        except PaymentError as error:
            LOGGER.warning("Checkout error: %s", error)
            return JSONResponse({"error": "Checkout failed"}, status_code=500)

        return JSONResponse({"url": session.url})

    async def _handle_success(self, request: Request) -> Response:
        checkout_session_id = request.query_params.get("session_id")
        bundle_id = request.query_params.get("bundle_id", "")
        if bundle_id not in self.bundles or not checkout_session_id:
            return RedirectResponse(url="/playlists", status_code=302)

        try:
            session = await self.payments.retrieve_session(checkout_session_id)
        except PaymentError as error:
            LOGGER.warning("Success error: %s", error)
            return RedirectResponse(url="/playlists", status_code=302)

        # The buyer is whoever checkout was created for, never a query parameter.
        if session.is_paid and session.bundle_id == bundle_id and session.client_reference_id:
            recorded = await self.ledger.record_purchase(session.client_reference_id, bundle_id)
            if recorded:
                LOGGER.info("Recorded purchase of %s", bundle_id)
        else:
            LOGGER.warning(
                "Checkout session not usable for %s (status=%s)",
                bundle_id,
                session.payment_status,
            )

        query = urllib.parse.urlencode({"highlight": bundle_id})
        return RedirectResponse(url=f"/playlists?{query}", status_code=302)

    async def _handle_save(self, request: Request) -> Response:
        authed = await self._require_user(request)
        if isinstance(authed, Response):
            return authed
        catalog, user_id = authed

        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        bundle_id = payload.get("bundle_id") if isinstance(payload, dict) else None
        bundle = self.bundles.get(bundle_id) if isinstance(bundle_id, str) else None
        if bundle is None:
            return JSONResponse({"error": "Invalid bundle"}, status_code=400)

        if not bundle.free and not await self.ledger.has_purchased(user_id, bundle.bundle_id):
            return JSONResponse({"error": "Bundle not purchased"}, status_code=403)

        if not bundle.playlist_ids:
            return JSONResponse({"error": "No playlists in bundle"}, status_code=400)

        try:
            new_playlist_ids = await self._materialize(catalog, user_id, bundle)
        except AuthExpiredError:
            return await self._expire_session(request)
        except CatalogError as error:
            LOGGER.warning("Save error for %s: %s", bundle.bundle_id, error)
            body = {"error": "Failed to save curated playlists"}
            if isinstance(error, CatalogExhaustedError):
                body["error_description"] = "Spotify is busy right now, please try again."
            return JSONResponse(body, status_code=500)

        return JSONResponse(
            {
                "success": True,
                "playlist_id": new_playlist_ids[0],
                "playlist_ids": new_playlist_ids,
            }
        )

    async def _materialize(
        self, catalog: SpotifyCatalog, user_id: str, bundle: Bundle
    ) -> list[str]:
        new_playlist_ids: list[str] = []
        for playlist_id in bundle.playlist_ids:
            uris = await catalog.get_playlist_track_uris(playlist_id)
            created = await catalog.create_playlist(
                user_id,
                f"{bundle.name} - Curated by {self.curator}",
                f"Curated playlist by {self.curator}",
                public=False,
            )
            new_id = created["id"]
            await catalog.add_tracks(new_id, uris)
            new_playlist_ids.append(new_id)
        return new_playlist_ids

    async def _handle_logout(self, request: Request) -> Response:
        await self.auth_flow.logout(self._session_id(request))
        response = RedirectResponse(url="/", status_code=302)
        response.delete_cookie(SESSION_COOKIE)
        return response

    # -- helpers ---------------------------------------------------------------

    def _auth_required(self, request: Request) -> Response:
        if request.method == "POST":
            return JSONResponse({"error": "Authentication required"}, status_code=401)
        return RedirectResponse(url="/login", status_code=302)

    def _error(self, code: str, description: str, status_code: int) -> Response:
        return JSONResponse(
            {"error": code, "error_description": description},
            status_code=status_code,
        )
