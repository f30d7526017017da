from __future__ import annotations

import os
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import uvicorn
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware

from auth.auth_flow import DEFAULT_SCOPES, AuthFlow
from auth.pending_store import MemoryPendingAuthStore
from auth.sessions import SessionCookies
from auth.token_store import FileTokenStore, MemoryTokenStore, TokenStore
from setshop.bundles import load_bundles
from setshop.constants import (
    APP_VERSION,
    AUTH_MODE,
    DEFAULT_BASE_URL,
    DEFAULT_CURATOR,
    LOGGER,
    SPOTIFY_API_BASE_URL,
)
from setshop.env import (
    _get_env_float,
    _get_env_int,
    load_env,
    parse_scopes_env,
    setup_logging,
    validate_env,
)
from setshop.http import ResilientClient, RetryPolicy, build_http_client
from setshop.ledger import SqlitePurchaseLedger
from setshop.middleware import FixedWindowLimiter, RateLimitMiddleware, RequestLogMiddleware
from setshop.payments import StripeCheckout
from setshop.storefront import Storefront


def load_retry_policy() -> RetryPolicy:
    try:
        return RetryPolicy(
            max_attempts=_get_env_int("SPOTIFY_API_MAX_ATTEMPTS", 3),
            base_delay=_get_env_float("SPOTIFY_API_BASE_DELAY", 1.0),
            timeout=_get_env_float("SPOTIFY_API_TIMEOUT", 10.0),
        )
    except ValueError as error:
        raise RuntimeError(f"Invalid Spotify retry configuration: {error}") from error


def load_base_url() -> str:
    raw = os.getenv("SHOP_BASE_URL", DEFAULT_BASE_URL).strip()
    try:
        return str(TypeAdapter(AnyHttpUrl).validate_python(raw)).rstrip("/")
    except ValidationError as error:
        raise RuntimeError(f"SHOP_BASE_URL must be an absolute http(s) URL: {raw!r}") from error


def build_token_store() -> TokenStore:
    path = os.getenv("SHOP_TOKEN_STORE_PATH", "").strip()
    if path:
        return FileTokenStore(path)
    return MemoryTokenStore()


def build_middleware(debug_enabled: bool) -> list[Middleware]:
    middleware: list[Middleware] = []
    limit = _get_env_int("SHOP_RATE_LIMIT", 100)
    if limit > 0:
        limiter = FixedWindowLimiter(limit, _get_env_float("SHOP_RATE_LIMIT_WINDOW", 900.0))
        middleware.append(Middleware(RateLimitMiddleware, limiter=limiter))
    if debug_enabled:
        middleware.append(Middleware(RequestLogMiddleware))
    return middleware


def create_app() -> Starlette:
    load_env()
    debug_enabled = setup_logging()
    validate_env()

    redirect_uri = os.getenv("SPOTIFY_REDIRECT_URI", "").strip()
    policy = load_retry_policy()
    base_url = load_base_url()

    auth_flow = AuthFlow(
        client_id=os.getenv("SPOTIFY_CLIENT_ID", "").strip(),
        redirect_uri=redirect_uri,
        scopes=parse_scopes_env("SPOTIFY_SCOPES", DEFAULT_SCOPES),
        pending_store=MemoryPendingAuthStore(),
        token_store=build_token_store(),
    )
    spotify_http = build_http_client(
        base_url=SPOTIFY_API_BASE_URL,
        timeout=policy.timeout,
        debug_enabled=debug_enabled,
    )
    payments = StripeCheckout(os.getenv("STRIPE_SECRET_KEY", "").strip())
    ledger = SqlitePurchaseLedger(os.getenv("SHOP_LEDGER_PATH", "purchases.db"))

    storefront = Storefront(
        auth_flow=auth_flow,
        cookies=SessionCookies(os.getenv("SHOP_SESSION_SECRET", "")),
        bundles=load_bundles(os.getenv("SHOP_BUNDLES_PATH", "bundles.json")),
        ledger=ledger,
        payments=payments,
        spotify_http=spotify_http,
        resilient=ResilientClient(policy=policy),
        base_url=base_url,
        curator=os.getenv("SHOP_CURATOR", DEFAULT_CURATOR),
        stripe_publishable_key=os.getenv("STRIPE_PUBLISHABLE_KEY", ""),
        secure_cookies=urlparse(redirect_uri).scheme == "https",
    )

    @asynccontextmanager
    async def lifespan(app: Starlette):
        LOGGER.info("setshop %s starting (auth_mode=%s)", APP_VERSION, AUTH_MODE)
        yield
        await spotify_http.aclose()
        await payments.aclose()
        ledger.close()

    app = Starlette(
        debug=False,
        routes=storefront.routes(),
        middleware=build_middleware(debug_enabled),
        lifespan=lifespan,
    )
    app.state.storefront = storefront
    return app


def main() -> None:
    host = os.getenv("SHOP_HOST", "127.0.0.1")
    port = int(os.getenv("SHOP_PORT", "5173"))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
