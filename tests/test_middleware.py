import logging

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from setshop.middleware import FixedWindowLimiter, RateLimitMiddleware, RequestLogMiddleware


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def _ok(request):
    return PlainTextResponse("ok")


def _client(limiter: FixedWindowLimiter) -> TestClient:
    app = Starlette(
        routes=[Route("/playlists", _ok), Route("/health", _ok)],
        middleware=[Middleware(RateLimitMiddleware, limiter=limiter)],
    )
    return TestClient(app)


def test_requests_past_limit_get_429() -> None:
    clock = FakeClock()
    client = _client(FixedWindowLimiter(2, 60, clock=clock))

    assert client.get("/playlists").status_code == 200
    assert client.get("/playlists").status_code == 200

    clock.now += 10
    limited = client.get("/playlists")
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "50"
    assert limited.json()["error"] == "rate_limited"


def test_window_resets() -> None:
    clock = FakeClock()
    limiter = FixedWindowLimiter(1, 60, clock=clock)

    assert limiter.hit("client") is None
    assert limiter.hit("client") == 60
    assert limiter.hit("other") is None

    clock.now += 60
    assert limiter.hit("client") is None


def test_health_is_exempt() -> None:
    client = _client(FixedWindowLimiter(1, 60, clock=FakeClock()))

    for _ in range(5):
        assert client.get("/health").status_code == 200
    assert client.get("/playlists").status_code == 200
    assert client.get("/playlists").status_code == 429


def test_request_log_skips_payment_return(caplog) -> None:
    app = Starlette(
        routes=[Route("/playlists", _ok), Route("/success", _ok)],
        middleware=[Middleware(RequestLogMiddleware)],
    )
    client = TestClient(app)

    with caplog.at_level(logging.INFO, logger="setshop"):
        client.get("/playlists")
        client.get("/success", params={"session_id": "cs_secret"})

    messages = [record.getMessage() for record in caplog.records]
    assert any(message.startswith("GET /playlists -> 200") for message in messages)
    assert not any("cs_secret" in message or "/success" in message for message in messages)
