from __future__ import annotations

import asyncio
import email.utils
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from auth.errors import AuthExpiredError

from .constants import SPOTIFY_LOGGER


class Outcome(enum.Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    AUTH_EXPIRED = "auth_expired"
    CLIENT_ERROR = "client_error"
    TRANSIENT_ERROR = "transient_error"


class RetryState(enum.Enum):
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED_FATAL = "failed_fatal"
    FAILED_EXHAUSTED = "failed_exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative.")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive.")


@dataclass(frozen=True)
class Classified:
    outcome: Outcome
    value: Any = None
    status_code: int | None = None
    retry_after: float | None = None
    detail: str = ""


@dataclass(frozen=True)
class Step:
    state: RetryState
    delay: float = 0.0


class CatalogError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class CatalogRateLimitedError(CatalogError):
    pass


class CatalogClientError(CatalogError):
    pass


class CatalogTransientError(CatalogError):
    pass


class CatalogExhaustedError(CatalogError):
    def __init__(self, attempts: int, last_error: CatalogError) -> None:
        super().__init__(
            f"Spotify request failed after {attempts} attempts: {last_error}",
            status_code=last_error.status_code,
            detail=last_error.detail,
        )
        self.attempts = attempts
        self.last_error = last_error


def next_step(attempt: int, classified: Classified, policy: RetryPolicy) -> Step:
    """Transition function of the retry state machine for one finished attempt."""
    outcome = classified.outcome
    if outcome is Outcome.SUCCESS:
        return Step(RetryState.SUCCEEDED)
    if outcome in (Outcome.AUTH_EXPIRED, Outcome.CLIENT_ERROR):
        return Step(RetryState.FAILED_FATAL)
    if attempt >= policy.max_attempts:
        return Step(RetryState.FAILED_EXHAUSTED)

    if outcome is Outcome.RATE_LIMITED and classified.retry_after is not None:
        return Step(RetryState.ATTEMPTING, max(0.0, classified.retry_after))
    return Step(RetryState.ATTEMPTING, policy.base_delay * attempt)


def parse_retry_after(header: str | None, *, now: float | None = None) -> float | None:
    if header is None or not header.strip():
        return None
    value = header.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass

    try:
        retry_at = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    current = time.time() if now is None else now
    return max(0.0, retry_at.timestamp() - current)


def _response_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500]

    # Spotify wraps errors as {"error": {"status": ..., "message": ...}}.
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return payload.get("error_description") or error
    return str(payload)[:500]


def classify_response(response: httpx.Response) -> Classified:
    status = response.status_code
    if 200 <= status < 300:
        if not response.content:
            return Classified(Outcome.SUCCESS, status_code=status)
        try:
            value = response.json()
        except ValueError:
            # Proxies and captive portals answer 200 with HTML.
            return Classified(
                Outcome.TRANSIENT_ERROR,
                status_code=status,
                detail=f"Undecodable response body: {response.text[:200]}",
            )
        return Classified(Outcome.SUCCESS, value=value, status_code=status)

    detail = _response_detail(response)
    if status == 401:
        return Classified(Outcome.AUTH_EXPIRED, status_code=status, detail=detail)
    if status == 429:
        return Classified(
            Outcome.RATE_LIMITED,
            status_code=status,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            detail=detail,
        )
    if 400 <= status < 500:
        return Classified(Outcome.CLIENT_ERROR, status_code=status, detail=detail)
    return Classified(Outcome.TRANSIENT_ERROR, status_code=status, detail=detail)


def classify_exception(error: BaseException) -> Classified:
    if isinstance(error, httpx.HTTPStatusError):
        return classify_response(error.response)
    return Classified(Outcome.TRANSIENT_ERROR, detail=repr(error))


def friendly_error_message(status_code: int | None, wait_seconds: float | None = None) -> str:
    if status_code == 401:
        return "Authentication failed. Your Spotify session may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action on Spotify."
    if status_code == 404:
        return "The requested resource was not found on Spotify."
    if status_code == 429:
        wait = 0 if wait_seconds is None else int(wait_seconds)
        return f"Rate limit exceeded. Please wait {wait} seconds."
    if status_code is None or status_code >= 500 or status_code < 400:
        return "Spotify is experiencing issues. Please try again later."
    return f"Spotify request failed with status {status_code}."


def error_for(classified: Classified) -> Exception:
    outcome = classified.outcome
    if outcome is Outcome.AUTH_EXPIRED:
        return AuthExpiredError()
    message = friendly_error_message(classified.status_code, classified.retry_after)
    if outcome is Outcome.RATE_LIMITED:
        error_cls = CatalogRateLimitedError
    elif outcome is Outcome.CLIENT_ERROR:
        error_cls = CatalogClientError
    else:
        error_cls = CatalogTransientError
    return error_cls(message, status_code=classified.status_code, detail=classified.detail)


class ResilientClient:
    """Runs Spotify Web API calls under a bounded retry policy.

    Rate limiting and transient failures are retried with backoff; 401 and
    other 4xx answers fail on the first attempt. ``sleep`` is injectable so the
    state machine can be driven without waiting.
    """

    def __init__(
        self,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._logger = logger or SPOTIFY_LOGGER

    async def run(
        self,
        attempt_fn: Callable[[], Awaitable[Classified]],
        *,
        policy: RetryPolicy | None = None,
        description: str = "Spotify call",
    ) -> Any:
        policy = policy or self.policy
        attempt = 1

        while True:
            classified = await attempt_fn()
            step = next_step(attempt, classified, policy)

            if step.state is RetryState.SUCCEEDED:
                return classified.value
            if step.state is RetryState.FAILED_FATAL:
                raise error_for(classified)
            if step.state is RetryState.FAILED_EXHAUSTED:
                last_error = error_for(classified)
                self._logger.warning(
                    "Giving up on %s after %s attempts (%s)",
                    description,
                    attempt,
                    classified.outcome.value,
                )
                raise CatalogExhaustedError(attempt, last_error)

            self._logger.warning(
                "Retrying %s after %ss (attempt %s/%s, %s %s)",
                description,
                step.delay,
                attempt,
                policy.max_attempts,
                classified.outcome.value,
                classified.status_code,
            )
            await self._sleep(step.delay)
            attempt += 1

    async def call(
        self,
        operation: Callable[..., Awaitable[httpx.Response]],
        *args,
        policy: RetryPolicy | None = None,
        **kwargs,
    ) -> Any:
        policy = policy or self.policy
        description = getattr(operation, "__name__", "Spotify call")

        async def attempt() -> Classified:
            try:
                response = await asyncio.wait_for(operation(*args, **kwargs), policy.timeout)
            except (httpx.HTTPError, asyncio.TimeoutError) as error:
                return classify_exception(error)
            return classify_response(response)

        return await self.run(attempt, policy=policy, description=description)


async def log_request(request: httpx.Request) -> None:
    SPOTIFY_LOGGER.info("Spotify request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    SPOTIFY_LOGGER.info(
        "Spotify response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        SPOTIFY_LOGGER.warning("Spotify error body: %s", text)


def build_http_client(
    *,
    base_url: str,
    timeout: float,
    debug_enabled: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    event_hooks: dict[str, list] = {"request": [], "response": []}
    if debug_enabled:
        event_hooks = {"request": [log_request], "response": [log_response]}
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=transport,
        event_hooks=event_hooks,
    )
