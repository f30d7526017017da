from __future__ import annotations


class AuthError(RuntimeError):
    """Base class for failures that force the user back through login."""

    code = "auth_error"
    status_code = 400

    def __init__(self, message: str = "Authentication failed.") -> None:
        super().__init__(message)


class ProviderDeniedError(AuthError):
    code = "provider_denied"

    def __init__(self, provider_error: str) -> None:
        super().__init__(f"Spotify authorization returned an error: {provider_error}")
        self.provider_error = provider_error


class MalformedCallbackError(AuthError):
    code = "invalid_request"

    def __init__(self, message: str = "Missing authorization code or state.") -> None:
        super().__init__(message)


class InvalidOrExpiredStateError(AuthError):
    code = "invalid_state"

    def __init__(self, message: str = "Invalid or expired state parameter.") -> None:
        super().__init__(message)


class ExchangeFailedError(AuthError):
    code = "token_exchange_failed"
    status_code = 502

    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to exchange Spotify authorization code: {reason}")
        self.reason = reason


class AuthExpiredError(AuthError):
    code = "auth_expired"
    status_code = 401

    def __init__(self, message: str = "Spotify access token is invalid or expired.") -> None:
        super().__init__(message)
