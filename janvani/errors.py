"""Error taxonomy shared by the gateway, the coordinator and callers.

Every failure the client surfaces is a ``JanvaniError``. HTTP failures carry
the status code and the server's own message so the UI can show it verbatim.
"""

from typing import Optional

AUTH_VOCABULARY = ("401", "403", "unauthorized", "not authorized", "token", "jwt")


class JanvaniError(Exception):
    """Base class for every error raised by the client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NetworkError(JanvaniError):
    """Transport-level failure: connection refused, reset, DNS, etc."""


class RequestTimeout(JanvaniError):
    """The request did not settle within the gateway's time budget."""


class HttpError(JanvaniError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(HttpError):
    """401/403 or a message from the auth-failure vocabulary. Never retried."""


class ValidationError(HttpError):
    """4xx with a server message, or a request rejected locally."""


class NotFoundError(HttpError):
    pass


class ServerError(HttpError):
    pass


def is_auth_failure(message: str, status_code: Optional[int] = None) -> bool:
    if status_code in (401, 403):
        return True
    text = (message or "").lower()
    return any(word in text for word in AUTH_VOCABULARY)


def http_error_for(status_code: int, message: str) -> HttpError:
    """Map a non-2xx response onto the taxonomy."""
    if is_auth_failure(message, status_code):
        return AuthenticationError(message, status_code)
    if status_code == 404:
        return NotFoundError(message, status_code)
    if status_code >= 500:
        return ServerError(message, status_code)
    return ValidationError(message, status_code)


def user_message(exc: BaseException, limit: int = 160) -> str:
    """Text a UI should show for *exc*."""
    if isinstance(exc, RequestTimeout):
        return "Request timed out. Please check your connection."
    if isinstance(exc, NetworkError):
        return "Could not reach the server. Please check your connection."
    if isinstance(exc, ServerError):
        return "Something went wrong on our side. Please try again."
    text = str(exc) or exc.__class__.__name__
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
