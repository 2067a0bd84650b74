# Error taxonomy shared by the sync layer.
# Created: 2026-09-02
#
# Low-level transport/parse errors are wrapped into one of these at the
# boundary where they are first seen (retry executor, OAuth flow) and are
# never re-wrapped further up. Anything shown to the user comes from
# user_message(), which depends only on the kind.

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure classes the UI knows how to render."""

    AUTH = "auth"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    STORAGE = "storage"
    CONFIG = "config"
    CANCELLED = "cancelled"


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTH: "Sign-in required. Please authenticate again.",
    ErrorKind.TRANSIENT: "Unable to reach the service. Check your connection and try again.",
    ErrorKind.PERMANENT: "The request could not be completed.",
    ErrorKind.STORAGE: "Unable to access local data. Try restarting the app.",
    ErrorKind.CONFIG: "A required setting is missing. Check your settings.",
    ErrorKind.CANCELLED: "The operation was cancelled.",
}


class MymeError(Exception):
    """Base class for every error the sync layer surfaces."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, message: str = "", *, status: int | None = None):
        super().__init__(message or self.__class__.__name__)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def user_message(self) -> str:
        return _USER_MESSAGES[self.kind]


class AuthFailure(MymeError):
    """Bad or missing credentials, denied consent, CSRF mismatch."""

    kind = ErrorKind.AUTH


class CsrfMismatch(AuthFailure):
    def __init__(self) -> None:
        super().__init__("OAuth state mismatch (possible CSRF attack)")


class TokenNotFound(AuthFailure):
    def __init__(self, service: str):
        super().__init__(f"No token stored for service: {service}")
        self.service = service


class PortInUseError(AuthFailure):
    def __init__(self, first_port: int, last_port: int):
        super().__init__(f"No free OAuth callback port in range {first_port}-{last_port}")
        self.first_port = first_port
        self.last_port = last_port

    def user_message(self) -> str:
        return "Sign-in port is busy. Close other apps and try again."


class TransientError(MymeError):
    """Timeouts, 5xx, 429, connection resets."""

    kind = ErrorKind.TRANSIENT


class PermanentError(MymeError):
    """4xx other than 408/429, malformed data."""

    kind = ErrorKind.PERMANENT


class NotFoundError(PermanentError):
    pass


class StorageFailure(MymeError):
    """Token files or the queue database cannot be read or written."""

    kind = ErrorKind.STORAGE


class ConfigError(MymeError):
    kind = ErrorKind.CONFIG


class OperationCancelled(MymeError):
    """Raised inside work when its cancellation token fires.

    The dispatcher turns this into a Cancelled outcome, not an error.
    """

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


def user_message_for(error: BaseException) -> str:
    """Short, non-technical message for any exception."""
    if isinstance(error, MymeError):
        return error.user_message()
    return "Something went wrong. Please try again."
