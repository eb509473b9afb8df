"""Exceptions raised by the authentication core."""

from typing import Optional


class AuthorizationRequired(RuntimeError):
    """No authenticated user was presented for an operation that needs one."""


class InsufficientPrivilege(RuntimeError):
    """The authenticated user is not staff."""


class DuplicateUsername(RuntimeError):
    """A user with the requested username already exists."""


class MissingToken(RuntimeError):
    """No bearer token was provided, or the credential header is malformed."""


class InvalidOrExpiredToken(RuntimeError):
    """
    The token does not match any live token in the store.

    Raised both when the token is unknown and when it has expired, so that
    callers cannot probe for the existence of a token.
    """


class EntropyUnavailable(RuntimeError):
    """The operating system could not provide secure random bytes."""


class NoSuchUser(RuntimeError):
    """A user was requested that does not exist."""


class NoSuchToken(RuntimeError):
    """A token was requested that does not exist."""


class StoreUnavailable(RuntimeError):
    """
    The backing store failed (connection lost, timeout, etc).

    ``operation`` names the store operation that failed; inside a
    transaction ``step`` names the write that failed.
    """

    def __init__(self, message: str, operation: Optional[str] = None,
                 step: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.step = step

    def __str__(self) -> str:
        context = ': '.join([part for part in (self.operation, self.step)
                             if part])
        message = super().__str__()
        return f'{context}: {message}' if context else message
