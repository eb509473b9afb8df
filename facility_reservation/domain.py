"""Defines user and token concepts for the facility reservation service."""

from typing import Any, NamedTuple, Optional
from datetime import datetime

from pytz import UTC


class User(NamedTuple):
    """A principal able to authenticate with the API."""

    user_id: str
    """Time-sortable unique identifier. Never changes once assigned."""

    username: str
    """Display name, unique across all users."""

    is_staff: bool = False
    """Staff users may provision new users."""

    created_at: Optional[datetime] = None
    """Assigned by the database when the row is inserted."""


class Token(NamedTuple):
    """A bearer credential granting the identity of its owning user."""

    token_id: str
    """Unique identifier of the token row, distinct from the secret."""

    user_id: str
    """The :class:`User` that owns this token."""

    token: str
    """The secret value presented in the ``Authorization`` header."""

    name: str
    """Human-readable label."""

    expires_at: Optional[datetime] = None
    """If ``None``, the token never expires."""

    created_at: Optional[datetime] = None

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """Whether the token may be used to authenticate at ``now``."""
        if self.expires_at is None:
            return True
        if now is None:
            now = datetime.now(tz=UTC)
        return as_utc(self.expires_at) > as_utc(now)


class AuthenticatedUser(NamedTuple):
    """The identity resolved from a bearer token on a request."""

    user_id: str
    username: str
    is_staff: bool = False


class IssuedCredentials(NamedTuple):
    """A newly created :class:`User` and its default :class:`Token`."""

    user: User
    token: Token


def as_utc(value: datetime) -> datetime:
    """
    Normalize a :class:`datetime` to UTC.

    Naive values are assumed to already be in UTC, which is how they come
    back from databases that do not store an offset (e.g. SQLite).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_dict(obj: tuple) -> dict:
    """
    Generate a dict representation of a NamedTuple instance.

    Child NamedTuple instances are cast recursively, and datetimes are
    rendered in ISO 8601 format, so that the result can be serialized
    directly to JSON.
    """
    if not hasattr(obj, '_asdict'):
        return {}

    def _cast(value: Any) -> Any:
        if hasattr(value, '_asdict'):
            return to_dict(value)
        if isinstance(value, datetime):
            return as_utc(value).isoformat()
        return value

    return {key: _cast(value) for key, value in obj._asdict().items()}
