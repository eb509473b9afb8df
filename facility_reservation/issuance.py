"""
Provisioning of new users and their credentials.

Every user is created together with a default bearer token, in a single
transaction: if the token cannot be stored, the user is not stored either.
Only staff users may provision new users. The very first staff user is
created out-of-band with :func:`bootstrap_staff_user` (see :mod:`.cli`).
"""

from typing import Optional
from datetime import datetime
import logging

from . import domain
from .auth import tokens
from .exceptions import AuthorizationRequired, InsufficientPrivilege
from .services.datastore import DataStore, util

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_NAME = 'Default Token'
USERNAME_MAX_LENGTH = 100


def issue_user(store: DataStore,
               actor: Optional[domain.AuthenticatedUser],
               username: str,
               is_staff: bool = False,
               token_name: str = DEFAULT_TOKEN_NAME,
               expires_at: Optional[datetime] = None) \
        -> domain.IssuedCredentials:
    """
    Create a new user with a default token, on behalf of ``actor``.

    Parameters
    ----------
    store : :class:`.DataStore`
    actor : :class:`.domain.AuthenticatedUser` or None
        The user making the request. ``None`` if not authenticated.
    username : str
        Must not already be taken.
    is_staff : bool
        Whether the new user may provision other users.
    token_name : str
        Label for the default token.
    expires_at : datetime or None
        Expiry of the default token. By default it never expires.

    Returns
    -------
    :class:`.domain.IssuedCredentials`
        The created user and token, with their server-assigned timestamps.

    Raises
    ------
    :class:`.AuthorizationRequired`
        If ``actor`` is ``None``.
    :class:`.InsufficientPrivilege`
        If ``actor`` is not staff.
    :class:`.DuplicateUsername`
        If ``username`` is taken.
    :class:`.EntropyUnavailable`
        If a token secret could not be generated.
    :class:`.StoreUnavailable`
        For any other failure of the store.

    """
    # Checked before touching the store.
    if actor is None:
        raise AuthorizationRequired('Authenticated user is required')
    if not actor.is_staff:
        raise InsufficientPrivilege('Only staff users can create new users')
    return _create(store, username, is_staff, token_name, expires_at)


def bootstrap_staff_user(store: DataStore, username: str,
                         token_name: str = DEFAULT_TOKEN_NAME) \
        -> domain.IssuedCredentials:
    """Create a staff user without an actor. For out-of-band setup only."""
    logger.info('Bootstrapping staff user %s', username)
    return _create(store, username, True, token_name, None)


def _create(store: DataStore, username: str, is_staff: bool,
            token_name: str, expires_at: Optional[datetime]) \
        -> domain.IssuedCredentials:
    if not username or not username.strip():
        raise ValueError('Username is required')
    if len(username) > USERNAME_MAX_LENGTH:
        raise ValueError(f'Username is longer than {USERNAME_MAX_LENGTH}')

    user_id = util.new_id()
    with store.transaction() as tx:
        user = tx.insert_user(user_id, username, is_staff)
        token = tx.insert_token(util.new_id(), user.user_id,
                                tokens.generate_token(), token_name,
                                expires_at)
    logger.info('Created user %s (%s, is_staff=%s) with token %s',
                user.user_id, user.username, user.is_staff, token.token_id)
    return domain.IssuedCredentials(user=user, token=token)
