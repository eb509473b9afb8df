"""
Provides bearer token authentication for API requests.

:func:`authenticate` is the authorization gate: it resolves a raw token
secret to a :class:`.domain.AuthenticatedUser` or rejects it.
:class:`Auth` installs that gate on a Flask application so that the
identity of the caller is available as ``flask.request.auth``.

.. code-block:: python

   from flask import Flask
   from facility_reservation import auth
   from facility_reservation.services import datastore


   def create_web_app() -> Flask:
       app = Flask('someapp')
       datastore.init_app(app)
       auth.Auth(app)   # Registers the before_request auth check.
       return app

"""

from typing import Optional
from datetime import datetime
import logging

from flask import Flask, request

from . import decorators, tokens
from .. import domain
from ..exceptions import InvalidOrExpiredToken, MissingToken
from ..services import datastore

logger = logging.getLogger(__name__)

BEARER = 'bearer'


def extract_bearer_token(header: Optional[str]) -> str:
    """
    Get the token secret from an ``Authorization`` header value.

    Raises
    ------
    :class:`.MissingToken`
        If the header is absent, does not use the Bearer scheme, or carries
        no token.

    """
    if not header:
        raise MissingToken('Missing authorization header')
    parts = header.split()
    if not parts or parts[0].lower() != BEARER:
        raise MissingToken('Authorization header must use Bearer scheme')
    if len(parts) != 2:
        raise MissingToken('Empty or malformed token in authorization header')
    return parts[1]


def authenticate(store: datastore.DataStore, token: str,
                 now: Optional[datetime] = None) -> domain.AuthenticatedUser:
    """
    Resolve a bearer token secret to the identity of its owner.

    Parameters
    ----------
    store : :class:`.DataStore`
    token : str
        The raw secret value.
    now : datetime
        Point in time at which the token must be live. Defaults to the
        current time.

    Raises
    ------
    :class:`.MissingToken`
        If ``token`` is empty.
    :class:`.InvalidOrExpiredToken`
        If no live token matches. Unknown and expired tokens are not
        distinguished.
    :class:`.StoreUnavailable`
        If the store could not be queried.

    """
    if not token:
        raise MissingToken('No token provided')
    user = store.get_user_by_token(token, now=now)
    if user is None:
        raise InvalidOrExpiredToken('Invalid or expired token')
    return user


class Auth(object):
    """
    Attaches the authenticated user to the request.

    If the request carries no ``Authorization`` header, ``request.auth`` is
    ``None``. If the header is present but the token is malformed, unknown
    or expired, ``request.auth`` is ``None`` and the rejection is kept on
    ``request.auth_error`` so that protected routes can raise it (see
    :mod:`.decorators`).
    """

    def __init__(self, app: Optional[Flask] = None) -> None:
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Attach :meth:`.load_auth` to the Flask app."""
        self.app = app
        self.app.before_request(self.load_auth)

    def load_auth(self) -> None:
        """Look for a bearer token, and attach its owner to the request."""
        request.auth = None
        request.auth_error = None
        header = request.headers.get('Authorization')
        if header is None:
            logger.debug('No auth token')
            return

        try:
            token = extract_bearer_token(header)
            user = authenticate(datastore.get_datastore(), token)
        except (MissingToken, InvalidOrExpiredToken) as e:
            logger.warning('Authentication failed: %s (%s %s from %s)', e,
                           request.method, request.path, request.remote_addr)
            request.auth_error = e
            return

        logger.info('User authenticated: %s (%s, is_staff=%s)',
                    user.user_id, user.username, user.is_staff)
        request.auth = user
