"""
Route guards for authenticated requests.

These rely on :class:`facility_reservation.auth.Auth` having attached the
caller's identity to the request as ``request.auth``.

.. code-block:: python

   from facility_reservation.auth.decorators import staff_only


   @blueprint.route('/users', methods=['GET'])
   @staff_only
   def list_users():
       ...

When the decorated route function is called...

- If the request presented a token that was rejected, that rejection
  (:class:`.MissingToken` or :class:`.InvalidOrExpiredToken`) is raised.
- If no identity is available, :class:`.AuthorizationRequired` is raised.
- For :func:`staff_only`, :class:`.InsufficientPrivilege` is raised if the
  user is not staff.

"""

from typing import Any, Callable
from functools import wraps
import logging

from flask import request

from ..exceptions import AuthorizationRequired, InsufficientPrivilege

logger = logging.getLogger(__name__)


def _require_auth() -> None:
    error = getattr(request, 'auth_error', None)
    if error is not None:
        logger.debug('Token was rejected; aborting')
        raise error
    if getattr(request, 'auth', None) is None:
        logger.debug('No authenticated user; aborting')
        raise AuthorizationRequired('Authentication required')


def authenticated(func: Callable) -> Callable:
    """Require an authenticated user on the request."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        _require_auth()
        return func(*args, **kwargs)
    return wrapper


def staff_only(func: Callable) -> Callable:
    """Require an authenticated staff user on the request."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        _require_auth()
        if not request.auth.is_staff:
            logger.debug('User %s is not staff', request.auth.user_id)
            raise InsufficientPrivilege('Only staff users may do this')
        return func(*args, **kwargs)
    return wrapper
