"""Application factory for the facility reservation API."""

from typing import Any, Mapping, Optional
import logging
import time

from flask import Flask, Response, g, jsonify, request
from werkzeug.exceptions import HTTPException, BadRequest, Conflict, \
    Forbidden, InternalServerError, MethodNotAllowed, NotFound, \
    ServiceUnavailable, Unauthorized

from . import auth, exceptions
from .routes import blueprint
from .services import datastore

logger = logging.getLogger(__name__)


def create_web_app(config: Optional[Mapping[str, Any]] = None,
                   store: Optional[datastore.DataStore] = None) -> Flask:
    """
    Initialize and configure the API application.

    Parameters
    ----------
    config : mapping
        Overrides for the values in :mod:`.config`.
    store : :class:`.DataStore`
        A store to use instead of one built from the config.

    """
    app = Flask('facility_reservation')
    app.config.from_pyfile('config.py')
    if config is not None:
        app.config.update(config)

    logging.getLogger('facility_reservation').setLevel(app.config['LOGLEVEL'])

    register_request_logging(app)
    store = datastore.init_app(app, store)
    auth.Auth(app)  # Resolves bearer tokens to users.
    app.register_blueprint(blueprint)

    if app.config['CREATE_DB']:
        store.create_all()

    register_error_handlers(app)
    return app


def register_request_logging(app: Flask) -> None:
    """Log the start and completion of each request."""
    @app.before_request
    def log_request_start() -> None:
        g.request_start = time.monotonic()
        logger.info('HTTP request started: %s %s from %s (%s)',
                    request.method, request.path, request.remote_addr,
                    request.user_agent.string)

    @app.after_request
    def log_request_end(response: Response) -> Response:
        start = g.get('request_start', time.monotonic())
        duration = time.monotonic() - start
        logger.info('HTTP request completed: %s %s %s in %d ms',
                    request.method, request.path, response.status_code,
                    duration * 1000)
        return response


def register_error_handlers(app: Flask) -> None:
    """Register error handlers for the Flask app."""
    app.errorhandler(Forbidden)(jsonify_exception)
    app.errorhandler(Unauthorized)(jsonify_exception)
    app.errorhandler(BadRequest)(jsonify_exception)
    app.errorhandler(Conflict)(jsonify_exception)
    app.errorhandler(InternalServerError)(jsonify_exception)
    app.errorhandler(NotFound)(jsonify_exception)
    app.errorhandler(MethodNotAllowed)(jsonify_exception)
    app.errorhandler(ServiceUnavailable)(jsonify_exception)

    app.errorhandler(exceptions.AuthorizationRequired)(handle_unauthorized)
    app.errorhandler(exceptions.MissingToken)(handle_unauthorized)
    app.errorhandler(exceptions.InvalidOrExpiredToken)(handle_unauthorized)
    app.errorhandler(exceptions.InsufficientPrivilege)(handle_forbidden)
    app.errorhandler(exceptions.DuplicateUsername)(handle_conflict)
    app.errorhandler(exceptions.NoSuchUser)(handle_not_found)
    app.errorhandler(exceptions.StoreUnavailable)(handle_internal)
    app.errorhandler(exceptions.EntropyUnavailable)(handle_internal)


def jsonify_exception(error: HTTPException) -> Response:
    """Render exceptions as JSON."""
    exc_resp = error.get_response()
    response: Response = jsonify(reason=error.description)
    response.status_code = exc_resp.status_code
    return response


def handle_unauthorized(error: Exception) -> Response:
    """Authentication failures are reported as 401 with the error message."""
    return jsonify_exception(Unauthorized(str(error)))


def handle_forbidden(error: Exception) -> Response:
    """Authenticated but not allowed."""
    return jsonify_exception(Forbidden(str(error)))


def handle_conflict(error: Exception) -> Response:
    """The requested username is taken."""
    return jsonify_exception(Conflict(str(error)))


def handle_not_found(error: Exception) -> Response:
    """A requested resource does not exist."""
    return jsonify_exception(NotFound(str(error)))


def handle_internal(error: Exception) -> Response:
    """Infrastructure failures; details stay in the logs."""
    logger.error('Internal error: %s', error, exc_info=error)
    return jsonify_exception(InternalServerError('Internal server error'))
