"""HTTP routes for user provisioning and identity."""

from typing import Any, Dict
import logging

from flask import Blueprint, Response, current_app, jsonify, request
from werkzeug.exceptions import BadRequest, ServiceUnavailable

from . import domain, issuance
from .auth.decorators import authenticated, staff_only
from .services.datastore import get_datastore

logger = logging.getLogger(__name__)

blueprint = Blueprint('api', __name__, url_prefix='')


@blueprint.route('/status', methods=['GET'])
def service_status() -> Response:
    """Health check endpoint."""
    if not get_datastore().is_available():
        raise ServiceUnavailable('Database is not available')
    return jsonify(status='OK')


@blueprint.route('/users', methods=['POST'])
@staff_only
def create_user() -> Response:
    """
    Create a new user and its default token.

    The caller must be authenticated as a staff user. The response includes
    the token secret; this is the only time it is returned by the API.
    """
    payload = _get_payload()
    username = payload.get('username')
    is_staff = payload.get('is_staff', False)
    if not isinstance(is_staff, bool):
        raise BadRequest('is_staff must be a boolean')

    try:
        result = issuance.issue_user(
            get_datastore(),
            request.auth,
            username if isinstance(username, str) else '',
            is_staff=is_staff,
            token_name=current_app.config['DEFAULT_TOKEN_NAME']
        )
    except ValueError as e:
        raise BadRequest(str(e)) from e
    response: Response = jsonify(domain.to_dict(result))
    response.status_code = 201
    return response


@blueprint.route('/users/me', methods=['GET'])
@authenticated
def get_current_user() -> Response:
    """Get the authenticated user."""
    return jsonify(domain.to_dict(request.auth))


@blueprint.route('/users', methods=['GET'])
@staff_only
def list_users() -> Response:
    """List all users, oldest first. Staff only."""
    users = get_datastore().list_users()
    return jsonify(users=[domain.to_dict(user) for user in users])


@blueprint.route('/users/<string:user_id>', methods=['DELETE'])
@staff_only
def delete_user(user_id: str) -> Response:
    """Delete a user and all of its tokens. Staff only."""
    get_datastore().delete_user(user_id)
    logger.info('User %s deleted by %s', user_id, request.auth.user_id)
    return Response(status=204)


def _get_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BadRequest('Expected a JSON object')
    return payload
