from flask import current_app, request

from shared.deadline import Deadline
from shared.errors import ValidationError
from ..services import Services
from ..validation import require_id, require_page


def services() -> Services:
    return current_app.services


def request_deadline() -> Deadline:
    """One deadline per request, shared by every store call it makes."""
    return Deadline(current_app.config.get('PERSISTENCE_TIMEOUT_SECONDS'))


def requesting_user_id() -> str:
    user_id = request.headers.get('X-User-Id')
    if not user_id:
        raise ValidationError("X-User-Id header is required")
    return require_id(user_id, 'X-User-Id')


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def page_args(default_limit: int = None):
    """Read limit/offset query args, bounded by the configured page sizes."""
    limit = request.args.get('limit', default_limit or current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    offset = request.args.get('offset', 0, type=int)
    return require_page(limit, offset, current_app.config['MAX_PAGE_SIZE'])
