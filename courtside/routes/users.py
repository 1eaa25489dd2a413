from flask import Blueprint, jsonify

from shared.errors import ValidationError, persistence_call
from ..domain import User, UserRole
from ..statistics_aggregator import career_totals
from ..validation import new_id
from .common import json_body, request_deadline, services

bp = Blueprint('users', __name__, url_prefix='/api/v1/users')


@bp.route('', methods=['POST'])
def create_user():
    """Create a user. Identity provisioning lives elsewhere; this seeds players and admins."""
    data = json_body()
    display_name = (data.get('display_name') or '').strip()
    if not display_name:
        raise ValidationError("display_name is required")

    try:
        role = UserRole(str(data.get('role', UserRole.PLAYER.value)).upper())
    except ValueError:
        raise ValidationError(f"Unknown role '{data.get('role')}'")

    user = User(id=new_id(), display_name=display_name, role=role)
    user = persistence_call(request_deadline(), 'users.save', services().stores.users.save, user)
    return jsonify({'message': 'User created', 'user': user.to_dict()}), 201


@bp.route('/<user_id>/statistics', methods=['GET'])
def get_user_statistics(user_id: str):
    """Per-tournament statistics for a player plus their career totals."""
    stats = services().aggregator.list_player_statistics(user_id, request_deadline())
    return jsonify({
        'player_id': user_id,
        'statistics': [s.to_dict() for s in stats],
        'career': career_totals(stats)
    })
