from flask import Blueprint, jsonify

from shared.errors import ValidationError
from ..validation import parse_datetime
from .common import json_body, request_deadline, services

bp = Blueprint('matches', __name__, url_prefix='/api/v1/matches')


@bp.route('/<match_id>/schedule', methods=['POST'])
def schedule_match(match_id: str):
    """Set date and location of a PENDING or SCHEDULED match."""
    data = json_body()
    scheduled_at = parse_datetime(data.get('scheduled_at'), 'scheduled_at')
    if scheduled_at is None:
        raise ValidationError("scheduled_at is required")

    match = services().matches.schedule_match(match_id, scheduled_at, data.get('location'), request_deadline())
    return jsonify({'message': 'Match scheduled', 'match': match.to_dict()})


@bp.route('/<match_id>/start', methods=['POST'])
def start_match(match_id: str):
    match = services().matches.start_match(match_id, request_deadline())
    return jsonify({'message': 'Match started', 'match': match.to_dict()})


@bp.route('/<match_id>/result', methods=['POST'])
def record_result(match_id: str):
    """Record set scores, e.g. {"sets": [{"home": 6, "away": 4}, {"home": 6, "away": 3}]}."""
    data = json_body()
    match = services().matches.record_result(match_id, data.get('sets'), request_deadline())
    return jsonify({'message': 'Result recorded', 'match': match.to_dict()})


@bp.route('/<match_id>/cancel', methods=['POST'])
def cancel_match(match_id: str):
    match = services().matches.cancel_match(match_id, request_deadline())
    return jsonify({'message': 'Match canceled', 'match': match.to_dict()})
