from flask import Blueprint, jsonify, request

from shared.errors import NotFound
from ..domain import TournamentFormat
from ..validation import parse_datetime
from .common import json_body, page_args, request_deadline, requesting_user_id, services

bp = Blueprint('tournaments', __name__, url_prefix='/api/v1/tournaments')


# ==================== Tournament CRUD ====================

@bp.route('', methods=['GET'])
def list_tournaments():
    """List tournaments with optional status filtering."""
    status = request.args.get('status')
    limit, offset = page_args()

    tournaments = services().orchestrator.list_tournaments(
        status=status,
        limit=limit,
        offset=offset,
        deadline=request_deadline()
    )

    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments),
        'limit': limit,
        'offset': offset
    })


@bp.route('', methods=['POST'])
def create_tournament():
    """Create a new tournament in DRAFT, owned by the requesting user."""
    data = json_body()
    user_id = requesting_user_id()

    tournament = services().orchestrator.create_tournament(
        created_by=user_id,
        name=data.get('name'),
        tournament_format=data.get('format', TournamentFormat.SINGLE_ELIMINATION.value),
        description=data.get('description'),
        min_participants=data.get('min_participants'),
        max_participants=data.get('max_participants'),
        registration_deadline=parse_datetime(data.get('registration_deadline'), 'registration_deadline'),
        start_date=parse_datetime(data.get('start_date'), 'start_date'),
        deadline=request_deadline()
    )

    return jsonify({
        'message': 'Tournament created',
        'tournament': tournament.to_dict()
    }), 201


@bp.route('/<tournament_id>', methods=['GET'])
def get_tournament(tournament_id: str):
    """Get tournament details."""
    deadline = request_deadline()
    svc = services()
    tournament = svc.orchestrator.get_tournament(tournament_id, deadline)
    count = svc.registry.count_participants(tournament.id, deadline)
    return jsonify(tournament.to_dict(participant_count=count))



@bp.route('/<tournament_id>', methods=['PATCH'])
def update_tournament(tournament_id: str):
    """Edit a DRAFT tournament. Only the fields present in the body change."""
    changes = dict(json_body())
    for field_name in ('registration_deadline', 'start_date'):
        if field_name in changes:
            changes[field_name] = parse_datetime(changes[field_name], field_name)

    tournament = services().orchestrator.update_tournament(
        tournament_id, requesting_user_id(), changes, request_deadline()
    )
    return jsonify({'message': 'Tournament updated', 'tournament': tournament.to_dict()})

# ==================== Tournament Lifecycle ====================

def _lifecycle_response(tournament, message: str):
    return jsonify({
        'message': message,
        'tournament': tournament.to_dict()
    })


@bp.route('/<tournament_id>/open', methods=['POST'])
def open_tournament(tournament_id: str):
    """Open registration."""
    tournament = services().orchestrator.open_tournament(tournament_id, requesting_user_id(), request_deadline())
    return _lifecycle_response(tournament, 'Tournament opened for registration')


@bp.route('/<tournament_id>/start', methods=['POST'])
def start_tournament(tournament_id: str):
    """Start the tournament and generate its first round."""
    result = services().orchestrator.start_tournament(tournament_id, requesting_user_id(), request_deadline())
    return jsonify(result.to_dict())


@bp.route('/<tournament_id>/complete', methods=['POST'])
def complete_tournament(tournament_id: str):
    tournament = services().orchestrator.complete_tournament(tournament_id, requesting_user_id(), request_deadline())
    return _lifecycle_response(tournament, 'Tournament completed')


@bp.route('/<tournament_id>/cancel', methods=['POST'])
def cancel_tournament(tournament_id: str):
    tournament = services().orchestrator.cancel_tournament(tournament_id, requesting_user_id(), request_deadline())
    return _lifecycle_response(tournament, 'Tournament cancelled')



@bp.route('/<tournament_id>/advance', methods=['POST'])
def advance_round(tournament_id: str):
    """Close the finished latest round and pair its winners, or complete the tournament."""
    result = services().matches.advance_round(tournament_id, request_deadline())
    return jsonify(result.to_dict())


@bp.route('/<tournament_id>/events', methods=['GET'])
def recent_events(tournament_id: str):
    """Most recent lifecycle events, newest first."""
    limit, _ = page_args(default_limit=50)
    svc = services()
    svc.orchestrator.get_tournament(tournament_id, request_deadline())
    events = svc.events.recent_events(tournament_id, limit)
    return jsonify({
        'tournament_id': tournament_id,
        'events': [e.to_dict() for e in events],
        'count': len(events)
    })

# ==================== Participants ====================

@bp.route('/<tournament_id>/participants', methods=['GET'])
def list_participants(tournament_id: str):
    """List registered player ids in registration order."""
    limit, offset = page_args()
    deadline = request_deadline()
    registry = services().registry

    participants = registry.list_participants(tournament_id, limit, offset, deadline)
    total = registry.count_participants(tournament_id, deadline)

    return jsonify({
        'tournament_id': tournament_id,
        'participants': participants,
        'count': total,
        'limit': limit,
        'offset': offset
    })


def _player_id(data: dict) -> str:
    player_id = data.get('player_id') or request.args.get('player_id')
    if player_id:
        return player_id
    return requesting_user_id()


@bp.route('/<tournament_id>/participants', methods=['POST'])
def register_participant(tournament_id: str):
    """Register a player; defaults to the requesting user."""
    player_id = _player_id(json_body())
    count = services().registry.register(tournament_id, player_id, request_deadline())
    return jsonify({
        'message': 'Player registered',
        'tournament_id': tournament_id,
        'player_id': player_id,
        'participant_count': count
    }), 201


@bp.route('/<tournament_id>/participants', methods=['DELETE'])
def unregister_participant(tournament_id: str):
    player_id = _player_id(json_body())
    services().registry.unregister(tournament_id, player_id, request_deadline())
    return jsonify({'message': 'Player unregistered', 'player_id': player_id})


# ==================== Read Models ====================

@bp.route('/<tournament_id>/bracket', methods=['GET'])
def get_bracket(tournament_id: str):
    bracket = services().matches.get_bracket(tournament_id, request_deadline())
    return jsonify({
        'tournament_id': tournament_id,
        'rounds': [
            {'round': round_num, 'matches': [m.to_dict() for m in matches]}
            for round_num, matches in bracket.items()
        ]
    })


@bp.route('/<tournament_id>/standings', methods=['GET'])
def get_standings(tournament_id: str):
    standings = services().matches.get_standings(tournament_id, request_deadline())
    return jsonify({'tournament_id': tournament_id, 'standings': standings})


# ==================== Statistics ====================

@bp.route('/<tournament_id>/statistics', methods=['GET'])
def list_statistics(tournament_id: str):
    stats = services().aggregator.list_tournament_statistics(tournament_id, request_deadline())
    return jsonify({
        'tournament_id': tournament_id,
        'statistics': [s.to_dict() for s in stats],
        'count': len(stats)
    })


@bp.route('/<tournament_id>/statistics/recompute', methods=['POST'])
def recompute_statistics(tournament_id: str):
    """Recompute every player's statistics from match history."""
    stats = services().aggregator.recompute_tournament(tournament_id, request_deadline())
    return jsonify({
        'message': f'Recomputed statistics for {len(stats)} players',
        'statistics': [s.to_dict() for s in stats]
    })


@bp.route('/<tournament_id>/players/<player_id>/statistics', methods=['GET'])
def get_player_statistics(tournament_id: str, player_id: str):
    stat = services().aggregator.get_statistic(player_id, tournament_id, request_deadline())
    if stat is None:
        raise NotFound(f"No statistics recorded for player {player_id} in tournament {tournament_id}")
    return jsonify(stat.to_dict())


@bp.route('/<tournament_id>/players/<player_id>/statistics', methods=['POST'])
def recompute_player_statistics(tournament_id: str, player_id: str):
    stat = services().aggregator.recompute(player_id, tournament_id, request_deadline())
    return jsonify(stat.to_dict())
