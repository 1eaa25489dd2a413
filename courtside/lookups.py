from shared.errors import NotFound, persistence_call
from .domain import Match, Tournament, User
from .stores import Stores


def load_tournament(stores: Stores, tournament_id: str, deadline=None) -> Tournament:
    tournament = persistence_call(deadline, 'tournaments.get', stores.tournaments.get, tournament_id)
    if tournament is None:
        raise NotFound(f"Tournament with ID {tournament_id} not found")
    return tournament


def load_user(stores: Stores, user_id: str, deadline=None) -> User:
    user = persistence_call(deadline, 'users.get', stores.users.get, user_id)
    if user is None:
        raise NotFound(f"User with ID {user_id} not found")
    return user


def load_match(stores: Stores, match_id: str, deadline=None) -> Match:
    match = persistence_call(deadline, 'matches.get', stores.matches.get, match_id)
    if match is None:
        raise NotFound(f"Match with ID {match_id} not found")
    return match
