import logging
from typing import Callable, List, Optional

from shared.errors import (
    CapacityExceeded, DuplicateRegistration, Expired, InvalidState, NotFound, PermissionDenied,
    persistence_call,
)
from shared.events import participant_event
from shared.state_machine import TournamentState, TournamentStateMachine
from .domain import utc_now
from .event_publisher import EventPublisher
from .lookups import load_tournament, load_user
from .stores import Stores
from .validation import require_id, require_page

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """
    Validates and records tournament registrations.

    Checks run in a fixed order and all of them happen before the single
    store write. The store write re-checks duplicates, status and capacity
    atomically, so the pre-checks only decide which error a caller sees.
    """

    def __init__(self, stores: Stores, events: EventPublisher = None, clock: Callable = utc_now):
        self.stores = stores
        self.events = events or EventPublisher()
        self.clock = clock

    def register(self, tournament_id: str, player_id: str, deadline=None) -> int:
        """Register ``player_id`` and return the new participant count."""
        tournament_id = require_id(tournament_id, 'tournament_id')
        player_id = require_id(player_id, 'player_id')

        tournament = load_tournament(self.stores, tournament_id, deadline)
        player = load_user(self.stores, player_id, deadline)

        if not player.can_compete:
            raise PermissionDenied('Only users with PLAYER role can register to tournaments')

        tournaments = self.stores.tournaments
        if persistence_call(deadline, 'tournaments.is_registered', tournaments.is_registered,
                            tournament_id, player_id):
            raise DuplicateRegistration(tournament_id, player_id)

        if tournament.status != TournamentState.OPEN:
            raise InvalidState(f"Cannot register for tournament with status {tournament.status.value}")

        if tournament.deadline_passed(self.clock()):
            raise Expired('Registration deadline has passed')

        if tournament.max_participants is not None:
            count = persistence_call(deadline, 'tournaments.count_participants',
                                     tournaments.count_participants, tournament_id)
            if count >= tournament.max_participants:
                raise CapacityExceeded('Tournament has reached maximum participants')

        persistence_call(deadline, 'tournaments.register_participant',
                         tournaments.register_participant, tournament_id, player_id)
        count = persistence_call(deadline, 'tournaments.count_participants',
                                 tournaments.count_participants, tournament_id)

        logger.info(f"Registered player {player_id} to tournament {tournament_id} ({count} participants)")
        self.events.publish(participant_event(tournament_id, player_id, registered=True))
        return count

    def unregister(self, tournament_id: str, player_id: str, deadline=None) -> None:
        tournament_id = require_id(tournament_id, 'tournament_id')
        player_id = require_id(player_id, 'player_id')

        tournament = load_tournament(self.stores, tournament_id, deadline)
        tournaments = self.stores.tournaments

        if not persistence_call(deadline, 'tournaments.is_registered', tournaments.is_registered,
                                tournament_id, player_id):
            raise NotFound(f"User with ID {player_id} is not registered for tournament {tournament_id}")

        sm = TournamentStateMachine(tournament.status)
        if not sm.can_perform('unregister'):
            raise InvalidState(f"Cannot unregister from tournament with status {tournament.status.value}")

        if tournament.start_date is not None and tournament.start_date < self.clock():
            raise InvalidState('Cannot unregister after tournament has started')

        persistence_call(deadline, 'tournaments.unregister_participant',
                         tournaments.unregister_participant, tournament_id, player_id)
        logger.info(f"Unregistered player {player_id} from tournament {tournament_id}")
        self.events.publish(participant_event(tournament_id, player_id, registered=False))

    def count_participants(self, tournament_id: str, deadline=None) -> int:
        tournament_id = require_id(tournament_id, 'tournament_id')
        load_tournament(self.stores, tournament_id, deadline)
        return persistence_call(deadline, 'tournaments.count_participants',
                                self.stores.tournaments.count_participants, tournament_id)

    def list_participants(
        self,
        tournament_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        deadline=None
    ) -> List[str]:
        tournament_id = require_id(tournament_id, 'tournament_id')
        limit, offset = require_page(limit, offset)
        load_tournament(self.stores, tournament_id, deadline)
        return persistence_call(deadline, 'tournaments.list_participants',
                                self.stores.tournaments.list_participants, tournament_id, limit, offset)
